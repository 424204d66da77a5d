"""
FastAPI application entry point.
Initializes the FastAPI app, configures logging, and includes the webhook and admin routes.
"""

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.dependencies import get_event_dispatcher, get_scheduler
from app.routers import fee_automation, shopify_settings, timeslots, webhooks
from app.utils.logger import configure_logging

SERVICE_NAME = "Delivery Scheduler Fee Automation"
SERVICE_VERSION = "1.0.0"

# Configure logging first
configure_logging()
logger = structlog.get_logger()

# Create FastAPI app
app = FastAPI(
    title=SERVICE_NAME,
    description="Shopify webhook ingestion and express delivery fee product automation",
    version=SERVICE_VERSION,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(webhooks.router)  # Shopify webhook ingestion
app.include_router(fee_automation.router)  # Express fee reconciliation and cleanup
app.include_router(shopify_settings.router)  # Credentials and webhook subscriptions
app.include_router(timeslots.router)  # Timeslot configuration


@app.on_event("startup")
async def startup_event():
    """Application startup event."""
    logger.info(f"{SERVICE_NAME} started")

    handled_topics = get_event_dispatcher().topics()
    logger.info("Webhook handlers registered", topics=handled_topics, count=len(handled_topics))


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event. Lets in-flight reconciliations finish."""
    logger.info(f"{SERVICE_NAME} shutting down")
    await get_scheduler().shutdown()


@app.get("/")
async def root():
    """Root endpoint - also serves as a simple health check."""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "webhook_topics": get_event_dispatcher().topics(),
    }


@app.get("/healthz")
async def healthz():
    """Alternative health check endpoint (Kubernetes-style)."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
