"""
Process-wide service instances, exposed as FastAPI dependencies.

Backends are picked from settings: Supabase when configured, in-memory
otherwise. Tests replace these through app.dependency_overrides.
"""
from functools import lru_cache

import structlog

from app.config import settings
from app.services.admin_sessions import AdminSessionStore, parse_static_tokens
from app.services.credential_store import CredentialStore, InMemoryCredentialStore
from app.services.event_dispatcher import EventDispatcher
from app.services.tenant_data_store import InMemoryTenantDataStore, TenantDataStore
from app.services.tenant_resolver import TenantResolver
from app.services.webhook_handlers import build_event_dispatcher
from app.services.webhook_ingestion import WebhookIngestionService
from app.workers.reconciliation_scheduler import ReconciliationScheduler

logger = structlog.get_logger()


@lru_cache
def get_credential_store() -> CredentialStore:
    if settings.supabase_enabled:
        from app.services.supabase_service import SupabaseCredentialStore

        logger.info("Using Supabase credential store")
        return SupabaseCredentialStore()
    logger.info("Using in-memory credential store")
    return InMemoryCredentialStore()


@lru_cache
def get_tenant_data_store() -> TenantDataStore:
    if settings.supabase_enabled:
        from app.services.supabase_service import SupabaseTenantDataStore

        return SupabaseTenantDataStore()
    return InMemoryTenantDataStore()


@lru_cache
def get_session_store() -> AdminSessionStore:
    return AdminSessionStore(parse_static_tokens(settings.admin_tokens))


@lru_cache
def get_scheduler() -> ReconciliationScheduler:
    return ReconciliationScheduler(get_credential_store(), get_tenant_data_store())


@lru_cache
def get_event_dispatcher() -> EventDispatcher:
    return build_event_dispatcher(get_scheduler(), get_credential_store())


@lru_cache
def get_ingestion_service() -> WebhookIngestionService:
    return WebhookIngestionService(
        TenantResolver(get_credential_store()), get_event_dispatcher()
    )
