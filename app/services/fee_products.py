"""
Deterministic identity of machine-managed fee products.

No id-to-amount mapping is stored anywhere. A remote product is recognised as
the fee product for an amount purely from its title, vendor and marker tag,
so every run re-derives identity from the remote catalog itself.
"""
import re
from decimal import Decimal
from typing import Any, Dict, Optional

from app.models.shopify import ShopifyProduct
from app.services.fee_extractor import to_fee_amount

FEE_PRODUCT_VENDOR = "Delivery Scheduler"
FEE_PRODUCT_TYPE = "service"
FEE_PRODUCT_MARKER_TAG = "delivery-fee"
FEE_PRODUCT_TAGS = [FEE_PRODUCT_MARKER_TAG, "express-delivery", "auto-generated"]

_TITLE_PREFIX = "Express Delivery Fee - $"
_TITLE_AMOUNT_RE = re.compile(r"^Express Delivery Fee - \$(\d+(?:\.\d{1,2})?)$")


def fee_product_title(amount: Decimal) -> str:
    """'Express Delivery Fee - $5.00' for Decimal('5')."""
    return f"{_TITLE_PREFIX}{to_fee_amount(amount):.2f}"


def fee_product_description(amount: Decimal) -> str:
    price = f"${to_fee_amount(amount):.2f}"
    return (
        "<p><strong>Express Delivery Service Fee</strong></p>"
        f"<p>Additional fee for express delivery service: <strong>{price}</strong></p>"
        "<p><em>This fee is automatically added when customers select express delivery options.</em></p>"
        "<p><small>Automatically managed by Delivery Scheduler system.</small></p>"
    )


def parse_fee_amount(title: Optional[str]) -> Optional[Decimal]:
    """Inverse of fee_product_title. Returns None for titles not in the fee format."""
    if not title:
        return None
    match = _TITLE_AMOUNT_RE.match(title.strip())
    if not match:
        return None
    return to_fee_amount(match.group(1))


def is_fee_product(product: ShopifyProduct) -> bool:
    """True for products carrying the machine-managed vendor and marker tag."""
    return product.vendor == FEE_PRODUCT_VENDOR and FEE_PRODUCT_MARKER_TAG in product.tags


def format_price(amount: Decimal) -> str:
    return f"{to_fee_amount(amount):.2f}"


def build_fee_product_payload(amount: Decimal) -> Dict[str, Any]:
    """Body for POST products.json creating the fee product for an amount."""
    return {
        "product": {
            "title": fee_product_title(amount),
            "body_html": fee_product_description(amount),
            "vendor": FEE_PRODUCT_VENDOR,
            "product_type": FEE_PRODUCT_TYPE,
            "tags": ", ".join(FEE_PRODUCT_TAGS),
            "published": True,
            "variants": [
                {
                    "title": "Default",
                    "price": format_price(amount),
                    "inventory_management": None,
                    "inventory_policy": "continue",
                    "requires_shipping": False,
                    "taxable": False,
                    "weight": 0,
                    "weight_unit": "kg",
                }
            ],
            "options": [{"name": "Title", "values": ["Default"]}],
        }
    }
