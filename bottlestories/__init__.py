"""Cart and checkout engine for the Bottle Stories perfume-hamper storefront."""

from .api_client import ApiClient, ApiError, SessionExpiredError
from .cart import CartStore, LatestSnapshotWriter
from .checkout import CartValidation, CheckoutFlow, CheckoutStep, missing_shipping_fields, validate_cart
from .config import Settings, load_settings, settings
from .pricing import CartTotals, FlatRateShipping, cart_totals
from .schemas import (
    BottleSize,
    CartItem,
    Fragrance,
    Order,
    Product,
    SelectedFragrance,
    ShippingInfo,
    Slot,
)
from .services import StorefrontApi, format_server_cart
from .session import SessionStore, capture_login_callback
from .slots import (
    FragranceUnavailableError,
    bind_selection,
    compute_slots,
    is_complete,
    selection_key,
)
from .storage import MemoryStorage, SqliteStorage

__version__ = "0.1.0"

__all__ = [
    "ApiClient",
    "ApiError",
    "SessionExpiredError",
    "CartStore",
    "LatestSnapshotWriter",
    "CartValidation",
    "CheckoutFlow",
    "CheckoutStep",
    "missing_shipping_fields",
    "validate_cart",
    "Settings",
    "load_settings",
    "settings",
    "CartTotals",
    "FlatRateShipping",
    "cart_totals",
    "BottleSize",
    "CartItem",
    "Fragrance",
    "Order",
    "Product",
    "SelectedFragrance",
    "ShippingInfo",
    "Slot",
    "StorefrontApi",
    "format_server_cart",
    "SessionStore",
    "capture_login_callback",
    "FragranceUnavailableError",
    "bind_selection",
    "compute_slots",
    "is_complete",
    "selection_key",
    "MemoryStorage",
    "SqliteStorage",
]
