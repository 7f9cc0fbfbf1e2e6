"""Checkout: cart completeness gate, shipping gate, order submission.

State machine::

    BROWSING --begin()--> REVIEWING --proceed_to_shipping()--> SHIPPING_ENTRY
    SHIPPING_ENTRY --submit()--> SUBMITTING --> SUCCESS | FAILURE
    FAILURE --submit()--> SUBMITTING  (retry with the cart untouched)

Every gate that fails leaves the flow where it was and sets ``message``.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

from rich import print as rprint

from .api_client import ApiError, SessionExpiredError
from .cart import CartStore
from .config import Settings, settings as default_settings
from .pricing import CartTotals, FlatRateShipping, ShippingPolicy, cart_totals
from .schemas import REQUIRED_SHIPPING_FIELDS, CartItem, Fragrance, Order, Product, ShippingInfo
from .slots import missing_slots, unavailable_selections

LOGIN_PATH = "/login"
ORDERS_PATH = "/my-orders"
ORDER_FAILED_MESSAGE = "We could not place your order. Please try again."


class CheckoutApi(Protocol):
    async def submit_order(self, items: List[CartItem], shipping_address: ShippingInfo, total_amount: float) -> Order:
        ...

    async def get_product(self, product_id: str) -> Product:
        ...

    async def get_fragrance(self, fragrance_id: str) -> Fragrance:
        ...


class CheckoutStep(str, Enum):
    BROWSING = "browsing"
    REVIEWING = "reviewing"
    SHIPPING_ENTRY = "shipping_entry"
    SUBMITTING = "submitting"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class CartValidation:
    valid: bool
    message: Optional[str] = None
    cart_id: Optional[str] = None


def validate_cart(
    items: Iterable[CartItem],
    products: Optional[Mapping[str, Product]] = None,
    catalog: Optional[Mapping[str, Fragrance]] = None,
) -> CartValidation:
    """Stop at the first item that is not ready for checkout.

    With ``products`` (fresh catalog copies keyed by id) bound fragrances are
    also re-checked for stock; ``catalog`` resolves fragrances those products
    reference by id only.
    """
    for item in items:
        missing = missing_slots(item)
        if missing:
            return CartValidation(
                valid=False,
                message=(
                    f"Please select a fragrance for every bottle in '{item.product.name}' "
                    f"({len(missing)} remaining)."
                ),
                cart_id=item.cart_id,
            )

        fresh = products.get(item.product.id) if products is not None else None
        if fresh is not None:
            unavailable = unavailable_selections(item, fresh, catalog)
            if unavailable:
                names = ", ".join(s.fragrance_name or s.fragrance_id for s in unavailable)
                return CartValidation(
                    valid=False,
                    message=f"{names} in '{item.product.name}' is out of stock. Please choose another fragrance.",
                    cart_id=item.cart_id,
                )
    return CartValidation(valid=True)


def missing_shipping_fields(shipping: ShippingInfo) -> List[str]:
    """Required fields that are empty. Presence only; formats are not checked."""
    return [name for name in REQUIRED_SHIPPING_FIELDS if not str(getattr(shipping, name) or "").strip()]


class CheckoutFlow:
    """Drives one checkout attempt over either the persistent or the direct cart."""

    def __init__(
        self,
        store: CartStore,
        api: CheckoutApi,
        shipping_policy: Optional[ShippingPolicy] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.store = store
        self.api = api
        self.settings = settings or default_settings
        self.shipping_policy = shipping_policy or FlatRateShipping.from_settings(self.settings)
        self.step = CheckoutStep.BROWSING
        self.direct = False
        self.message: Optional[str] = None
        self.attention_cart_id: Optional[str] = None
        self.redirect: Optional[str] = None
        self.order: Optional[Order] = None

    @property
    def items(self) -> List[CartItem]:
        return self.store.direct_cart if self.direct else self.store.cart

    def totals(self) -> CartTotals:
        return cart_totals(self.items, self.shipping_policy)

    # -- transitions --------------------------------------------------------

    def begin(self, direct: Optional[bool] = None) -> CheckoutStep:
        """Enter review. ``direct=None`` picks the buy-now cart when it has items."""
        self._reset_feedback()
        if not self.store.session.is_authenticated:
            self.redirect = LOGIN_PATH
            return self.step

        self.direct = bool(self.store.direct_cart) if direct is None else direct
        if not self.items:
            self.message = "Your cart is empty."
            return self.step

        self.step = CheckoutStep.REVIEWING
        return self.step

    def proceed_to_shipping(self) -> CheckoutStep:
        self._require(CheckoutStep.REVIEWING)
        self._reset_feedback()

        result = validate_cart(self.items)
        if not result.valid:
            self.message = result.message
            self.attention_cart_id = result.cart_id
            return self.step

        self.step = CheckoutStep.SHIPPING_ENTRY
        return self.step

    async def submit(self, shipping: ShippingInfo) -> CheckoutStep:
        self._require(CheckoutStep.SHIPPING_ENTRY, CheckoutStep.FAILURE)
        self._reset_feedback()

        missing = missing_shipping_fields(shipping)
        if missing:
            self.message = "Please fill in: " + ", ".join(name.replace("_", " ") for name in missing) + "."
            return self.step

        items = self.items
        if self.settings.recheck_stock_at_checkout:
            products, catalog = await self._fresh_stock(items)
            result = validate_cart(items, products, catalog)
            if not result.valid:
                self.message = result.message
                self.attention_cart_id = result.cart_id
                self.step = CheckoutStep.REVIEWING
                return self.step

        self.step = CheckoutStep.SUBMITTING
        totals = cart_totals(items, self.shipping_policy)
        try:
            order = await self.api.submit_order(items, shipping, totals.total)
        except ApiError as exc:
            rprint(f"[red]✗ Order submission failed:[/red] {exc.message}")
            self.message = exc.message
            self.step = CheckoutStep.FAILURE
            if isinstance(exc, SessionExpiredError):
                self.redirect = LOGIN_PATH
            return self.step
        except Exception as exc:
            rprint(f"[red]✗ Order submission failed unexpectedly:[/red] {exc!r}")
            self.message = ORDER_FAILED_MESSAGE
            self.step = CheckoutStep.FAILURE
            return self.step

        self.order = order
        if self.direct:
            self.store.clear_direct_cart()
        else:
            self.store.clear_cart()
        self.step = CheckoutStep.SUCCESS
        self.redirect = ORDERS_PATH
        rprint(f"[green]✓ Order placed:[/green] {order.id} ({totals.total:.2f})")
        return self.step

    def exit(self) -> None:
        """Leave checkout. An abandoned buy-now cart is discarded."""
        if self.direct and self.step != CheckoutStep.SUCCESS:
            self.store.clear_direct_cart()
        self.step = CheckoutStep.BROWSING
        self.direct = False
        self._reset_feedback()

    # -- internals ----------------------------------------------------------

    def _require(self, *allowed: CheckoutStep) -> None:
        if self.step not in allowed:
            expected = " or ".join(step.value for step in allowed)
            raise RuntimeError(f"Checkout is at '{self.step.value}', expected {expected}.")

    def _reset_feedback(self) -> None:
        self.message = None
        self.attention_cart_id = None
        self.redirect = None

    async def _fresh_products(self, items: List[CartItem]) -> Dict[str, Product]:
        product_ids = list(dict.fromkeys(item.product.id for item in items))
        results = await asyncio.gather(
            *(self.api.get_product(pid) for pid in product_ids),
            return_exceptions=True,
        )
        products: Dict[str, Product] = {}
        for pid, result in zip(product_ids, results):
            if isinstance(result, Product):
                products[pid] = result
            elif isinstance(result, Exception):
                rprint(f"[yellow]⚠ Could not refresh product {pid} for stock check:[/yellow] {result}")
        return products

    async def _fresh_catalog(self, items: List[CartItem], products: Mapping[str, Product]) -> Dict[str, Fragrance]:
        """Fetch bound fragrances that the fresh products only name by id."""
        fragrance_ids = []
        for item in items:
            fresh = products.get(item.product.id)
            if fresh is None:
                continue
            for selection in item.selected_fragrances:
                if selection is None or not selection.fragrance_id:
                    continue
                if fresh.offers_fragrance(selection.fragrance_id) and fresh.find_fragrance(selection.fragrance_id) is None:
                    fragrance_ids.append(selection.fragrance_id)
        fragrance_ids = list(dict.fromkeys(fragrance_ids))

        results = await asyncio.gather(
            *(self.api.get_fragrance(fid) for fid in fragrance_ids),
            return_exceptions=True,
        )
        catalog: Dict[str, Fragrance] = {}
        for fid, result in zip(fragrance_ids, results):
            if isinstance(result, Fragrance):
                catalog[fid] = result
            elif isinstance(result, Exception):
                rprint(f"[yellow]⚠ Could not refresh fragrance {fid} for stock check:[/yellow] {result}")
        return catalog

    async def _fresh_stock(self, items: List[CartItem]) -> Tuple[Dict[str, Product], Dict[str, Fragrance]]:
        products = await self._fresh_products(items)
        return products, await self._fresh_catalog(items, products)
