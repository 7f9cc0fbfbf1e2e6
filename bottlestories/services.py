"""Typed endpoint functions over ``ApiClient``.

Every method is a coroutine: the blocking ``requests`` call runs in a worker
thread so cart auto-saves never stall the event loop.
"""
from __future__ import annotations

import asyncio
import itertools
import time
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from pydantic import ValidationError
from rich import print as rprint

from .api_client import ApiClient
from .schemas import (
    Address,
    CartItem,
    Enquiry,
    Fragrance,
    LoginResponse,
    Order,
    OrdersPage,
    Product,
    RatingResponse,
    ShippingInfo,
    Tag,
    Testimonial,
    UserProfile,
    UserRatingStatus,
)

PAYMENT_METHOD = "Cash on Delivery"

_CART_ID_COUNTER = itertools.count(1)
_CART_ITEM_KEYS = {"cartId", "cart_id", "quantity", "selectedFragrances", "customMessage", "product"}


def new_cart_id() -> str:
    """Unique per add-to-cart event for the lifetime of the process."""
    timestamp = int(time.time() * 1000)
    return f"{timestamp}-{next(_CART_ID_COUNTER)}-{uuid4().hex[:8]}"


def format_server_cart(raw: Any) -> List[CartItem]:
    """Normalise the server's cart representation into ``CartItem`` values.

    Accepts a bare list or ``{"items": [...]}``; each entry may nest the product
    under ``product`` or carry product fields at the top level.
    """
    if isinstance(raw, dict):
        raw = raw.get("items") or raw.get("cart") or []
    if not isinstance(raw, list):
        return []

    items: List[CartItem] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        product_data = entry.get("product")
        if not isinstance(product_data, dict):
            product_data = {k: v for k, v in entry.items() if k not in _CART_ITEM_KEYS}
        try:
            quantity = max(1, int(entry.get("quantity") or 1))
            items.append(
                CartItem(
                    cart_id=entry.get("cartId") or entry.get("cart_id") or new_cart_id(),
                    product=Product.model_validate(product_data),
                    quantity=quantity,
                    selected_fragrances=entry.get("selectedFragrances") or [],
                    custom_message=entry.get("customMessage"),
                )
            )
        except (ValidationError, TypeError, ValueError) as exc:
            rprint(f"[yellow]⚠ Dropping malformed cart entry:[/yellow] {exc}")
    return items


def dump_items(items: Iterable[CartItem]) -> List[Dict[str, Any]]:
    return [item.to_wire() for item in items]


class StorefrontApi:
    """Async facade over the storefront REST API."""

    def __init__(self, client: ApiClient) -> None:
        self.client = client

    async def _call(self, fn: Any, *args: Any, **kwargs: Any) -> Any:
        return await asyncio.to_thread(fn, *args, **kwargs)

    # -- cart ---------------------------------------------------------------

    async def fetch_cart(self) -> List[CartItem]:
        return format_server_cart(await self._call(self.client.get, "/cart"))

    async def save_cart(self, items: List[CartItem]) -> None:
        await self._call(self.client.post, "/cart", {"items": dump_items(items)})

    async def merge_cart(self, local_items: List[CartItem]) -> List[CartItem]:
        body = await self._call(self.client.post, "/cart/merge", {"localItems": dump_items(local_items)})
        return format_server_cart(body)

    # -- orders -------------------------------------------------------------

    async def submit_order(
        self,
        items: List[CartItem],
        shipping_address: ShippingInfo,
        total_amount: float,
    ) -> Order:
        payload = {
            "items": dump_items(items),
            "shippingAddress": shipping_address.to_wire(),
            "totalAmount": total_amount,
            "paymentMethod": PAYMENT_METHOD,
        }
        body = await self._call(self.client.post, "/orders", payload)
        if isinstance(body, dict) and isinstance(body.get("order"), dict):
            body = body["order"]
        try:
            return Order.model_validate(body)
        except ValidationError:
            # The request succeeded, so the order exists even if the reply is not one.
            rprint(f"[yellow]⚠ Order accepted but the response carried no order:[/yellow] {body!r}")
            return Order(
                id=str(body.get("orderId") or "") if isinstance(body, dict) else "",
                total_amount=total_amount,
                shipping_address=payload["shippingAddress"],
                payment_method=PAYMENT_METHOD,
            )

    async def get_user_orders(self, page: int = 1, limit: int = 10, status: str = "all") -> OrdersPage:
        params: Dict[str, Any] = {"page": page, "limit": limit}
        if status and status != "all":
            params["status"] = status
        body = await self._call(self.client.get, "/orders/myorders", params)
        return OrdersPage.model_validate(body or {})

    # -- catalog ------------------------------------------------------------

    async def get_product(self, product_id: str) -> Product:
        return Product.model_validate(await self._call(self.client.get, f"/products/{product_id}"))

    async def get_fragrance(self, fragrance_id: str) -> Fragrance:
        return Fragrance.model_validate(await self._call(self.client.get, f"/fragrances/{fragrance_id}"))

    async def get_all_tags(self) -> List[Tag]:
        body = await self._call(self.client.get, "/tags")
        return [Tag.model_validate(tag) for tag in body or []]

    # -- auth ---------------------------------------------------------------

    async def login(self, email: str, password: str) -> LoginResponse:
        body = await self._call(self.client.post, "/auth/login", {"email": email, "password": password}, True)
        return LoginResponse.model_validate(body)

    async def register(self, data: Dict[str, Any]) -> Any:
        return await self._call(self.client.post, "/auth/register", data, True)

    # -- engagement ---------------------------------------------------------

    async def submit_rating(self, product_id: str, rating: int) -> RatingResponse:
        body = await self._call(self.client.post, f"/products/{product_id}/rate", {"rating": rating})
        return RatingResponse.model_validate(body or {})

    async def check_user_rating(self, product_id: str) -> UserRatingStatus:
        body = await self._call(self.client.get, f"/products/{product_id}/user-rating")
        return UserRatingStatus.model_validate(body or {})

    async def get_approved_testimonials(self, limit: int = 10) -> List[Testimonial]:
        body = await self._call(self.client.get, "/testimonials/approved", {"limit": limit})
        return [Testimonial.model_validate(t) for t in body or []]

    async def submit_testimonial(self, fields: Dict[str, Any], image_path: Optional[str] = None) -> Any:
        files = {"image": image_path} if image_path else None
        return await self._call(self.client.post_form, "/testimonials", fields, files)

    async def submit_enquiry(self, enquiry: Enquiry) -> Any:
        return await self._call(self.client.post, "/enquiries", enquiry.to_wire())

    # -- profile ------------------------------------------------------------

    async def get_profile(self) -> Tuple[UserProfile, List[Address]]:
        body = await self._call(self.client.get, "/user/profile") or {}
        user = UserProfile.model_validate(body.get("user") or {})
        addresses = [Address.model_validate(a) for a in body.get("addresses") or []]
        return user, addresses

    async def update_profile(self, name: str, phone: str, dob: str) -> Any:
        return await self._call(self.client.put, "/user/profile", {"name": name, "phone": phone, "dob": dob})

    async def add_address(self, address: Address) -> Address:
        payload = address.model_dump(by_alias=True, mode="json", exclude={"id"})
        body = await self._call(self.client.post, "/user/address", payload)
        if isinstance(body, dict) and isinstance(body.get("address"), dict):
            body = body["address"]
        return Address.model_validate(body) if isinstance(body, dict) else address

    async def delete_address(self, address_id: str) -> None:
        await self._call(self.client.delete, f"/user/address/{address_id}")
