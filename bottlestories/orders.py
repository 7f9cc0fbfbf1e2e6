from __future__ import annotations

from typing import List, Optional, Protocol

from .cart import CartStore
from .schemas import CartItem, Order, OrdersPage
from .services import new_cart_id


class OrdersApi(Protocol):
    async def get_user_orders(self, page: int = 1, limit: int = 10, status: str = "all") -> OrdersPage:
        ...


class OrderHistory:
    """Paged view of the signed-in user's orders."""

    def __init__(self, api: OrdersApi, page_size: int = 5, status: str = "all") -> None:
        self.api = api
        self.page_size = page_size
        self.status = status
        self.orders: List[Order] = []
        self.page = 0
        self.has_more = False

    async def load(self, status: Optional[str] = None) -> List[Order]:
        """(Re)load the first page, optionally switching the status filter."""
        if status is not None:
            self.status = status
        result = await self.api.get_user_orders(1, self.page_size, self.status)
        self.orders = list(result.data)
        self.page = 1
        self.has_more = result.pagination.has_more
        return self.orders

    async def load_more(self) -> List[Order]:
        if not self.has_more:
            return self.orders
        result = await self.api.get_user_orders(self.page + 1, self.page_size, self.status)
        self.orders.extend(result.data)
        self.page += 1
        self.has_more = result.pagination.has_more
        return self.orders


def items_from_order(order: Order) -> List[CartItem]:
    """Cart lines for every order line whose product is still known."""
    items = []
    for line in order.items:
        if line.product is None:
            continue
        items.append(
            CartItem(
                cart_id=new_cart_id(),
                product=line.product,
                quantity=max(1, line.quantity),
                selected_fragrances=list(line.selected_fragrances),
                custom_message=line.custom_message,
            )
        )
    return items


def order_again(store: CartStore, order: Order) -> int:
    """Start a buy-now checkout with a previous order's lines. Returns the line count."""
    items = items_from_order(order)
    if items:
        store.start_direct_checkout(items)
    return len(items)
