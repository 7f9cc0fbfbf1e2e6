"""Cart store: the persistent cart and the buy-now ("direct") cart.

Lifecycle::

    store = CartStore(api, storage)
    await store.init(location=current_url)   # restore + reconcile guest/server state
    store.add_to_cart(product, 1, fragrances=[...])
    ...
    await store.dispose()                    # wait for queued server saves

Persistence rules:
    - guest (no token): the persistent cart lives in local storage
    - signed in: the persistent cart lives on the server; every mutation queues
      a full-snapshot save
    - the direct cart is always local, never sent to the server
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, Optional, Protocol

from rich import print as rprint

from .config import Settings, settings as default_settings
from .schemas import CartItem, Fragrance, Product, SelectedFragrance
from .services import dump_items, format_server_cart, new_cart_id
from .session import SessionStore, capture_login_callback
from .slots import bind_selection, selection_key
from .storage import CART_KEY, DIRECT_CART_KEY, KeyValueStorage, read_json, write_json

_UNSET: Any = object()


class CartApi(Protocol):
    async def fetch_cart(self) -> List[CartItem]:
        ...

    async def merge_cart(self, local_items: List[CartItem]) -> List[CartItem]:
        ...

    async def save_cart(self, items: List[CartItem]) -> None:
        ...


def _snapshot(items: Iterable[CartItem]) -> List[CartItem]:
    return [item.model_copy(deep=True) for item in items]


def _sum_total(items: Iterable[CartItem]) -> float:
    return sum(item.product.price * item.quantity for item in items)


def _sum_count(items: Iterable[CartItem]) -> int:
    return sum(item.quantity for item in items)


def _with_unique_ids(items: Iterable[CartItem]) -> List[CartItem]:
    """Re-key any item whose ``cart_id`` repeats an earlier one."""
    unique: List[CartItem] = []
    seen: set[str] = set()
    for item in items:
        if item.cart_id in seen:
            item.cart_id = new_cart_id()
        seen.add(item.cart_id)
        unique.append(item)
    return unique


class LatestSnapshotWriter:
    """Single-slot save queue.

    At most one save is in flight. A snapshot submitted while a save is
    running replaces any snapshot still waiting, so the server always ends up
    with the newest cart and intermediate states are skipped.
    """

    def __init__(self, save: Callable[[List[CartItem]], Awaitable[None]], debounce: float = 0.0) -> None:
        self._save = save
        self._debounce = debounce
        self._pending: Optional[List[CartItem]] = None
        self._task: Optional[asyncio.Task[None]] = None
        self.superseded = 0
        self.failures = 0

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    def submit(self, snapshot: List[CartItem]) -> None:
        if self._pending is not None:
            self.superseded += 1
        self._pending = snapshot
        if not self.busy:
            self._task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        if self._debounce > 0:
            await asyncio.sleep(self._debounce)
        while self._pending is not None:
            snapshot, self._pending = self._pending, None
            try:
                await self._save(snapshot)
            except Exception as exc:
                # The next mutation queues a fresh snapshot; nothing to retry here.
                self.failures += 1
                rprint(f"[yellow]⚠ Cart auto-save failed:[/yellow] {exc}")

    async def flush(self) -> None:
        while self._task is not None and not self._task.done():
            await self._task


class CartStore:
    """Single owner of the persistent and direct cart item lists."""

    def __init__(
        self,
        api: CartApi,
        storage: KeyValueStorage,
        session: Optional[SessionStore] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.api = api
        self.storage = storage
        self.session = session or SessionStore(storage)
        self.settings = settings or default_settings
        self.initialized = False
        self.syncing = False
        self.location: Optional[str] = None
        self._disposed = False
        self._cart: List[CartItem] = []
        self._direct: List[CartItem] = []
        self._writer = LatestSnapshotWriter(api.save_cart, debounce=self.settings.autosave_debounce)

    # -- read side ----------------------------------------------------------

    @property
    def cart(self) -> List[CartItem]:
        return list(self._cart)

    @property
    def direct_cart(self) -> List[CartItem]:
        return list(self._direct)

    @property
    def cart_total(self) -> float:
        return _sum_total(self._cart)

    @property
    def cart_count(self) -> int:
        return _sum_count(self._cart)

    @property
    def direct_total(self) -> float:
        return _sum_total(self._direct)

    @property
    def direct_count(self) -> int:
        return _sum_count(self._direct)

    def find(self, cart_id: str, direct: bool = False) -> Optional[CartItem]:
        return next((item for item in self._items(direct) if item.cart_id == cart_id), None)

    # -- lifecycle ----------------------------------------------------------

    async def init(self, location: Optional[str] = None) -> None:
        """Restore local state, capture a login callback, reconcile with the server."""
        if self.initialized:
            return

        self.syncing = True
        self._direct = self._load_local(DIRECT_CART_KEY)
        restored_direct = dump_items(self._direct)
        try:
            self.location = location
            if location:
                cleaned = capture_login_callback(location, self.session)
                if cleaned is not None:
                    self.location = cleaned

            await self._reconcile()
        finally:
            self.syncing = False
            self.initialized = True

        # Buy-now edits made while reconciling were only kept in memory.
        if dump_items(self._direct) != restored_direct:
            self._changed(direct=True)

    async def _reconcile(self) -> None:
        guest_items = self._load_local(CART_KEY)
        if not self.session.is_authenticated:
            self._cart = guest_items
            return

        try:
            if guest_items:
                self._cart = _with_unique_ids(await self.api.merge_cart(guest_items))
                # The server owns these items now.
                self.storage.remove_item(CART_KEY)
            else:
                self._cart = _with_unique_ids(await self.api.fetch_cart())
        except Exception as exc:
            rprint(f"[red]✗ Cart reconciliation failed, starting empty:[/red] {exc}")
            self._cart = []

    async def flush(self) -> None:
        """Wait until queued server saves have been sent."""
        await self._writer.flush()

    async def dispose(self) -> None:
        await self.flush()
        self._disposed = True

    # -- mutations ----------------------------------------------------------

    def add_to_cart(
        self,
        product: Product,
        quantity: int = 1,
        fragrances: Optional[List[Optional[SelectedFragrance]]] = None,
        message: Optional[str] = None,
        direct: bool = False,
    ) -> CartItem:
        """Add a product, or bump an existing line with the same product and fragrance set."""
        if quantity < 1:
            raise ValueError(f"quantity must be at least 1, got {quantity}")

        items = self._items(direct)
        fragrances = list(fragrances or [])
        key = selection_key(product.id, fragrances)

        for item in items:
            if selection_key(item.product.id, item.selected_fragrances) == key:
                item.quantity += quantity
                self._changed(direct)
                return item

        item = CartItem(
            cart_id=new_cart_id(),
            product=product,
            quantity=quantity,
            selected_fragrances=fragrances,
            custom_message=message or None,
        )
        items.append(item)
        self._changed(direct)
        return item

    def remove_from_cart(self, cart_id: str, direct: bool = False) -> bool:
        items = self._items(direct)
        remaining = [item for item in items if item.cart_id != cart_id]
        if len(remaining) == len(items):
            return False
        items[:] = remaining
        self._changed(direct)
        return True

    def update_quantity(self, cart_id: str, delta: int, direct: bool = False) -> Optional[CartItem]:
        item = self.find(cart_id, direct)
        if item is None:
            return None
        item.quantity = max(1, item.quantity + delta)
        self._changed(direct)
        return item

    def update_item_metadata(
        self,
        cart_id: str,
        selected_fragrances: Optional[List[Optional[SelectedFragrance]]] = _UNSET,
        custom_message: Optional[str] = _UNSET,
        direct: bool = False,
    ) -> Optional[CartItem]:
        """Shallow-merge the given fields into an item; omitted fields are untouched."""
        item = self.find(cart_id, direct)
        if item is None:
            return None
        if selected_fragrances is not _UNSET:
            item.selected_fragrances = list(selected_fragrances or [])
        if custom_message is not _UNSET:
            item.custom_message = custom_message
        self._changed(direct)
        return item

    def bind_fragrance(
        self,
        cart_id: str,
        slot_index: int,
        fragrance_id: str,
        direct: bool = False,
        catalog: Optional[Mapping[str, Fragrance]] = None,
    ) -> Optional[CartItem]:
        """In-cart slot editing. Raises like ``bind_selection`` on a bad slot or fragrance."""
        item = self.find(cart_id, direct)
        if item is None:
            return None
        selections = bind_selection(item, slot_index, fragrance_id, catalog)
        return self.update_item_metadata(cart_id, selected_fragrances=selections, direct=direct)

    def clear_cart(self) -> None:
        self._cart = []
        self.storage.remove_item(CART_KEY)
        if self._autosave_enabled and self.session.is_authenticated:
            self._writer.submit([])

    def clear_direct_cart(self) -> None:
        self._direct = []
        self.storage.remove_item(DIRECT_CART_KEY)

    def start_direct_checkout(self, items: Iterable[CartItem]) -> None:
        """Replace the direct cart wholesale (Buy Now / Order Again)."""
        self._direct = _with_unique_ids(_snapshot(items))
        self._changed(direct=True)

    # -- internals ----------------------------------------------------------

    def _items(self, direct: bool) -> List[CartItem]:
        return self._direct if direct else self._cart

    @property
    def _autosave_enabled(self) -> bool:
        return self.initialized and not self.syncing and not self._disposed

    def _changed(self, direct: bool) -> None:
        if not self._autosave_enabled:
            return
        if direct:
            write_json(self.storage, DIRECT_CART_KEY, dump_items(self._direct))
        elif self.session.is_authenticated:
            self._writer.submit(_snapshot(self._cart))
        else:
            write_json(self.storage, CART_KEY, dump_items(self._cart))

    def _load_local(self, key: str) -> List[CartItem]:
        data = read_json(self.storage, key, default=[])
        if not isinstance(data, list):
            rprint(f"[yellow]⚠ Ignoring '{key}' snapshot that is not a list[/yellow]")
            return []
        return format_server_cart(data)
