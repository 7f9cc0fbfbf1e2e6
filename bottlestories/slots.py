"""Bottle slots: expanding a hamper's bottle configuration and binding fragrances to it.

Slots are positional. Index ``i`` is the ``i``-th bottle in configuration
order, and a cart item's ``selected_fragrances[i]`` is the choice for that
bottle. Nothing else identifies a slot, so ``compute_slots`` must return the
same list every time for the same product.
"""
from __future__ import annotations

from typing import Iterable, List, Mapping, Optional, Tuple, Union

from .schemas import CartItem, Fragrance, Product, SelectedFragrance, Slot

STANDARD_SLOT = Slot(size="Standard", label="Perfume Selection")

FragranceRef = Union[SelectedFragrance, str, None]


class FragranceUnavailableError(ValueError):
    """The fragrance cannot be bound to a slot (not offered, or out of stock)."""


def compute_slots(product: Product) -> List[Slot]:
    if not product.bottle_config:
        return [STANDARD_SLOT] if product.available_fragrances else []

    slots: List[Slot] = []
    for entry in product.bottle_config:
        slots.extend(Slot(size=entry.size, label=f"{entry.size} Bottle") for _ in range(entry.quantity))
    return slots


def resolve_fragrance(
    product: Product,
    fragrance_id: str,
    catalog: Optional[Mapping[str, Fragrance]] = None,
) -> Optional[Fragrance]:
    """Embedded fragrance first, then the optional catalog for id-only references."""
    fragrance = product.find_fragrance(fragrance_id)
    if fragrance is None and catalog is not None:
        fragrance = catalog.get(fragrance_id)
    return fragrance


def assignable_fragrances(
    product: Product,
    catalog: Optional[Mapping[str, Fragrance]] = None,
) -> List[Fragrance]:
    """In-stock fragrances a shopper may pick for a new slot assignment."""
    options: List[Fragrance] = []
    for ref in product.available_fragrances:
        fragrance = ref if isinstance(ref, Fragrance) else (catalog or {}).get(ref)
        if fragrance is not None and fragrance.in_stock:
            options.append(fragrance)
    return options


def bind_selection(
    item: CartItem,
    slot_index: int,
    fragrance_id: str,
    catalog: Optional[Mapping[str, Fragrance]] = None,
) -> List[Optional[SelectedFragrance]]:
    """Return the item's selections with ``fragrance_id`` bound at ``slot_index``.

    The fragrance name is copied at binding time so later catalog renames do
    not rewrite the cart. Earlier unset positions stay ``None``.
    """
    slots = compute_slots(item.product)
    if not 0 <= slot_index < len(slots):
        raise IndexError(f"Slot {slot_index} does not exist for '{item.product.name}' ({len(slots)} slots)")

    if not item.product.offers_fragrance(fragrance_id):
        raise FragranceUnavailableError(f"'{item.product.name}' does not offer fragrance {fragrance_id}")

    selections = list(item.selected_fragrances)
    current = selections[slot_index] if slot_index < len(selections) else None
    fragrance = resolve_fragrance(item.product, fragrance_id, catalog)

    rebinding_same = current is not None and current.fragrance_id == fragrance_id
    if not rebinding_same:
        if fragrance is None:
            raise FragranceUnavailableError(
                f"Stock for fragrance {fragrance_id} is unknown; pass a catalog that includes it"
            )
        if not fragrance.in_stock:
            raise FragranceUnavailableError(f"{fragrance.name} is out of stock")

    slot = slots[slot_index]
    if len(selections) <= slot_index:
        selections.extend([None] * (slot_index + 1 - len(selections)))
    selections[slot_index] = SelectedFragrance(
        fragrance_id=fragrance_id,
        fragrance_name=fragrance.name if fragrance is not None else (current.fragrance_name if rebinding_same else fragrance_id),
        size=slot.size,
        label=slot.label,
    )
    return selections


def missing_slots(item: CartItem) -> List[int]:
    """Indexes of slots with no bound fragrance."""
    selections = item.selected_fragrances
    missing = []
    for index in range(len(compute_slots(item.product))):
        selection = selections[index] if index < len(selections) else None
        if selection is None or not selection.fragrance_id:
            missing.append(index)
    return missing


def is_complete(item: CartItem) -> bool:
    return not missing_slots(item)


def unavailable_selections(
    item: CartItem,
    product: Optional[Product] = None,
    catalog: Optional[Mapping[str, Fragrance]] = None,
) -> List[SelectedFragrance]:
    """Bound selections whose fragrance is out of stock or no longer offered.

    ``product`` is a fresh catalog copy; without it the item's own snapshot is
    used, which only knows stock as of the time it was added. Fragrances the
    product names by id only are looked up in ``catalog``; when neither knows
    them, stock cannot be judged and the selection is not reported.
    """
    product = product or item.product
    unavailable = []
    for selection in item.selected_fragrances:
        if selection is None or not selection.fragrance_id:
            continue
        if not product.offers_fragrance(selection.fragrance_id):
            unavailable.append(selection)
            continue
        fragrance = resolve_fragrance(product, selection.fragrance_id, catalog)
        if fragrance is not None and not fragrance.in_stock:
            unavailable.append(selection)
    return unavailable


def selection_key(product_id: str, fragrances: Iterable[FragranceRef]) -> Tuple[str, Tuple[str, ...]]:
    """Merge key for add-to-cart: product id plus the sorted fragrance ids."""
    ids = []
    for ref in fragrances:
        if ref is None:
            continue
        fragrance_id = ref if isinstance(ref, str) else ref.fragrance_id
        if fragrance_id:
            ids.append(fragrance_id)
    return product_id, tuple(sorted(ids))
