from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Protocol

from .config import Settings, load_pricing_config, settings as default_settings
from .schemas import CartItem


class ShippingPolicy(Protocol):
    def shipping_for(self, subtotal: float) -> float:
        ...


@dataclass(frozen=True)
class FlatRateShipping:
    """Free above ``free_threshold``, otherwise ``fee``.

    The storefront currently ships free on both sides of the threshold, which
    is what the default ``fee`` of zero reproduces.
    """

    free_threshold: float = 3000.0
    fee: float = 0.0

    def shipping_for(self, subtotal: float) -> float:
        if subtotal > self.free_threshold:
            return 0.0
        return self.fee

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None) -> "FlatRateShipping":
        cfg = cfg or default_settings
        return cls(free_threshold=cfg.free_shipping_threshold, fee=cfg.shipping_fee)

    @classmethod
    def from_config(cls, path: str | Path) -> "FlatRateShipping":
        shipping = load_pricing_config(path)["shipping"]
        return cls(
            free_threshold=float(shipping.get("free_threshold", cls.free_threshold)),
            fee=float(shipping.get("fee", cls.fee)),
        )


@dataclass(frozen=True)
class CartTotals:
    subtotal: float
    shipping: float
    total: float
    count: int

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def cart_totals(items: Iterable[CartItem], policy: Optional[ShippingPolicy] = None) -> CartTotals:
    items = list(items)
    policy = policy or FlatRateShipping.from_settings()
    subtotal = sum(item.product.price * item.quantity for item in items)
    shipping = policy.shipping_for(subtotal) if items else 0.0
    return CartTotals(
        subtotal=subtotal,
        shipping=shipping,
        total=subtotal + shipping,
        count=sum(item.quantity for item in items),
    )
