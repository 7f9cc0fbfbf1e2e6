from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class WireModel(BaseModel):
    """Base for models exchanged with the API (camelCase / ``_id`` aliases)."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class FragranceNotes(WireModel):
    top: List[str] = Field(default_factory=list)
    middle: List[str] = Field(default_factory=list)
    base: List[str] = Field(default_factory=list)


class Fragrance(WireModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(alias="_id")
    name: str
    description: str = ""
    in_stock: bool = True
    image: Optional[str] = None
    notes: FragranceNotes = Field(default_factory=FragranceNotes)


class Tag(WireModel):
    id: str = Field(alias="_id")
    name: str


class BottleSize(WireModel):
    """One group of identical bottles inside a hamper, e.g. two 50ml bottles."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    size: str
    quantity: int = Field(1, ge=0)


class Product(WireModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(alias="_id")
    name: str
    description: str = ""
    price: float = Field(0.0, ge=0.0)
    original_price: Optional[float] = Field(None, alias="originalPrice")
    images: List[str] = Field(default_factory=list)
    available_fragrances: List[Union[Fragrance, str]] = Field(default_factory=list)
    bottle_config: Optional[List[BottleSize]] = Field(None, alias="bottleConfig")
    allow_custom_message: bool = False
    rating: Optional[float] = None
    reviews: Optional[int] = None
    tag: Optional[str] = None
    stock_quantity: Optional[int] = None
    is_active: bool = True

    def find_fragrance(self, fragrance_id: str) -> Optional[Fragrance]:
        """Return the embedded fragrance with this id, if the product carries one."""
        for ref in self.available_fragrances:
            if isinstance(ref, Fragrance) and ref.id == fragrance_id:
                return ref
        return None

    def offers_fragrance(self, fragrance_id: str) -> bool:
        return any(
            (ref.id if isinstance(ref, Fragrance) else ref) == fragrance_id
            for ref in self.available_fragrances
        )


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------

class Slot(BaseModel):
    """A bottle position derived from a product's bottle configuration."""

    model_config = ConfigDict(frozen=True)

    size: str
    label: str


class SelectedFragrance(WireModel):
    fragrance_id: str = Field(alias="fragranceId")
    fragrance_name: str = Field("", alias="fragranceName")
    size: str = ""
    label: str = ""


class CartItem(WireModel):
    cart_id: str = Field(alias="cartId")
    product: Product
    quantity: int = Field(1, ge=1)
    # Index == slot index; ``None`` marks a slot not chosen yet.
    selected_fragrances: List[Optional[SelectedFragrance]] = Field(
        default_factory=list, alias="selectedFragrances"
    )
    custom_message: Optional[str] = Field(None, alias="customMessage")

    @property
    def line_total(self) -> float:
        return self.product.price * self.quantity


# ---------------------------------------------------------------------------
# Checkout / orders
# ---------------------------------------------------------------------------

REQUIRED_SHIPPING_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "street",
    "city",
    "state",
    "zip",
)


class ShippingInfo(WireModel):
    """Shipping form. Fields default to empty so presence is checked at the gate."""

    first_name: str = Field("", alias="firstName")
    last_name: str = Field("", alias="lastName")
    email: str = ""
    phone: str = ""
    street: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    country: str = ""
    address_label: Optional[str] = Field(None, alias="addressLabel")


class OrderLine(WireModel):
    product: Optional[Product] = None
    quantity: int = 1
    price: Optional[float] = None
    selected_fragrances: List[Optional[SelectedFragrance]] = Field(
        default_factory=list, alias="selectedFragrances"
    )
    custom_message: Optional[str] = Field(None, alias="customMessage")


class Order(WireModel):
    id: str = Field(alias="_id")
    items: List[OrderLine] = Field(default_factory=list)
    shipping_address: Dict[str, Any] = Field(default_factory=dict, alias="shippingAddress")
    total_amount: float = Field(0.0, alias="totalAmount")
    status: str = "pending"
    payment_method: str = Field("Cash on Delivery", alias="paymentMethod")
    tracking_id: Optional[str] = Field(None, alias="trackingId")
    tracking_url: Optional[str] = Field(None, alias="trackingUrl")
    created_at: Optional[str] = Field(None, alias="createdAt")


class Pagination(WireModel):
    page: int = 1
    limit: int = 10
    total: int = 0
    has_more: bool = Field(False, alias="hasMore")


class OrdersPage(WireModel):
    data: List[Order] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)


# ---------------------------------------------------------------------------
# Engagement / profile
# ---------------------------------------------------------------------------

class RatingResponse(WireModel):
    message: str = ""
    rating: Optional[float] = None
    reviews: Optional[int] = None


class UserRatingStatus(WireModel):
    has_rated: bool = Field(False, alias="hasRated")
    rating: Optional[int] = None


class Testimonial(WireModel):
    id: Optional[str] = Field(None, alias="_id")
    name: str
    message: str
    rating: int = Field(5, ge=1, le=5)
    designation: Optional[str] = None
    image: Optional[str] = None
    is_approved: bool = Field(False, alias="isApproved")


class Enquiry(WireModel):
    name: str = ""
    email: str = ""
    phone: str = ""
    subject: str = ""
    message: str = ""


class Address(WireModel):
    id: Optional[str] = Field(None, alias="_id")
    label: str = "Home"
    street: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    country: str = ""
    is_default: bool = Field(False, alias="isDefault")


class UserProfile(WireModel):
    id: str = Field("", alias="_id")
    name: str = ""
    email: str = ""
    role: Literal["admin", "worker", "customer"] = "customer"
    phone: Optional[str] = None
    dob: Optional[str] = None
    profile_picture: Optional[str] = Field(None, alias="profilePicture")


class LoginResponse(WireModel):
    token: str
    user: Optional[Dict[str, Any]] = None
