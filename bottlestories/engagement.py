"""One-shot shopper submissions: product ratings, testimonials and enquiries.

Each keeps optimistic local state and restores it if the API call fails.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from .api_client import ApiError
from .schemas import Enquiry, RatingResponse, UserRatingStatus


class EngagementApi(Protocol):
    async def submit_rating(self, product_id: str, rating: int) -> RatingResponse:
        ...

    async def check_user_rating(self, product_id: str) -> UserRatingStatus:
        ...

    async def submit_testimonial(self, fields: Dict[str, Any], image_path: Optional[str] = None) -> Any:
        ...

    async def submit_enquiry(self, enquiry: Enquiry) -> Any:
        ...


class ProductRating:
    def __init__(self, api: EngagementApi, product_id: str) -> None:
        self.api = api
        self.product_id = product_id
        self.user_rating: Optional[int] = None
        self.average: Optional[float] = None
        self.reviews: Optional[int] = None

    @property
    def has_rated(self) -> bool:
        return self.user_rating is not None

    async def load(self) -> None:
        status = await self.api.check_user_rating(self.product_id)
        self.user_rating = status.rating if status.has_rated else None

    async def rate(self, value: int) -> RatingResponse:
        if not 1 <= value <= 5:
            raise ValueError(f"Rating must be between 1 and 5, got {value}")

        previous = self.user_rating
        self.user_rating = value
        try:
            response = await self.api.submit_rating(self.product_id, value)
        except ApiError:
            self.user_rating = previous
            raise

        if response.rating is not None:
            self.average = response.rating
        if response.reviews is not None:
            self.reviews = response.reviews
        return response


class TestimonialForm:
    REQUIRED = ("name", "message")

    def __init__(
        self,
        name: str = "",
        message: str = "",
        rating: int = 5,
        designation: str = "",
        image_path: Optional[str] = None,
    ) -> None:
        self.name = name
        self.message = message
        self.rating = rating
        self.designation = designation
        self.image_path = image_path
        self.submitted = False

    def missing_fields(self) -> List[str]:
        return [field for field in self.REQUIRED if not getattr(self, field).strip()]

    async def submit(self, api: EngagementApi) -> Any:
        missing = self.missing_fields()
        if missing:
            raise ValueError(f"Missing required fields: {', '.join(missing)}")
        if not 1 <= self.rating <= 5:
            raise ValueError(f"Rating must be between 1 and 5, got {self.rating}")

        fields = {
            "name": self.name.strip(),
            "message": self.message.strip(),
            "rating": str(self.rating),
            "designation": self.designation.strip() or None,
        }
        self.submitted = True
        try:
            return await api.submit_testimonial(fields, self.image_path)
        except ApiError:
            self.submitted = False
            raise


class EnquiryForm:
    REQUIRED = ("name", "email", "message")

    def __init__(self, enquiry: Optional[Enquiry] = None) -> None:
        self.enquiry = enquiry or Enquiry()
        self.submitted = False

    def missing_fields(self) -> List[str]:
        return [field for field in self.REQUIRED if not getattr(self.enquiry, field).strip()]

    async def submit(self, api: EngagementApi) -> Any:
        missing = self.missing_fields()
        if missing:
            raise ValueError(f"Missing required fields: {', '.join(missing)}")

        self.submitted = True
        try:
            result = await api.submit_enquiry(self.enquiry)
        except ApiError:
            self.submitted = False
            raise
        self.enquiry = Enquiry()
        return result
