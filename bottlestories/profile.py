from __future__ import annotations

from typing import Any, List, Optional, Protocol, Tuple

from .api_client import ApiError
from .schemas import Address, UserProfile
from .session import SessionStore


class ProfileApi(Protocol):
    async def get_profile(self) -> Tuple[UserProfile, List[Address]]:
        ...

    async def update_profile(self, name: str, phone: str, dob: str) -> Any:
        ...

    async def add_address(self, address: Address) -> Address:
        ...

    async def delete_address(self, address_id: str) -> None:
        ...


class ProfileBook:
    """The signed-in user's profile and address book."""

    def __init__(self, api: ProfileApi, session: SessionStore) -> None:
        self.api = api
        self.session = session
        self.user: Optional[UserProfile] = None
        self.addresses: List[Address] = []

    @property
    def default_address(self) -> Optional[Address]:
        return next((a for a in self.addresses if a.is_default), self.addresses[0] if self.addresses else None)

    async def load(self) -> UserProfile:
        self.user, self.addresses = await self.api.get_profile()
        self._cache_user()
        return self.user

    async def update(self, name: str, phone: str = "", dob: str = "") -> Optional[UserProfile]:
        await self.api.update_profile(name, phone, dob)
        if self.user is not None:
            self.user = self.user.model_copy(update={"name": name, "phone": phone or None, "dob": dob or None})
            self._cache_user()
        return self.user

    async def add_address(self, address: Address) -> Address:
        saved = await self.api.add_address(address)
        if saved.is_default:
            self.addresses = [a.model_copy(update={"is_default": False}) for a in self.addresses]
        self.addresses.append(saved)
        return saved

    async def delete_address(self, address_id: str) -> bool:
        """Remove locally first; the address comes back if the API refuses."""
        previous = list(self.addresses)
        self.addresses = [a for a in self.addresses if a.id != address_id]
        if len(self.addresses) == len(previous):
            return False
        try:
            await self.api.delete_address(address_id)
        except ApiError:
            self.addresses = previous
            raise
        return True

    def _cache_user(self) -> None:
        if self.user is not None:
            self.session.cache_user(self.user.to_wire())
