from __future__ import annotations

import pytest

from bottlestories.config import Settings
from bottlestories.schemas import ShippingInfo
from bottlestories.storage import MemoryStorage, TOKEN_KEY

from factories import FakeStorefrontApi


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def signed_in_storage() -> MemoryStorage:
    return MemoryStorage({TOKEN_KEY: "token-123"})


@pytest.fixture
def api() -> FakeStorefrontApi:
    return FakeStorefrontApi()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(recheck_stock_at_checkout=False, autosave_debounce=0.0)


@pytest.fixture
def shipping() -> ShippingInfo:
    return ShippingInfo(
        firstName="Asha",
        lastName="Rao",
        email="asha@example.com",
        phone="9876543210",
        street="12 Rose Lane",
        city="Pune",
        state="MH",
        zip="411001",
    )
