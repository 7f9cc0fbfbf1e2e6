import pytest

from bottlestories.api_client import ApiClient, ApiError, SessionExpiredError
from bottlestories.cart import CartStore
from bottlestories.checkout import (
    LOGIN_PATH,
    ORDER_FAILED_MESSAGE,
    ORDERS_PATH,
    CheckoutFlow,
    CheckoutStep,
    missing_shipping_fields,
    validate_cart,
)
from bottlestories.config import Settings
from bottlestories.pricing import FlatRateShipping, cart_totals
from bottlestories.schemas import CartItem, ShippingInfo
from bottlestories.services import StorefrontApi
from bottlestories.storage import TOKEN_KEY, MemoryStorage

from factories import StubSession, complete_selection, make_fragrance, make_product, stub_response


async def _store(api, storage):
    store = CartStore(api, storage)
    await store.init()
    return store


def _complete_item(cart_id="c1", product=None, quantity=1):
    product = product or make_product()
    return CartItem(
        cart_id=cart_id,
        product=product,
        quantity=quantity,
        selected_fragrances=complete_selection(product, ["a", "b", "c"]),
    )


def _flow(store, api, test_settings, policy=None):
    return CheckoutFlow(store, api, shipping_policy=policy, settings=test_settings)


async def _at_shipping(store, api, test_settings, direct=None):
    flow = _flow(store, api, test_settings)
    flow.begin(direct)
    assert flow.proceed_to_shipping() is CheckoutStep.SHIPPING_ENTRY
    return flow


# ---------------------------------------------------------------------------
# validate_cart
# ---------------------------------------------------------------------------

def test_validate_cart_names_first_incomplete_item():
    product = make_product(name="Rose Hamper")
    ready = _complete_item("ok")
    partial = CartItem(
        cart_id="needs-work",
        product=product,
        quantity=1,
        selected_fragrances=complete_selection(product, ["a"]),
    )

    result = validate_cart([ready, partial])

    assert not result.valid
    assert result.cart_id == "needs-work"
    assert "Rose Hamper" in result.message
    assert "2 remaining" in result.message


def test_validate_cart_passes_complete_items():
    assert validate_cart([_complete_item()]).valid
    assert validate_cart([]).valid


def test_validate_cart_flags_out_of_stock_against_fresh_products():
    item = _complete_item()
    fresh = make_product(fragrances=[make_fragrance("a"), make_fragrance("b", in_stock=False), make_fragrance("c")])

    result = validate_cart([item], {"p1": fresh})

    assert not result.valid
    assert "out of stock" in result.message
    assert result.cart_id == "c1"


def test_missing_shipping_fields_checks_presence_only(shipping):
    assert missing_shipping_fields(shipping) == []

    blank = shipping.model_copy(update={"city": "   ", "email": ""})
    assert missing_shipping_fields(blank) == ["email", "city"]

    odd = shipping.model_copy(update={"email": "not-an-email", "zip": "x"})
    assert missing_shipping_fields(odd) == []


# ---------------------------------------------------------------------------
# gates
# ---------------------------------------------------------------------------

async def test_begin_without_session_redirects_to_login(api, storage, test_settings):
    store = await _store(api, storage)
    store.add_to_cart(make_product())
    flow = _flow(store, api, test_settings)

    assert flow.begin() is CheckoutStep.BROWSING
    assert flow.redirect == LOGIN_PATH


async def test_begin_with_empty_cart_stays_browsing(api, signed_in_storage, test_settings):
    store = await _store(api, signed_in_storage)
    flow = _flow(store, api, test_settings)

    assert flow.begin() is CheckoutStep.BROWSING
    assert flow.message == "Your cart is empty."


async def test_incomplete_item_blocks_shipping(api, signed_in_storage, test_settings):
    store = await _store(api, signed_in_storage)
    item = store.add_to_cart(make_product(), fragrances=complete_selection(make_product(), ["a", "b"]))
    flow = _flow(store, api, test_settings)
    flow.begin()

    assert flow.proceed_to_shipping() is CheckoutStep.REVIEWING
    assert flow.attention_cart_id == item.cart_id

    store.bind_fragrance(item.cart_id, 2, "c")
    assert flow.proceed_to_shipping() is CheckoutStep.SHIPPING_ENTRY
    assert flow.message is None


async def test_transitions_out_of_order_raise(api, signed_in_storage, test_settings, shipping):
    store = await _store(api, signed_in_storage)
    flow = _flow(store, api, test_settings)

    with pytest.raises(RuntimeError):
        flow.proceed_to_shipping()
    with pytest.raises(RuntimeError):
        await flow.submit(shipping)


async def test_missing_shipping_field_blocks_submission(api, signed_in_storage, test_settings, shipping):
    store = await _store(api, signed_in_storage)
    store.add_to_cart(make_product(), fragrances=complete_selection(make_product(), ["a", "b", "c"]))
    flow = await _at_shipping(store, api, test_settings)

    step = await flow.submit(shipping.model_copy(update={"first_name": "", "zip": ""}))

    assert step is CheckoutStep.SHIPPING_ENTRY
    assert flow.message == "Please fill in: first name, zip."
    assert api.orders == []


# ---------------------------------------------------------------------------
# submission
# ---------------------------------------------------------------------------

async def test_successful_order_clears_cart_and_redirects(api, signed_in_storage, test_settings, shipping):
    store = await _store(api, signed_in_storage)
    product = make_product(price=1200.0)
    store.add_to_cart(product, 2, fragrances=complete_selection(product, ["a", "b", "c"]))
    flow = await _at_shipping(store, api, test_settings)

    step = await flow.submit(shipping)
    await store.flush()

    assert step is CheckoutStep.SUCCESS
    assert flow.redirect == ORDERS_PATH
    assert flow.order.id == "order-1"
    assert api.orders[0]["total"] == 2400.0
    assert api.orders[0]["shipping"].first_name == "Asha"
    assert store.cart == []
    assert api.saved[-1] == []


async def test_failed_order_keeps_cart_and_allows_retry(api, signed_in_storage, test_settings, shipping):
    store = await _store(api, signed_in_storage)
    store.add_to_cart(make_product(), fragrances=complete_selection(make_product(), ["a", "b", "c"]))
    flow = await _at_shipping(store, api, test_settings)

    api.failures["submit_order"] = ApiError("Insufficient stock", status_code=400)
    assert await flow.submit(shipping) is CheckoutStep.FAILURE
    assert flow.message == "Insufficient stock"
    assert len(store.cart) == 1

    del api.failures["submit_order"]
    assert await flow.submit(shipping) is CheckoutStep.SUCCESS
    assert store.cart == []


async def test_expired_session_during_submit_redirects_to_login(api, signed_in_storage, test_settings, shipping):
    store = await _store(api, signed_in_storage)
    store.add_to_cart(make_product(), fragrances=complete_selection(make_product(), ["a", "b", "c"]))
    flow = await _at_shipping(store, api, test_settings)

    api.failures["submit_order"] = SessionExpiredError("Session expired. Please login again.", status_code=401)

    assert await flow.submit(shipping) is CheckoutStep.FAILURE
    assert flow.redirect == LOGIN_PATH
    assert len(store.cart) == 1


async def test_direct_checkout_leaves_persistent_cart_alone(api, signed_in_storage, test_settings, shipping):
    store = await _store(api, signed_in_storage)
    store.add_to_cart(make_product("kept"), fragrances=complete_selection(make_product("kept"), ["a", "b", "c"]))
    store.start_direct_checkout([_complete_item("buy-now", make_product("p9", price=300.0))])
    flow = await _at_shipping(store, api, test_settings)

    assert flow.direct
    assert await flow.submit(shipping) is CheckoutStep.SUCCESS

    assert [i.product.id for i in api.orders[0]["items"]] == ["p9"]
    assert store.direct_cart == []
    assert [i.product.id for i in store.cart] == ["kept"]


async def test_begin_can_force_persistent_cart(api, signed_in_storage, test_settings):
    store = await _store(api, signed_in_storage)
    store.add_to_cart(make_product())
    store.start_direct_checkout([_complete_item("buy-now")])
    flow = _flow(store, api, test_settings)

    flow.begin(direct=False)

    assert not flow.direct
    assert flow.items[0].cart_id == store.cart[0].cart_id


async def test_exit_discards_abandoned_direct_cart(api, signed_in_storage, test_settings):
    store = await _store(api, signed_in_storage)
    store.start_direct_checkout([_complete_item("buy-now")])
    flow = _flow(store, api, test_settings)
    flow.begin()

    flow.exit()

    assert store.direct_cart == []
    assert flow.step is CheckoutStep.BROWSING


async def test_stock_recheck_sends_flow_back_to_review(api, signed_in_storage, shipping):
    store = await _store(api, signed_in_storage)
    item = store.add_to_cart(make_product(), fragrances=complete_selection(make_product(), ["a", "b", "c"]))
    api.products["p1"] = make_product(fragrances=[make_fragrance("a"), make_fragrance("b"), make_fragrance("c", in_stock=False)])
    flow = await _at_shipping(store, api, Settings(recheck_stock_at_checkout=True))

    step = await flow.submit(shipping)

    assert step is CheckoutStep.REVIEWING
    assert flow.attention_cart_id == item.cart_id
    assert api.orders == []


async def test_accepted_order_without_order_body_still_succeeds(api, signed_in_storage, test_settings, shipping):
    store = await _store(api, signed_in_storage)
    store.add_to_cart(make_product(), fragrances=complete_selection(make_product(), ["a", "b", "c"]))
    http = StubSession(stub_response(201, {"message": "Order placed"}))
    storefront = StorefrontApi(ApiClient(base_url="https://api.example/api", storage=MemoryStorage({TOKEN_KEY: "tok"}), session=http))
    flow = await _at_shipping(store, storefront, test_settings)

    assert await flow.submit(shipping) is CheckoutStep.SUCCESS

    assert http.calls[0]["url"].endswith("/orders")
    assert flow.redirect == ORDERS_PATH
    assert store.cart == []


async def test_unexpected_submit_error_fails_and_allows_retry(api, signed_in_storage, test_settings, shipping):
    store = await _store(api, signed_in_storage)
    store.add_to_cart(make_product(), fragrances=complete_selection(make_product(), ["a", "b", "c"]))
    flow = await _at_shipping(store, api, test_settings)

    api.failures["submit_order"] = KeyError("_id")
    assert await flow.submit(shipping) is CheckoutStep.FAILURE
    assert flow.message == ORDER_FAILED_MESSAGE
    assert len(store.cart) == 1

    del api.failures["submit_order"]
    assert await flow.submit(shipping) is CheckoutStep.SUCCESS


async def test_stock_recheck_resolves_fragrances_named_by_id(api, signed_in_storage, shipping):
    store = await _store(api, signed_in_storage)
    item = store.add_to_cart(make_product(), fragrances=complete_selection(make_product(), ["a", "b", "c"]))
    api.products["p1"] = make_product(fragrances=["a", "b", "c"])
    api.fragrances = {fid: make_fragrance(fid, in_stock=fid != "b") for fid in "abc"}
    flow = await _at_shipping(store, api, Settings(recheck_stock_at_checkout=True))

    assert await flow.submit(shipping) is CheckoutStep.REVIEWING
    assert flow.attention_cart_id == item.cart_id
    assert "B in" in flow.message
    assert api.orders == []


async def test_stock_recheck_tolerates_unreachable_catalog(api, signed_in_storage, shipping):
    store = await _store(api, signed_in_storage)
    store.add_to_cart(make_product(), fragrances=complete_selection(make_product(), ["a", "b", "c"]))
    api.failures["get_product"] = ApiError("Product not found", status_code=404)
    flow = await _at_shipping(store, api, Settings(recheck_stock_at_checkout=True))

    assert await flow.submit(shipping) is CheckoutStep.SUCCESS


# ---------------------------------------------------------------------------
# totals
# ---------------------------------------------------------------------------

def test_default_shipping_is_free_on_both_sides_of_threshold():
    policy = FlatRateShipping()
    assert policy.shipping_for(500.0) == 0.0
    assert policy.shipping_for(5000.0) == 0.0


def test_flat_rate_fee_applies_at_or_below_threshold():
    policy = FlatRateShipping(free_threshold=3000.0, fee=99.0)
    assert policy.shipping_for(3000.0) == 99.0
    assert policy.shipping_for(3000.01) == 0.0


def test_cart_totals_adds_shipping():
    items = [_complete_item(product=make_product(price=1000.0), quantity=2)]
    totals = cart_totals(items, FlatRateShipping(fee=150.0))

    assert totals.as_dict() == {"subtotal": 2000.0, "shipping": 150.0, "total": 2150.0, "count": 2}


def test_cart_totals_for_empty_cart_charges_nothing():
    totals = cart_totals([], FlatRateShipping(fee=150.0))
    assert (totals.subtotal, totals.shipping, totals.total, totals.count) == (0, 0.0, 0, 0)


async def test_flow_totals_follow_active_cart(api, signed_in_storage, test_settings):
    store = await _store(api, signed_in_storage)
    store.add_to_cart(make_product(price=100.0), 3)
    flow = _flow(store, api, test_settings, policy=FlatRateShipping(free_threshold=250.0, fee=40.0))
    flow.begin()

    totals = flow.totals()

    assert totals.subtotal == 300.0
    assert totals.shipping == 0.0
