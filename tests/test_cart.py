"""
Cart line bookkeeping and checkout pricing.
"""

import random

import pytest

from storefront.cart import Cart, PricingPolicy, round_half_up
from storefront.errors import InvalidQuantity
from storefront.schemas import Product


def test_add_and_price_two_items(tee):
    cart = Cart()
    cart.add(tee, "M", "Black", 2)

    subtotal = cart.subtotal()
    assert subtotal == 1000
    assert cart.shipping_fee(subtotal) == 0
    assert cart.tax(subtotal) == 180
    assert cart.grand_total() == 1180


def test_same_combination_increments_quantity(tee):
    cart = Cart()
    cart.add(tee, "M", "Black", 2)
    cart.add(tee, "M", "Black", 1)

    assert len(cart) == 1
    assert cart.get("p1", "M", "Black").quantity == 3
    assert cart.subtotal() == 1500


def test_different_size_or_color_is_a_new_line(tee):
    cart = Cart()
    cart.add(tee, "M", "Black")
    cart.add(tee, "L", "Black")
    cart.add(tee, "M", "White")

    assert len(cart) == 3
    assert [line.key for line in cart.lines()] == [
        ("p1", "M", "Black"),
        ("p1", "L", "Black"),
        ("p1", "M", "White"),
    ]


@pytest.mark.parametrize("qty", [0, -1])
def test_add_rejects_non_positive_quantity(tee, qty):
    cart = Cart()
    with pytest.raises(InvalidQuantity):
        cart.add(tee, "M", "Black", qty)
    assert len(cart) == 0


def test_set_quantity_replaces_and_zero_removes(tee):
    cart = Cart()
    cart.add(tee, "M", "Black", 2)

    cart.set_quantity("p1", "M", "Black", 5)
    assert cart.item_count() == 5

    cart.set_quantity("p1", "M", "Black", 0)
    assert cart.get("p1", "M", "Black") is None
    assert cart.item_count() == 0


def test_set_quantity_on_missing_line_is_noop(tee):
    cart = Cart()
    cart.set_quantity("p1", "M", "Black", 3)
    assert len(cart) == 0


def test_remove_missing_line_is_noop(tee):
    cart = Cart()
    cart.add(tee, "M", "Black")
    cart.remove("p1", "L", "Black")
    assert len(cart) == 1
    cart.remove("p1", "M", "Black")
    assert len(cart) == 0


def test_subtotal_uses_current_product_price(tee):
    cart = Cart()
    cart.add(tee, "M", "Black", 2)
    tee.price = 450
    assert cart.subtotal() == 900


def test_shipping_threshold_is_strictly_greater():
    cart = Cart()
    assert cart.shipping_fee(999) == 50
    assert cart.shipping_fee(1000) == 0
    assert cart.shipping_fee(0) == 50


def test_tax_rounds_half_up():
    cart = Cart()
    # 25 * 0.18 = 4.5, 75 * 0.18 = 13.5
    assert cart.tax(25) == 5
    assert cart.tax(75) == 14
    assert cart.tax(10) == 2


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(2.49) == 2


def test_custom_policy(tee):
    cart = Cart(PricingPolicy(free_shipping_threshold=100, shipping_fee=10, tax_rate=0.05))
    cart.add(tee, "M", "Black")
    assert cart.grand_total() == 500 + 0 + 25


def test_totals_applies_discount_after_tax_and_shipping(tee):
    cart = Cart()
    cart.add(tee, "M", "Black", 3)
    totals = cart.totals(discount=150)
    assert totals.subtotal == 1500
    assert totals.shipping_fee == 0
    assert totals.tax == 270
    assert totals.discount == 150
    assert totals.total == 1620
    assert totals.item_count == 3


def test_totals_caps_discount_at_subtotal(tee):
    cart = Cart()
    cart.add(tee, "M", "Black")
    assert cart.totals(discount=10_000).discount == 500


def test_item_count_tracks_random_mutations(tee, jacket):
    rng = random.Random(1234)
    cart = Cart()
    expected = {}
    keys = [(p, s, c) for p in (tee, jacket) for s in ("M", "L") for c in ("Black", "Brown")]

    for _ in range(500):
        product, size, color = rng.choice(keys)
        key = (product.id, size, color)
        op = rng.choice(["add", "set", "remove"])
        if op == "add":
            qty = rng.randint(1, 4)
            cart.add(product, size, color, qty)
            expected[key] = expected.get(key, 0) + qty
        elif op == "set":
            qty = rng.randint(-2, 5)
            cart.set_quantity(product.id, size, color, qty)
            if qty <= 0:
                expected.pop(key, None)
            elif key in expected:
                expected[key] = qty
        else:
            cart.remove(product.id, size, color)
            expected.pop(key, None)

        assert {line.key: line.quantity for line in cart} == expected
        assert all(line.quantity > 0 for line in cart)
        assert cart.item_count() == sum(expected.values())


def _grand_total_for(subtotal):
    cart = Cart()
    if subtotal:
        cart.add(Product(id="x", name="x", price=subtotal, category="c"), "M", "Black")
    return cart.grand_total()


@pytest.mark.parametrize("band", [range(0, 1000), range(1000, 5000)])
def test_grand_total_non_decreasing_within_shipping_band(band):
    totals = [_grand_total_for(s) for s in band]
    assert totals == sorted(totals)


def test_grand_total_drops_when_shipping_becomes_free():
    assert _grand_total_for(999) == 999 + 50 + 180
    assert _grand_total_for(1000) == 1180
