import math

import pytest

from apps.cart.totals import TOTAL_FIELDS, calculate_cart_totals, ensure_cart_totals, items_subtotal
from apps.core.money import as_number, from_cents, round_currency, to_cents


@pytest.mark.parametrize('value', [None, 'abc', '12', True, math.nan, math.inf, [1]])
def test_as_number_treats_corrupt_values_as_absent(value):
    assert as_number(value) is None


def test_round_currency_rounds_half_up():
    assert round_currency(0.005) == 0.01
    assert round_currency(2.675) == 2.68
    assert round_currency(10) == 10.0
    assert round_currency(None) == 0.0


def test_cents_conversion():
    assert to_cents(229) == 22900
    assert to_cents(19.99) == 1999
    assert from_cents(1999) == 19.99


def test_items_subtotal_skips_broken_lines():
    items = [
        {'price': 100, 'quantity': 2},
        {'price': 49.5, 'quantity': 1},
        {'price': 'free', 'quantity': 1},
        'garbage',
    ]
    assert items_subtotal(items) == 249.5


def test_calculate_cart_totals_keeps_invariants():
    cart = {
        'items': [{'price': 100, 'quantity': 2}, {'price': 49.5, 'quantity': 1}],
        'totals': {'discount': 24.95, 'shipping': 49, 'tax': 0},
    }
    totals = calculate_cart_totals(cart)
    assert totals == {
        'subtotal': 249.5,
        'discount': 24.95,
        'discountedSubtotal': 224.55,
        'shipping': 49.0,
        'tax': 0.0,
        'total': 273.55,
    }


def test_discount_larger_than_subtotal_never_goes_negative():
    totals = calculate_cart_totals({'items': [{'price': 10, 'quantity': 1}], 'totals': {'discount': 50}})
    assert totals['discountedSubtotal'] == 0.0
    assert totals['total'] == 0.0


class TestEnsureCartTotals:

    def test_missing_totals_are_rebuilt_from_items(self):
        cart = ensure_cart_totals({'items': [{'price': 10, 'quantity': 3}]})
        assert cart['totals']['subtotal'] == 30.0
        assert cart['totals']['total'] == 30.0
        assert set(cart['totals']) == set(TOTAL_FIELDS)

    def test_valid_shipping_survives_missing_subtotal(self):
        cart = {'items': [{'price': 10, 'quantity': 3}], 'totals': {'subtotal': None, 'shipping': 29}}
        totals = ensure_cart_totals(cart)['totals']
        assert totals['subtotal'] == 30.0
        assert totals['shipping'] == 29
        assert totals['total'] == 59.0

    def test_existing_discount_is_not_lost(self):
        cart = {'items': [], 'totals': {'subtotal': 100, 'discount': 10}}
        totals = ensure_cart_totals(cart)['totals']
        assert totals['discount'] == 10
        assert totals['discountedSubtotal'] == 90.0
        assert totals['total'] == 90.0

    def test_corrupt_values_become_numbers(self):
        cart = {'items': [], 'totals': {'subtotal': 'abc', 'tax': math.nan, 'total': math.nan}}
        totals = ensure_cart_totals(cart)['totals']
        for name in TOTAL_FIELDS:
            assert as_number(totals[name]) is not None, name
        assert totals['total'] == 0.0

    def test_is_idempotent(self):
        cart = {'items': [{'price': 19.99, 'quantity': 3}], 'totals': {'shipping': 'x'}}
        first = dict(ensure_cart_totals(cart)['totals'])
        second = ensure_cart_totals(cart)['totals']
        assert first == second
