import re

import pytest

from apps.core.errors import Conflict, NotFound, ValidationFailed
from apps.discounts.services import DiscountCodeError
from apps.orders.services import can_transition


def test_create_order_computes_totals_on_server(make_order, subscriber):
    subscriber(code='WELCOME10')
    order = make_order(discountCode='welcome10', totals={'total': 1})

    assert re.match(r'^ORD-\d{8}-[0-9A-F]{8}$', order['orderId'])
    assert order['totals']['subtotal'] == 200.0
    assert order['totals']['discount'] == 20.0
    assert order['totals']['total'] == 229.0
    assert order['appliedDiscount']['code'] == 'WELCOME10'
    assert order['status'] == 'pending'
    assert order['paymentStatus'] == 'pending'
    assert order['emailSent'] is False
    assert order['currency'] == 'SEK'
    assert [entry['description'] for entry in order['timeline']] == ['Order Placed']


def test_create_order_requires_email_and_items(services):
    with pytest.raises(ValidationFailed) as excinfo:
        services.orders.create_order({'customer': {'email': 'nope'}, 'items': []})
    assert excinfo.value.extra['fields'] == ['customer.email', 'items']


def test_create_order_with_invalid_code_fails(make_order):
    with pytest.raises(DiscountCodeError):
        make_order(discountCode='NOPE')


@pytest.mark.parametrize('current, target, allowed', [
    ('pending', 'processing', True),
    ('processing', 'confirmed', True),
    ('confirmed', 'shipped', True),
    ('shipped', 'delivered', True),
    ('delivered', 'completed', True),
    ('pending', 'shipped', False),
    ('shipped', 'processing', False),
    ('shipped', 'cancelled', True),
    ('delivered', 'cancelled', False),
    ('cancelled', 'pending', False),
    ('pending', 'pending', False),
])
def test_can_transition(current, target, allowed):
    assert can_transition(current, target) is allowed


class TestUpdateStatus:

    def test_advances_and_notifies(self, services, make_order, mailoutbox):
        order = make_order()
        updated = services.orders.update_status(order['orderId'], 'processing')

        assert updated['status'] == 'processing'
        assert updated['timeline'][-1]['status'] == 'processing'
        assert len(mailoutbox) == 1
        assert mailoutbox[0].to == ['ana@example.com']
        assert order['orderId'] in mailoutbox[0].subject

    def test_skipping_a_step_is_rejected(self, services, make_order):
        order = make_order()
        with pytest.raises(Conflict) as excinfo:
            services.orders.update_status(order['orderId'], 'shipped')
        assert excinfo.value.code == 'INVALID_STATUS_TRANSITION'
        assert services.orders.get_order(order['orderId'])['status'] == 'pending'

    def test_unknown_status(self, services, make_order):
        order = make_order()
        with pytest.raises(ValidationFailed):
            services.orders.update_status(order['orderId'], 'teleported')

    def test_full_lifecycle_appends_timeline(self, services, make_order, mailoutbox):
        order_id = make_order()['orderId']
        for status in ('processing', 'confirmed', 'shipped', 'delivered', 'completed'):
            services.orders.update_status(order_id, status, notify=False)
        order = services.orders.get_order(order_id)
        assert order['status'] == 'completed'
        assert len(order['timeline']) == 6
        assert mailoutbox == []


def test_soft_delete(services, make_order):
    order_id = make_order()['orderId']
    deleted = services.orders.delete_order(order_id)
    assert deleted['isDeleted'] is True
    assert deleted['deletedAt']
    with pytest.raises(NotFound):
        services.orders.get_order(order_id)
    assert services.orders.get_order(order_id, include_deleted=True)['orderId'] == order_id
