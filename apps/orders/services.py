"""
Pedidos.

El pedido se crea antes del pago con totales calculados en servidor; a partir
de ahí lo mueven el flujo de pagos (paymentStatus) y el panel (status).
`timeline` es un registro de auditoría que sólo crece.
"""
import logging
import uuid

from django.conf import settings

from apps.cart.services import validate_cart_item
from apps.cart.totals import items_subtotal
from apps.core.clock import now_iso, utcnow
from apps.core.errors import Conflict, NotFound, ValidationFailed

logger = logging.getLogger(__name__)

ORDERS = 'orders'

# Cada estado sólo avanza al siguiente, o a cancelado mientras no haya entrega
VALID_TRANSITIONS = {
    'pending': ['processing', 'cancelled'],
    'processing': ['confirmed', 'cancelled'],
    'confirmed': ['shipped', 'cancelled'],
    'shipped': ['delivered', 'cancelled'],
    'delivered': ['completed'],
    'completed': [],
    'cancelled': [],
}

STATUS_TEXT = {
    'pending': 'Order Placed',
    'processing': 'Processing',
    'confirmed': 'Order Confirmed',
    'shipped': 'Shipped',
    'delivered': 'Delivered',
    'completed': 'Completed',
    'cancelled': 'Cancelled',
}


def new_order_id():
    return f"ORD-{utcnow().strftime('%Y%m%d')}-{uuid.uuid4().hex[:8].upper()}"


def timeline_entry(status, description):
    return {'status': status, 'date': now_iso(), 'description': description}


def can_transition(current, target) -> bool:
    current = str(current or '').strip().lower()
    target = str(target or '').strip().lower()
    if not current or not target or current == target:
        return False
    return target in VALID_TRANSITIONS.get(current, [])


def customer_name(order):
    customer = order.get('customer') or {}
    return customer.get('name') or customer.get('firstName') or ''


class OrderService:

    def __init__(self, store, discounts, mailer):
        self.store = store
        self.discounts = discounts
        self.mailer = mailer

    def find_order(self, order_id):
        if not order_id:
            return None
        return self.store.find_one(ORDERS, {'orderId': order_id})

    def get_order(self, order_id, include_deleted=False):
        order = self.find_order(order_id)
        if order is None or (order.get('isDeleted') and not include_deleted):
            raise NotFound('Order not found', code='ORDER_NOT_FOUND')
        return order

    def create_order(self, data) -> dict:
        customer = data.get('customer') if isinstance(data.get('customer'), dict) else {}
        email = (customer.get('email') or '').strip().lower()
        missing = []
        if '@' not in email:
            missing.append('customer.email')
        items = data.get('items')
        if not isinstance(items, list) or not items:
            missing.append('items')
        if missing:
            raise ValidationFailed('Missing required order fields', fields=missing)
        for item in items:
            validate_cart_item(item)

        # Totales siempre en servidor; un código inválido es error (400)
        computed = self.discounts.calculate_order_totals(
            items_subtotal(items),
            data.get('shipping', 0),
            data.get('tax', 0),
            data.get('discountCode') or (data.get('appliedDiscount') or {}).get('code'),
        )

        timestamp = now_iso()
        order = {
            'orderId': new_order_id(),
            'customer': {
                'name': (customer.get('name') or '').strip(),
                'email': email,
                'phone': (customer.get('phone') or '').strip(),
            },
            'items': items,
            'totals': computed['totals'],
            'appliedDiscount': computed['appliedDiscount'],
            'shippingAddress': data.get('shippingAddress') or {},
            'shippingMethod': data.get('shippingMethod') or '',
            'currency': (data.get('currency') or settings.DEFAULT_CURRENCY).upper(),
            'language': data.get('language') or 'sv',
            'userId': data.get('userId'),
            'status': 'pending',
            'paymentStatus': 'pending',
            'paymentIntentId': data.get('paymentIntentId'),
            'emailSent': False,
            'isDeleted': False,
            'timeline': [timeline_entry('pending', 'Order Placed')],
            'createdAt': timestamp,
            'updatedAt': timestamp,
        }
        created = self.store.insert(ORDERS, order)
        logger.info("Orden %s creada (%s, total %s)", order['orderId'], email, order['totals']['total'])
        return created

    def update_status(self, order_id, new_status, note=None, notify=True) -> dict:
        order = self.get_order(order_id)
        current = order.get('status') or 'pending'
        target = str(new_status or '').strip().lower()
        if target not in STATUS_TEXT:
            raise ValidationFailed(f'Invalid target status: {target}', fields=['status'])
        if not can_transition(current, target):
            raise Conflict(
                f'Cannot change order status from {current} to {target}',
                code='INVALID_STATUS_TRANSITION',
                currentStatus=current,
            )

        matched = self.store.update(
            ORDERS,
            {'orderId': order_id, 'status': current},
            {
                '$set': {'status': target, 'updatedAt': now_iso()},
                '$push': {'timeline': timeline_entry(target, note or STATUS_TEXT[target])},
            },
        )
        if not matched:
            raise Conflict('Order status changed concurrently', code='STALE_ORDER_STATUS')

        order = self.get_order(order_id)
        logger.info("Orden %s: %s → %s", order_id, current, target)
        if notify:
            self._notify_status(order)
        return order

    def _notify_status(self, order):
        email = (order.get('customer') or {}).get('email')
        if not email:
            return
        result = self.mailer.send_order_status_updated(
            email, customer_name(order), order, language=order.get('language'),
        )
        if not result.success:
            logger.warning(
                "No se pudo notificar el estado de la orden %s: %s", order.get('orderId'), result.error,
            )

    def delete_order(self, order_id) -> dict:
        self.get_order(order_id)
        timestamp = now_iso()
        self.store.update(
            ORDERS,
            {'orderId': order_id},
            {'isDeleted': True, 'deletedAt': timestamp, 'updatedAt': timestamp},
        )
        logger.info("Orden %s marcada como eliminada", order_id)
        return self.get_order(order_id, include_deleted=True)
