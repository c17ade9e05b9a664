import logging

from apps.core.clock import now_iso
from apps.core.errors import NotFound, ValidationFailed
from apps.core.money import as_number
from apps.discounts.services import DiscountCodeError, calculate_discount_amount

from .cart import Cart
from .totals import calculate_cart_totals, ensure_cart_totals

logger = logging.getLogger(__name__)

CARTS = 'carts'
REQUIRED_ITEM_FIELDS = ('id', 'name', 'price', 'quantity')


def validate_cart_item(data):
    """Forma mínima de una línea: id, name, price >= 0, quantity entera > 0."""
    if not isinstance(data, dict):
        raise ValidationFailed('Item must be an object', code='INVALID_ITEM')
    missing = [name for name in REQUIRED_ITEM_FIELDS if data.get(name) in (None, '')]
    if missing:
        raise ValidationFailed('Missing required item fields', fields=missing, code='INVALID_ITEM')
    price = as_number(data.get('price'))
    if price is None or price < 0:
        raise ValidationFailed('Price must be a non-negative number', fields=['price'], code='INVALID_ITEM')
    if not _is_quantity(data.get('quantity')) or data['quantity'] < 1:
        raise ValidationFailed('Quantity must be a positive integer', fields=['quantity'], code='INVALID_ITEM')


def _is_quantity(value):
    return isinstance(value, int) and not isinstance(value, bool)


def _is_email(value):
    return isinstance(value, str) and '@' in value and '.' in value.rsplit('@', 1)[-1]


def empty_cart(user_id):
    timestamp = now_iso()
    return {
        'userId': user_id,
        'items': [],
        'totals': calculate_cart_totals({'items': []}),
        'appliedDiscount': None,
        'email': None,
        'createdAt': timestamp,
        'updatedAt': timestamp,
    }


class CartService:
    """Operaciones del carrito; cada mutación recalcula y persiste los totales."""

    def __init__(self, store, discounts):
        self.store = store
        self.discounts = discounts

    # -- Persistencia -------------------------------------------------------

    def _load(self, user_id):
        cart = self.store.find_one(CARTS, {'userId': user_id})
        if cart is None:
            return None
        cart.pop('_id', None)
        return ensure_cart_totals(cart)

    def _load_or_new(self, user_id):
        return self._load(user_id) or empty_cart(user_id)

    def _require(self, user_id):
        cart = self._load(user_id)
        if cart is None:
            raise NotFound('Cart not found', code='CART_NOT_FOUND')
        return cart

    def _save(self, cart):
        cart['updatedAt'] = now_iso()
        ensure_cart_totals(cart)
        self.store.upsert(CARTS, {'userId': cart['userId']}, {'$set': {
            key: value for key, value in cart.items() if key != '_id'
        }})
        return cart

    def _reprice(self, cart):
        """Recalcula el descuento aplicado (por porcentaje) y los totales."""
        totals = cart.get('totals') if isinstance(cart.get('totals'), dict) else {}
        subtotal = Cart(cart).get_total_price()
        applied = cart.get('appliedDiscount')
        discount = 0.0
        if applied:
            discount = calculate_discount_amount(subtotal, applied.get('percentage'))
            applied['amount'] = discount
        totals['discount'] = discount
        cart['totals'] = totals
        cart['totals'] = calculate_cart_totals(cart)
        return cart

    # -- Operaciones --------------------------------------------------------

    def get_cart(self, user_id):
        return self._load_or_new(user_id)

    def add_item(self, user_id, item_data):
        validate_cart_item(item_data)
        cart = self._load_or_new(user_id)
        Cart(cart).add(item_data, quantity=item_data['quantity'])
        return self._save(self._reprice(cart))

    def update_item(self, user_id, cart_item_id, quantity):
        if not _is_quantity(quantity) or quantity < 0:
            raise ValidationFailed(
                'Quantity must be a non-negative integer', fields=['quantity'], code='INVALID_QUANTITY',
            )
        cart = self._require(user_id)
        if not Cart(cart).update(cart_item_id, quantity):
            raise NotFound('Item not found in cart', code='ITEM_NOT_FOUND')
        return self._save(self._reprice(cart))

    def remove_item(self, user_id, cart_item_id):
        cart = self._require(user_id)
        if not Cart(cart).remove(cart_item_id):
            raise NotFound('Item not found in cart', code='ITEM_NOT_FOUND')
        return self._save(self._reprice(cart))

    def clear_cart(self, user_id) -> bool:
        return bool(self.store.delete(CARTS, {'userId': user_id}))

    def save_email(self, user_id, email):
        email = (email or '').strip().lower() if isinstance(email, str) else ''
        if not _is_email(email):
            raise ValidationFailed('A valid email is required', fields=['email'], code='INVALID_EMAIL')
        cart = self._load_or_new(user_id)
        cart['email'] = email
        return self._save(cart)

    def sync_cart(self, user_id, items, email=None):
        """
        Sustituye las líneas por la instantánea del cliente y vuelve a aplicar
        el descuento por código; si el código ya no es válido se descarta.
        """
        if not isinstance(items, list):
            raise ValidationFailed('Items must be a list', fields=['items'], code='INVALID_ITEMS')
        cart = self._load_or_new(user_id)
        Cart(cart).replace(items)
        if isinstance(email, str) and _is_email(email.strip()):
            cart['email'] = email.strip().lower()

        totals = calculate_cart_totals({'items': cart['items'], 'totals': {
            'shipping': cart['totals'].get('shipping'),
            'tax': cart['totals'].get('tax'),
        }})
        applied = cart.get('appliedDiscount')
        if applied and applied.get('code'):
            try:
                result = self.discounts.calculate_order_totals(
                    totals['subtotal'], totals['shipping'], totals['tax'], applied['code'],
                )
            except DiscountCodeError as exc:
                logger.info(
                    "Carrito %s: código %s descartado en sync (%s)",
                    user_id, applied['code'], exc.validation.error,
                )
                cart['appliedDiscount'] = None
            else:
                totals = result['totals']
                cart['appliedDiscount'] = result['appliedDiscount']
        cart['totals'] = totals
        return self._save(cart)

    def apply_discount(self, user_id, code):
        cart = self._require(user_id)
        validation = self.discounts.validate_discount_code(code)
        if not validation.valid:
            raise DiscountCodeError(validation)
        cart['appliedDiscount'] = {
            'code': validation.code,
            'percentage': validation.percentage,
            'amount': 0.0,
            'appliedAt': now_iso(),
        }
        return self._save(self._reprice(cart))

    def remove_discount(self, user_id):
        cart = self._require(user_id)
        cart['appliedDiscount'] = None
        return self._save(self._reprice(cart))
