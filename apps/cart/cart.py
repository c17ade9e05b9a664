"""
Carrito de compras sobre su documento del store.
Una línea se identifica por (id, sizeId, colorId, variantId): añadir la
misma combinación suma cantidad en lugar de crear otra línea.
"""
import secrets
import time

from django.conf import settings

from apps.core.clock import now_iso
from apps.core.money import as_number

from .totals import items_subtotal

MERGE_FIELDS = ('id', 'sizeId', 'colorId', 'variantId')
OPTIONAL_FIELDS = ('sizeId', 'colorId', 'variantId', 'image', 'source', 'sku', 'size', 'color')


def new_cart_item_id():
    return f"cart_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


def merge_key(item):
    return tuple(item.get(name) or None for name in MERGE_FIELDS)


def _parse_number(value):
    number = as_number(value)
    if number is None and isinstance(value, str):
        try:
            number = as_number(float(value.strip()))
        except ValueError:
            return None
    return number


def coerce_quantity(value):
    """Cantidad como int (admite '2' o 2.0); None si no es un entero válido."""
    number = _parse_number(value)
    if number is None or number != int(number):
        return None
    return int(number)


def coerce_price(value):
    number = _parse_number(value)
    if number is None or number < 0:
        return None
    return number


class Cart:
    """Líneas del carrito de un usuario."""

    def __init__(self, document):
        self.document = document
        items = document.get('items')
        if not isinstance(items, list):
            items = document['items'] = []
        self.items = items

    def find(self, cart_item_id):
        for item in self.items:
            if item.get('cartItemId') == cart_item_id:
                return item
        return None

    def add(self, item_data, quantity=1):
        """Añadir producto o sumar cantidad a la línea equivalente."""
        key = merge_key(item_data)
        for item in self.items:
            if merge_key(item) == key:
                current = coerce_quantity(item.get('quantity'))
                item['quantity'] = max(current or 0, 0) + quantity
                item['updatedAt'] = now_iso()
                return item

        item = {
            'cartItemId': new_cart_item_id(),
            'id': item_data['id'],
            'name': item_data['name'],
            'price': item_data['price'],
            'quantity': quantity,
            'currency': (item_data.get('currency') or settings.DEFAULT_CURRENCY).upper(),
            'addedAt': now_iso(),
        }
        for name in OPTIONAL_FIELDS:
            if item_data.get(name) is not None:
                item[name] = item_data[name]
        self.items.append(item)
        return item

    def update(self, cart_item_id, quantity):
        """Fija la cantidad de una línea; 0 la elimina. Devuelve False si no existe."""
        item = self.find(cart_item_id)
        if item is None:
            return False
        if quantity == 0:
            return self.remove(cart_item_id)
        item['quantity'] = quantity
        item['updatedAt'] = now_iso()
        return True

    def remove(self, cart_item_id):
        for index, item in enumerate(self.items):
            if item.get('cartItemId') == cart_item_id:
                del self.items[index]
                return True
        return False

    def replace(self, items):
        """
        Sustituye las líneas por las del cliente. Cantidad y precio se
        normalizan a número; las líneas que no se pueden reparar se descartan.
        """
        kept = []
        for item in items:
            if not isinstance(item, dict) or not item.get('id'):
                continue
            quantity = coerce_quantity(item.get('quantity'))
            price = coerce_price(item.get('price'))
            if quantity is None or quantity < 1 or price is None:
                continue
            kept.append({**item, 'quantity': quantity, 'price': price})
        self.items[:] = kept
        for item in self.items:
            item.setdefault('cartItemId', new_cart_item_id())
            item.setdefault('currency', settings.DEFAULT_CURRENCY)
            item.setdefault('addedAt', now_iso())

    def __iter__(self):
        return iter(self.items)

    def __len__(self):
        return sum(
            item['quantity'] for item in self.items
            if isinstance(item.get('quantity'), int) and not isinstance(item.get('quantity'), bool)
        )

    def get_total_price(self):
        return items_subtotal(self.items)

    def clear(self):
        self.items.clear()
