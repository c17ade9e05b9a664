"""
Reconciliación de totales del carrito.

Un carrito puede llegar con `totals` ausente, viejo o corrupto (NaN, None,
strings). Estas funciones nunca lanzan: lo corrupto se trata como ausente
y se rellena con 0 o con su fórmula, sin perder un descuento ya aplicado.

Invariantes:
  subtotal           = Σ price * quantity
  discountedSubtotal = max(0, subtotal - discount)
  total              = discountedSubtotal + shipping + tax
"""
from apps.core.money import as_number, number_or, round_currency

TOTAL_FIELDS = ('subtotal', 'discount', 'discountedSubtotal', 'shipping', 'tax', 'total')


def _current_totals(cart):
    totals = cart.get('totals') if isinstance(cart, dict) else None
    return totals if isinstance(totals, dict) else {}


def items_subtotal(items) -> float:
    subtotal = 0.0
    for item in items or []:
        if not isinstance(item, dict):
            continue
        price = as_number(item.get('price'))
        quantity = as_number(item.get('quantity'))
        if price is None or quantity is None:
            continue
        subtotal += price * quantity
    return round_currency(subtotal)


def calculate_cart_totals(cart) -> dict:
    """Totales derivados de las líneas; envío/impuestos/descuento se leen de `totals` si son numéricos."""
    current = _current_totals(cart)
    subtotal = items_subtotal(cart.get('items') if isinstance(cart, dict) else None)
    discount = round_currency(number_or(current.get('discount')))
    shipping = round_currency(number_or(current.get('shipping')))
    tax = round_currency(number_or(current.get('tax')))
    discounted_subtotal = round_currency(max(0.0, subtotal - discount))
    return {
        'subtotal': subtotal,
        'discount': discount,
        'discountedSubtotal': discounted_subtotal,
        'shipping': shipping,
        'tax': tax,
        'total': round_currency(discounted_subtotal + shipping + tax),
    }


def ensure_cart_totals(cart):
    """
    Repara `cart['totals']` en el sitio y devuelve el carrito. Idempotente.

    Si falta el subtotal se recalcula desde las líneas, pero los demás campos
    sólo se rellenan si también faltan (un envío válido sobrevive). Al final
    todo campo queda numérico: 0 por defecto, salvo discountedSubtotal y
    total, que vuelven a su fórmula.
    """
    totals = _current_totals(cart)

    if as_number(totals.get('subtotal')) is None:
        fresh = calculate_cart_totals(cart)
        totals['subtotal'] = fresh['subtotal']
        for name in ('shipping', 'tax', 'discount', 'discountedSubtotal', 'total'):
            if as_number(totals.get(name)) is None:
                totals[name] = fresh[name]

    subtotal = number_or(totals.get('subtotal'))
    discount = number_or(totals.get('discount'))
    shipping = number_or(totals.get('shipping'))
    tax = number_or(totals.get('tax'))

    discounted_subtotal = as_number(totals.get('discountedSubtotal'))
    if discounted_subtotal is None:
        discounted_subtotal = round_currency(max(0.0, subtotal - discount))

    total = as_number(totals.get('total'))
    if total is None:
        total = round_currency(discounted_subtotal + shipping + tax)

    totals.update({
        'subtotal': subtotal,
        'discount': discount,
        'discountedSubtotal': discounted_subtotal,
        'shipping': shipping,
        'tax': tax,
        'total': total,
    })
    cart['totals'] = totals
    return cart
