from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods, require_POST

from apps.core.apps import get_services
from apps.core.http import parse_json, require_fields


def _cart_json(cart, message=None, status=200):
    data = {'success': True, 'cart': cart}
    if message:
        data['message'] = message
    return JsonResponse(data, status=status)


@csrf_exempt
@require_http_methods(['GET', 'POST'])
def cart_detail(request, user_id):
    """GET: carrito actual. POST: sincroniza la lista completa de líneas del cliente."""
    carts = get_services().carts
    if request.method == 'POST':
        data = parse_json(request)
        cart = carts.sync_cart(user_id, data.get('items'), email=data.get('email'))
        return _cart_json(cart, 'Cart synced')
    return _cart_json(carts.get_cart(user_id))


@csrf_exempt
@require_POST
def cart_add(request, user_id):
    data = parse_json(request)
    item = data.get('item', data)
    cart = get_services().carts.add_item(user_id, item)
    return _cart_json(cart, 'Item added to cart')


@csrf_exempt
@require_http_methods(['PUT', 'POST'])
def cart_update(request, user_id):
    data = parse_json(request)
    require_fields(data, ['cartItemId', 'quantity'])
    cart = get_services().carts.update_item(user_id, data['cartItemId'], data['quantity'])
    return _cart_json(cart, 'Cart updated')


@csrf_exempt
@require_http_methods(['DELETE'])
def cart_remove(request, user_id, cart_item_id):
    cart = get_services().carts.remove_item(user_id, cart_item_id)
    return _cart_json(cart, 'Item removed from cart')


@csrf_exempt
@require_http_methods(['DELETE'])
def cart_clear(request, user_id):
    deleted = get_services().carts.clear_cart(user_id)
    return JsonResponse({'success': True, 'deleted': deleted, 'message': 'Cart cleared'})


@csrf_exempt
@require_http_methods(['PUT', 'POST'])
def cart_save_email(request, user_id):
    data = parse_json(request)
    cart = get_services().carts.save_email(user_id, data.get('email'))
    return _cart_json(cart, 'Email saved')


@csrf_exempt
@require_POST
def cart_apply_discount(request, user_id):
    data = parse_json(request)
    require_fields(data, ['code'])
    cart = get_services().carts.apply_discount(user_id, data['code'])
    return _cart_json(cart, 'Discount applied')


@csrf_exempt
@require_POST
def cart_remove_discount(request, user_id):
    cart = get_services().carts.remove_discount(user_id)
    return _cart_json(cart, 'Discount removed')
