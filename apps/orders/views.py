from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods, require_POST

from apps.core.apps import get_services
from apps.core.errors import NotFound
from apps.core.http import parse_json, require_fields, staff_required


def _can_access_order(request, order):
    """Staff, o el cliente que conoce el email del pedido (?email=)."""
    user = getattr(request, 'user', None)
    if user and user.is_authenticated and user.is_staff:
        return True
    email = (request.GET.get('email') or '').strip().lower()
    return bool(email) and email == (order.get('customer') or {}).get('email')


@csrf_exempt
@require_POST
def order_create(request):
    data = parse_json(request)
    order = get_services().orders.create_order(data)
    return JsonResponse({'success': True, 'order': order}, status=201)


@csrf_exempt
@require_http_methods(['GET', 'DELETE'])
def order_detail(request, order_id):
    if request.method == 'DELETE':
        return order_delete(request, order_id)
    order = get_services().orders.get_order(order_id)
    if not _can_access_order(request, order):
        # No revelar si el pedido existe
        raise NotFound('Order not found', code='ORDER_NOT_FOUND')
    return JsonResponse({'success': True, 'order': order})


@staff_required
def order_delete(request, order_id):
    order = get_services().orders.delete_order(order_id)
    return JsonResponse({'success': True, 'order': order, 'message': 'Order deleted'})


@csrf_exempt
@require_POST
@staff_required
def order_update_status(request, order_id):
    data = parse_json(request)
    require_fields(data, ['status'])
    order = get_services().orders.update_status(
        order_id,
        data['status'],
        note=data.get('note'),
        notify=data.get('notify', True) is not False,
    )
    return JsonResponse({'success': True, 'order': order})
