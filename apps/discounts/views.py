from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from apps.core.apps import get_services
from apps.core.http import parse_json, require_fields


@csrf_exempt
@require_POST
def validate_code(request):
    """Comprueba un código sin aplicarlo a ningún carrito."""
    data = parse_json(request)
    validation = get_services().discounts.validate_discount_code(data.get('code'))
    return JsonResponse({'success': validation.valid, **validation.as_dict()})


@csrf_exempt
@require_POST
def subscribe(request):
    data = parse_json(request)
    require_fields(data, ['email'])
    result = get_services().discounts.subscribe(
        data.get('email'), name=data.get('name'), source=data.get('source') or 'popup',
    )
    status = 201 if result['isNewSubscriber'] else 200
    return JsonResponse({'success': True, **result}, status=status)
