from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from apps.core.apps import get_services
from apps.core.http import parse_json, staff_required


@csrf_exempt
@require_POST
def email_capture(request):
    """El cliente dejó su email en el checkout: se registra para recordatorios."""
    data = parse_json(request)
    checkout = get_services().checkouts.capture_email(
        data.get('email'),
        data.get('cart'),
        user_id=data.get('userId'),
        language=data.get('language'),
    )
    return JsonResponse({'success': True, 'checkoutId': checkout['id'], 'checkout': checkout})


@require_GET
def recover_checkout(request, checkout_id):
    checkout = get_services().checkouts.recover_checkout(checkout_id)
    return JsonResponse({
        'success': True,
        'checkout': checkout,
        'cart': checkout.get('cart'),
        'email': checkout.get('email'),
    })


@csrf_exempt
@require_POST
@staff_required
def process_abandoned(request):
    data = parse_json(request)
    summary = get_services().checkouts.process_abandoned_checkouts(dry_run=bool(data.get('dryRun')))
    return JsonResponse({'success': True, **summary})


@require_GET
def recover_failed_checkout(request, retry_token):
    failed = get_services().checkouts.recover_failed_checkout(retry_token)
    return JsonResponse({
        'success': True,
        'orderId': failed.get('orderId'),
        'email': failed.get('email'),
        'cart': failed.get('cart'),
        'total': failed.get('total'),
    })


@csrf_exempt
@require_POST
@staff_required
def process_failed(request):
    data = parse_json(request)
    summary = get_services().checkouts.process_failed_checkouts(dry_run=bool(data.get('dryRun')))
    return JsonResponse({'success': True, **summary})
