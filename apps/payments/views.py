"""
API de pagos con Stripe:
  1. create-intent / update-intent → PaymentIntent con importe verificado en servidor
  2. confirm / payment-failed      → avisos del frontend (orientativos)
  3. webhook                       → fuente de verdad; siempre 200 salvo firma inválida
"""
import logging

from django.http import HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from apps.core.apps import get_services
from apps.core.http import parse_json, staff_required
from apps.core.security import log_security_event

from .gateway import WebhookSignatureError

logger = logging.getLogger(__name__)


@require_GET
def payment_config(request):
    return JsonResponse({'success': True, **get_services().payments.config()})


@csrf_exempt
@require_POST
def create_intent(request):
    data = parse_json(request)
    result = get_services().payments.create_intent(data)
    if result['amountAdjusted']:
        log_security_event(request, 'amount_mismatch', 'payments.create_intent', {
            'orderId': result['orderId'],
            'clientAmount': data.get('amount'),
            'serverAmount': result['amount'],
        })
    return JsonResponse({'success': True, **result})


@csrf_exempt
@require_POST
def update_intent(request):
    data = parse_json(request)
    result = get_services().payments.update_intent(data)
    if result['amountAdjusted']:
        log_security_event(request, 'amount_mismatch', 'payments.update_intent', {
            'orderId': result['orderId'],
            'clientAmount': data.get('amount'),
            'serverAmount': result['amount'],
        })
    return JsonResponse({'success': True, **result})


@csrf_exempt
@require_POST
def confirm_payment(request):
    data = parse_json(request)
    return JsonResponse({'success': True, **get_services().payments.confirm(data)})


@csrf_exempt
@require_POST
def payment_failed(request):
    data = parse_json(request)
    return JsonResponse({'success': True, **get_services().payments.report_payment_failed(data)})


@require_GET
def payment_status(request, payment_intent_id):
    """Estado del intent para polling desde el frontend (incluye safeToConfirm)."""
    return JsonResponse({'success': True, **get_services().payments.status(payment_intent_id)})


@csrf_exempt
@require_POST
@staff_required
def refund_payment(request):
    data = parse_json(request)
    return JsonResponse({'success': True, **get_services().payments.refund(data)})


@csrf_exempt
@require_POST
def stripe_webhook(request):
    """
    Webhook de Stripe (server-to-server), verificado con Stripe-Signature.
    Los errores internos no se devuelven a Stripe para no disparar reintentos.
    """
    signature = request.META.get('HTTP_STRIPE_SIGNATURE', '')
    try:
        result = get_services().payments.handle_webhook(request.body, signature)
    except WebhookSignatureError as exc:
        logger.warning("Webhook Stripe rechazado: %s", exc)
        log_security_event(request, 'webhook_signature_invalid', 'payments.stripe_webhook', {'error': str(exc)})
        return HttpResponse(f'Webhook Error: {exc}', status=400)
    except Exception:
        logger.exception("Webhook Stripe: error inesperado")
        return JsonResponse({'received': True})
    return JsonResponse(result)
