from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods, require_POST

from apps.core.apps import get_services
from apps.core.errors import NotFound
from apps.core.http import parse_json, staff_required


def _is_staff(request):
    user = getattr(request, 'user', None)
    return bool(user and user.is_authenticated and user.is_staff)


def _int_param(request, name, default):
    try:
        return int(request.GET.get(name, default))
    except (TypeError, ValueError):
        return default


@csrf_exempt
@require_http_methods(['GET', 'POST'])
def review_list(request):
    if request.method == 'POST':
        review = get_services().reviews.create_review(parse_json(request))
        return JsonResponse({
            'success': True,
            'review': review,
            'message': 'Review submitted and awaiting moderation',
        }, status=201)

    # El público sólo ve reseñas aprobadas; staff puede filtrar por estado
    status = 'approved'
    if _is_staff(request):
        status = request.GET.get('status', '') or None
    result = get_services().reviews.list_reviews(
        product_id=request.GET.get('productId') or None,
        status=status,
        source=request.GET.get('source') or None,
        rating=_int_param(request, 'rating', None),
        page=_int_param(request, 'page', 1),
        limit=_int_param(request, 'limit', 50),
    )
    return JsonResponse({'success': True, **result})


@csrf_exempt
@require_http_methods(['GET', 'DELETE'])
def review_detail(request, review_id):
    if request.method == 'DELETE':
        return review_delete(request, review_id)
    review = get_services().reviews.get_review(review_id)
    if review.get('status') != 'approved' and not _is_staff(request):
        raise NotFound('Review not found', code='REVIEW_NOT_FOUND')
    return JsonResponse({'success': True, 'review': review})


@staff_required
def review_delete(request, review_id):
    get_services().reviews.delete_review(review_id)
    return JsonResponse({'success': True, 'message': 'Review deleted'})


@csrf_exempt
@require_POST
@staff_required
def review_approve(request, review_id):
    data = parse_json(request)
    review = get_services().reviews.moderate(review_id, 'approved', note=data.get('note'))
    return JsonResponse({'success': True, 'review': review})


@csrf_exempt
@require_POST
@staff_required
def review_reject(request, review_id):
    data = parse_json(request)
    review = get_services().reviews.moderate(review_id, 'rejected', note=data.get('note'))
    return JsonResponse({'success': True, 'review': review})
