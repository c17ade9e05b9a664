import logging

from django.conf import settings
from django.http import JsonResponse

from apps.core.errors import ApiError

logger = logging.getLogger(__name__)


class ApiExceptionMiddleware:
    """
    Convierte excepciones de las vistas en respuestas JSON.

    - ApiError: se devuelve tal cual con su `code` estable.
    - Cualquier otra excepción bajo /api/: 500 genérico; el detalle sólo
      se expone con DEBUG activo y siempre queda en el log.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        return self.get_response(request)

    def process_exception(self, request, exception):
        if isinstance(exception, ApiError):
            if exception.status >= 500:
                logger.error(
                    "%s %s → %s: %s",
                    request.method, request.path, exception.code, exception.detail,
                )
            return JsonResponse(exception.as_dict(debug=settings.DEBUG), status=exception.status)

        if not request.path.startswith('/api/'):
            return None

        logger.exception("Error no controlado en %s %s", request.method, request.path)
        body = {
            'success': False,
            'error': 'Internal server error',
            'code': 'INTERNAL_ERROR',
        }
        if settings.DEBUG:
            body['details'] = str(exception)
        return JsonResponse(body, status=500)
