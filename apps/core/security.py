import logging

from apps.core.models import SecurityEvent

logger = logging.getLogger(__name__)


def client_ip(request):
    xff = request.META.get('HTTP_X_FORWARDED_FOR', '')
    return xff.split(',')[0].strip() if xff else request.META.get('REMOTE_ADDR')


def log_security_event(request, event_type, source, details=None):
    details = details or {}
    ip_address = None
    path = ''
    user_agent = ''
    if request is not None:
        ip_address = client_ip(request)
        path = request.path[:255]
        user_agent = (request.META.get('HTTP_USER_AGENT') or '')[:255]
    logger.warning("Evento de seguridad %s desde %s (%s)", event_type, ip_address, source)
    try:
        SecurityEvent.objects.create(
            event_type=event_type,
            source=source,
            ip_address=ip_address or None,
            path=path,
            user_agent=user_agent,
            details=details,
        )
    except Exception:
        logger.exception("No se pudo registrar el evento de seguridad %s", event_type)
