import json
from functools import wraps

from .errors import Forbidden, ValidationFailed


def parse_json(request) -> dict:
    """Cuerpo JSON de la petición; vacío → {}."""
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationFailed('Invalid JSON body', code='INVALID_JSON') from None
    if not isinstance(data, dict):
        raise ValidationFailed('JSON body must be an object', code='INVALID_JSON')
    return data


def require_fields(data, fields, message='Missing required fields'):
    missing = [name for name in fields if data.get(name) in (None, '')]
    if missing:
        raise ValidationFailed(message, fields=missing, code='MISSING_FIELDS')


def staff_required(view):
    """Sólo usuarios staff autenticados (sesión de Django)."""

    @wraps(view)
    def wrapper(request, *args, **kwargs):
        user = getattr(request, 'user', None)
        if not (user and user.is_authenticated and user.is_staff):
            raise Forbidden('Admin access required', code='ADMIN_REQUIRED')
        return view(request, *args, **kwargs)

    return wrapper
