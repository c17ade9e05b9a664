"""
Errores de la API con código estable para el cliente.

Los errores de negocio (validación, no encontrado, conflicto) se devuelven
tal cual; los de infraestructura se reducen a un mensaje genérico y el
detalle sólo viaja con DEBUG.
"""


class ApiError(Exception):
    status = 400
    code = 'BAD_REQUEST'
    default_message = 'Bad request'

    def __init__(self, message=None, code=None, status=None, **extra):
        self.message = message or self.default_message
        if code:
            self.code = code
        if status:
            self.status = status
        self.extra = extra
        super().__init__(self.message)

    @property
    def detail(self):
        return self.message

    def as_dict(self, debug=False):
        body = {'success': False, 'error': self.message, 'code': self.code}
        body.update(self.extra)
        return body


class ValidationFailed(ApiError):
    status = 400
    code = 'VALIDATION_ERROR'
    default_message = 'Invalid request'

    def __init__(self, message=None, fields=None, **kwargs):
        if fields:
            kwargs['fields'] = list(fields)
        super().__init__(message, **kwargs)


class Forbidden(ApiError):
    status = 403
    code = 'FORBIDDEN'
    default_message = 'Forbidden'


class NotFound(ApiError):
    status = 404
    code = 'NOT_FOUND'
    default_message = 'Not found'


class Conflict(ApiError):
    status = 409
    code = 'CONFLICT'
    default_message = 'Conflict'


class Gone(ApiError):
    status = 410
    code = 'GONE'
    default_message = 'No longer available'


class UpstreamError(ApiError):
    """Fallo de un colaborador externo (store, pasarela). Mensaje genérico al cliente."""
    status = 500
    code = 'UPSTREAM_ERROR'
    default_message = 'Internal server error'

    def __init__(self, details='', message=None, **kwargs):
        self.details = str(details or '')
        super().__init__(message, **kwargs)

    @property
    def detail(self):
        return self.details or self.message

    def as_dict(self, debug=False):
        body = super().as_dict(debug)
        if debug and self.details:
            body['details'] = self.details
        return body


class StoreError(UpstreamError):
    code = 'STORE_ERROR'


class GatewayError(UpstreamError):
    code = 'PAYMENT_GATEWAY_ERROR'
    default_message = 'Payment provider error'
