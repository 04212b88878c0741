# debug_logging_middleware.py
import logging

from django.conf import settings

logger = logging.getLogger('django.request')

SENSITIVE_HEADERS = {'authorization', 'cookie', 'x-csrftoken'}


class DebugLoggingMiddleware:
    """Log each API request and its response status when DEBUG_REQUEST_LOGGING is on."""

    def __init__(self, get_response):
        self.get_response = get_response
        self.enabled = getattr(settings, 'DEBUG_REQUEST_LOGGING', False)

    def __call__(self, request):
        if not self.enabled:
            return self.get_response(request)

        headers = {
            key: ('***' if key.lower() in SENSITIVE_HEADERS else value)
            for key, value in request.headers.items()
        }
        user = getattr(request, 'user', None)
        logger.debug(f"[REQUEST] {request.method} {request.path} user={user}")
        logger.debug(f"[REQUEST] Headers: {headers}")

        if request.method in ('POST', 'PUT', 'PATCH') and request.content_type == 'application/json':
            try:
                logger.debug(f"[REQUEST] Body: {request.body.decode('utf-8')[:2000]}")
            except UnicodeDecodeError:
                logger.debug("[REQUEST] Body is not UTF-8")

        response = self.get_response(request)

        logger.debug(f"[REQUEST] {request.method} {request.path} -> {response.status_code}")
        return response
