import logging

from .http import json_error

logger = logging.getLogger(__name__)


def error_404_view(request, exception):
    return json_error("Not found.", status=404)


def error_500_view(request):
    logger.error("Unhandled server error on %s %s", request.method, request.path)
    return json_error("Internal server error.", status=500)
