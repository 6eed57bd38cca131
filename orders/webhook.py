import logging

from django.core.exceptions import ImproperlyConfigured
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt

from shopfront.http import json_error, method_not_allowed

from .errors import SignatureVerificationFailed
from .services import process_webhook

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "Paymongo-Signature"


@csrf_exempt
def paymongo_webhook(request):
    """Receive PayMongo events.

    The signature is checked against the raw request bytes. Once it passes,
    the delivery is always acknowledged with 200 so the gateway stops
    retrying; processing problems are logged instead.
    """
    if request.method != "POST":
        return method_not_allowed(request, ["POST"])

    try:
        outcome = process_webhook(request.body, request.headers.get(SIGNATURE_HEADER, ""))
    except ImproperlyConfigured:
        return json_error("Webhook processing configuration error.", status=500)
    except SignatureVerificationFailed as e:
        return json_error(e.message, status=e.status, code=e.code)

    logger.debug("Webhook handled with outcome %s", outcome.value)
    return JsonResponse({"received": True})
