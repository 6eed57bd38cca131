import hashlib
import hmac
import json
from dataclasses import dataclass
from typing import Optional, Tuple

import requests
from django.conf import settings
from requests import RequestException

COMMON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}

# Header keys that may carry the HMAC, in order of preference. Live-mode
# deliveries send an empty test signature ("te=") next to "li=".
SIGNATURE_KEYS = ("s", "v1", "te", "li")


class PaymongoError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class SignatureError(Exception):
    """Raised for a missing, malformed or mismatching webhook signature."""

    def __init__(self, reason: str, message: str):
        self.reason = reason
        super().__init__(message)


@dataclass(frozen=True)
class CheckoutSession:
    checkout_url: str
    checkout_session_id: str
    payment_intent_id: str = ""


def _error_detail(data) -> str:
    try:
        return data["errors"][0]["detail"]
    except (KeyError, IndexError, TypeError):
        return json.dumps(data)[:800]


class PaymongoClient:
    """Thin client for PayMongo's hosted checkout API."""

    def __init__(self, secret_key: str, base_url: str, timeout: float = 30):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> "PaymongoClient":
        return cls(
            secret_key=getattr(settings, "PAYMONGO_SECRET_KEY", ""),
            base_url=getattr(settings, "PAYMONGO_BASE_URL", "https://api.paymongo.com/v1"),
            timeout=getattr(settings, "PAYMONGO_TIMEOUT", 30),
        )

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        if not self.secret_key:
            raise PaymongoError("Missing PAYMONGO_SECRET_KEY")
        url = f"{self.base_url}{path}"
        try:
            resp = requests.request(
                method, url, json=payload, headers=COMMON_HEADERS,
                auth=(self.secret_key, ""), timeout=self.timeout,
            )
        except RequestException as e:
            raise PaymongoError(f"Gateway request failed: {e}")
        try: data = resp.json()
        except ValueError: data = {"raw": resp.text}
        if 200 <= resp.status_code < 300:
            return data
        raise PaymongoError(
            f"Gateway error {resp.status_code}: {_error_detail(data)}", status_code=resp.status_code
        )

    def create_checkout_session(self, *, line_items, billing, success_url, cancel_url,
                                metadata, description="") -> CheckoutSession:
        """Create a hosted checkout session and return its redirect URL and ids.

        ``line_items`` are dicts with ``name``, ``amount`` (unit price, minor
        units) and ``quantity``. ``metadata`` is echoed back by the gateway on
        the ``checkout_session.payment.paid`` event.
        """
        currency = getattr(settings, "STORE_CURRENCY", "PHP")
        payload = {
            "data": {
                "attributes": {
                    "billing": billing,
                    "line_items": [{"currency": currency, **item} for item in line_items],
                    "payment_method_types": list(getattr(settings, "PAYMONGO_PAYMENT_METHOD_TYPES", ["card"])),
                    "payment_method_options": {"card": {"request_three_d_secure": "automatic"}},
                    "send_email_receipt": False,
                    "show_description": True,
                    "show_line_items": True,
                    "description": description,
                    "statement_descriptor": getattr(settings, "PAYMONGO_STATEMENT_DESCRIPTOR", ""),
                    "success_url": success_url,
                    "cancel_url": cancel_url,
                    "metadata": metadata,
                }
            }
        }
        data = self._request("POST", "/checkout_sessions", payload)

        resource = data.get("data") or {}
        attrs = resource.get("attributes") or {}
        checkout_url = attrs.get("checkout_url") or ""
        session_id = resource.get("id") or ""
        if not checkout_url or not session_id:
            raise PaymongoError("Checkout session response did not include checkout_url or id")

        intent = attrs.get("payment_intent")
        if isinstance(intent, dict):
            intent_id = intent.get("id") or ""
        else:
            intent_id = intent or ""
        return CheckoutSession(checkout_url, session_id, intent_id)

    def retrieve_checkout_session(self, session_id: str) -> dict:
        data = self._request("GET", f"/checkout_sessions/{session_id}")
        return data.get("data") or {}


def parse_signature_header(header: str) -> Tuple[str, str]:
    """Split a ``t=<ts>,s=<hex>`` style header into ``(timestamp, signature)``."""
    if not header:
        raise SignatureError("missing", "Missing signature.")
    fields = {}
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if sep:
            fields.setdefault(key, value.strip())
    timestamp = fields.get("t", "")
    signature = next((fields[k] for k in SIGNATURE_KEYS if fields.get(k)), "")
    if not timestamp or not signature:
        raise SignatureError("malformed", "Malformed signature header.")
    return timestamp, signature


def compute_signature(timestamp: str, raw_body: bytes, secret: str) -> str:
    msg = f"{timestamp}.".encode("utf-8") + raw_body
    return hmac.new(secret.encode("utf-8"), msg, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, header: str, secret: str) -> str:
    """Verify a webhook delivery and return its timestamp.

    Raises :class:`SignatureError` when the header is absent or malformed, or
    when the HMAC does not match the unparsed body.
    """
    timestamp, provided = parse_signature_header(header)
    expected = compute_signature(timestamp, raw_body, secret)
    if not hmac.compare_digest(expected.encode("utf-8"), provided.lower().encode("utf-8")):
        raise SignatureError("mismatch", "Invalid signature.")
    return timestamp
