from unittest.mock import MagicMock, patch

from django.test import SimpleTestCase, override_settings
from requests import ConnectionError as RequestsConnectionError

from .integrations.paymongo import (
    CheckoutSession, PaymongoClient, PaymongoError, SignatureError,
    compute_signature, parse_signature_header, verify_signature,
)

SECRET = "whsk_test_secret"
BODY = b'{"data":{"id":"evt_1"}}'


def _response(status_code, data):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = data
    resp.text = str(data)
    return resp


class SignatureHeaderTests(SimpleTestCase):
    def test_test_mode_signature(self):
        self.assertEqual(parse_signature_header("t=1700000000,s=abc123"), ("1700000000", "abc123"))

    def test_live_mode_skips_empty_test_signature(self):
        self.assertEqual(parse_signature_header("t=1700000000,te=,li=def456"), ("1700000000", "def456"))

    def test_v1_variant(self):
        self.assertEqual(parse_signature_header("t=1, v1=aa"), ("1", "aa"))

    def test_missing_header(self):
        with self.assertRaises(SignatureError) as ctx:
            parse_signature_header("")
        self.assertEqual(ctx.exception.reason, "missing")

    def test_header_without_timestamp_is_malformed(self):
        with self.assertRaises(SignatureError) as ctx:
            parse_signature_header("s=abc123")
        self.assertEqual(ctx.exception.reason, "malformed")

    def test_header_without_signature_is_malformed(self):
        with self.assertRaises(SignatureError) as ctx:
            parse_signature_header("t=1700000000,te=")
        self.assertEqual(ctx.exception.reason, "malformed")


class VerifySignatureTests(SimpleTestCase):
    def test_valid_signature_returns_timestamp(self):
        header = f"t=1700000000,s={compute_signature('1700000000', BODY, SECRET)}"
        self.assertEqual(verify_signature(BODY, header, SECRET), "1700000000")

    def test_uppercase_hex_is_accepted(self):
        header = f"t=1700000000,s={compute_signature('1700000000', BODY, SECRET).upper()}"
        self.assertEqual(verify_signature(BODY, header, SECRET), "1700000000")

    def test_tampered_body_is_rejected(self):
        header = f"t=1700000000,s={compute_signature('1700000000', BODY, SECRET)}"
        with self.assertRaises(SignatureError) as ctx:
            verify_signature(BODY.replace(b"evt_1", b"evt_2"), header, SECRET)
        self.assertEqual(ctx.exception.reason, "mismatch")

    def test_timestamp_is_part_of_the_signed_message(self):
        header = f"t=1700000001,s={compute_signature('1700000000', BODY, SECRET)}"
        with self.assertRaises(SignatureError):
            verify_signature(BODY, header, SECRET)

    def test_non_ascii_signature_is_a_mismatch(self):
        with self.assertRaises(SignatureError) as ctx:
            verify_signature(BODY, "t=1,s=éé", SECRET)
        self.assertEqual(ctx.exception.reason, "mismatch")


@override_settings(STORE_CURRENCY="PHP", PAYMONGO_PAYMENT_METHOD_TYPES=["gcash", "card"],
                   PAYMONGO_STATEMENT_DESCRIPTOR="Shopfront")
class PaymongoClientTests(SimpleTestCase):
    def setUp(self):
        self.client_ = PaymongoClient("sk_test_key", "https://api.paymongo.test/v1/", timeout=5)
        self.kwargs = {
            "line_items": [{"name": "Mug", "amount": 10000, "quantity": 2}],
            "billing": {"name": "Juan Dela Cruz", "email": "juan@example.com"},
            "success_url": "https://shop.example.com/checkout/success?order_id_internal=1",
            "cancel_url": "https://shop.example.com/checkout/cancel?order_id_internal=1",
            "metadata": {"internal_order_id": "1"},
            "description": "Payment for Order #X",
        }

    @patch("payments.integrations.paymongo.requests.request")
    def test_create_checkout_session(self, mock_request):
        mock_request.return_value = _response(200, {
            "data": {
                "id": "cs_123",
                "attributes": {
                    "checkout_url": "https://checkout.paymongo.test/cs_123",
                    "payment_intent": {"id": "pi_456", "attributes": {}},
                },
            }
        })

        session = self.client_.create_checkout_session(**self.kwargs)

        self.assertEqual(session, CheckoutSession("https://checkout.paymongo.test/cs_123", "cs_123", "pi_456"))
        method, url = mock_request.call_args.args
        self.assertEqual((method, url), ("POST", "https://api.paymongo.test/v1/checkout_sessions"))
        self.assertEqual(mock_request.call_args.kwargs["auth"], ("sk_test_key", ""))
        self.assertEqual(mock_request.call_args.kwargs["timeout"], 5)
        attrs = mock_request.call_args.kwargs["json"]["data"]["attributes"]
        self.assertEqual(attrs["line_items"], [{"currency": "PHP", "name": "Mug", "amount": 10000, "quantity": 2}])
        self.assertEqual(attrs["metadata"], {"internal_order_id": "1"})
        self.assertEqual(attrs["payment_method_types"], ["gcash", "card"])

    @patch("payments.integrations.paymongo.requests.request")
    def test_payment_intent_as_plain_id(self, mock_request):
        mock_request.return_value = _response(200, {
            "data": {"id": "cs_1", "attributes": {"checkout_url": "https://c/cs_1", "payment_intent": "pi_1"}}
        })
        self.assertEqual(self.client_.create_checkout_session(**self.kwargs).payment_intent_id, "pi_1")

    @patch("payments.integrations.paymongo.requests.request")
    def test_gateway_error_detail_is_surfaced(self, mock_request):
        mock_request.return_value = _response(400, {"errors": [{"detail": "amount is too low"}]})
        with self.assertRaises(PaymongoError) as ctx:
            self.client_.create_checkout_session(**self.kwargs)
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertIn("amount is too low", str(ctx.exception))

    @patch("payments.integrations.paymongo.requests.request")
    def test_network_error(self, mock_request):
        mock_request.side_effect = RequestsConnectionError("connection refused")
        with self.assertRaises(PaymongoError):
            self.client_.create_checkout_session(**self.kwargs)

    @patch("payments.integrations.paymongo.requests.request")
    def test_response_without_checkout_url(self, mock_request):
        mock_request.return_value = _response(200, {"data": {"id": "cs_1", "attributes": {}}})
        with self.assertRaises(PaymongoError):
            self.client_.create_checkout_session(**self.kwargs)

    @patch("payments.integrations.paymongo.requests.request")
    def test_missing_secret_key_never_calls_gateway(self, mock_request):
        with self.assertRaises(PaymongoError):
            PaymongoClient("", "https://api.paymongo.test/v1").create_checkout_session(**self.kwargs)
        mock_request.assert_not_called()

    @patch("payments.integrations.paymongo.requests.request")
    def test_retrieve_checkout_session(self, mock_request):
        mock_request.return_value = _response(200, {"data": {"id": "cs_9", "attributes": {"status": "active"}}})
        self.assertEqual(self.client_.retrieve_checkout_session("cs_9")["id"], "cs_9")
        self.assertEqual(mock_request.call_args.args, ("GET", "https://api.paymongo.test/v1/checkout_sessions/cs_9"))

    @override_settings(PAYMONGO_SECRET_KEY="sk_live", PAYMONGO_BASE_URL="https://api.example/v1", PAYMONGO_TIMEOUT=12)
    def test_from_settings(self):
        client = PaymongoClient.from_settings()
        self.assertEqual((client.secret_key, client.base_url, client.timeout), ("sk_live", "https://api.example/v1", 12))
