import json
from datetime import datetime, timedelta, timezone

import jwt
from django.conf import settings
from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings

from shopfront.auth import issue_admin_token

User = get_user_model()


class AdminLoginTests(TestCase):
    def setUp(self):
        self.admin = User.objects.create_user("admin", "admin@example.com", "s3cret", is_staff=True)
        User.objects.create_user("shopper", "shopper@example.com", "s3cret")

    def _login(self, **body):
        return self.client.post("/api/auth/login", data=json.dumps(body), content_type="application/json")

    def test_staff_user_gets_token(self):
        resp = self._login(username="admin", password="s3cret")

        self.assertEqual(resp.status_code, 200)
        claims = jwt.decode(resp.json()["token"], settings.JWT_SECRET, algorithms=["HS256"])
        self.assertEqual(claims["userId"], self.admin.pk)
        self.assertEqual(claims["role"], "ADMIN")

    def test_wrong_password(self):
        self.assertEqual(self._login(username="admin", password="nope").status_code, 401)

    def test_non_staff_user_is_refused(self):
        self.assertEqual(self._login(username="shopper", password="s3cret").status_code, 401)

    def test_missing_credentials(self):
        self.assertEqual(self._login(username="admin").status_code, 400)


class AdminTokenRequiredTests(TestCase):
    url = "/api/admin/stats"

    def setUp(self):
        self.admin = User.objects.create_user("admin", "admin@example.com", "pw", is_staff=True)

    def _get(self, token):
        return self.client.get(self.url, HTTP_AUTHORIZATION=f"Bearer {token}")

    def test_valid_token(self):
        self.assertEqual(self._get(issue_admin_token(self.admin)).status_code, 200)

    def test_missing_header(self):
        self.assertEqual(self.client.get(self.url).status_code, 401)

    def test_expired_token(self):
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        token = jwt.encode({"userId": self.admin.pk, "role": "ADMIN", "exp": past}, settings.JWT_SECRET, algorithm="HS256")
        resp = self._get(token)
        self.assertEqual(resp.status_code, 401)
        self.assertIn("expired", resp.json()["message"])

    def test_token_signed_with_other_secret(self):
        token = jwt.encode({"userId": self.admin.pk, "role": "ADMIN"}, "another-secret-that-is-long-enough!!", algorithm="HS256")
        self.assertEqual(self._get(token).status_code, 401)

    def test_wrong_role(self):
        token = jwt.encode({"userId": self.admin.pk, "role": "CUSTOMER"}, settings.JWT_SECRET, algorithm="HS256")
        self.assertEqual(self._get(token).status_code, 403)

    def test_staff_flag_revoked(self):
        token = issue_admin_token(self.admin)
        self.admin.is_staff = False
        self.admin.save()
        self.assertEqual(self._get(token).status_code, 403)

    @override_settings(JWT_SECRET="")
    def test_missing_secret_is_server_error(self):
        self.assertEqual(self._get("anything").status_code, 500)


class AdminMeTests(TestCase):
    url = "/api/auth/me"

    def setUp(self):
        self.admin = User.objects.create_user("admin", "admin@example.com", "pw", is_staff=True)

    def test_returns_the_token_holder(self):
        resp = self.client.get(self.url, HTTP_AUTHORIZATION=f"Bearer {issue_admin_token(self.admin)}")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["user"], {
            "id": self.admin.pk, "username": "admin", "email": "admin@example.com", "role": "ADMIN",
        })

    def test_requires_token(self):
        self.assertEqual(self.client.get(self.url).status_code, 401)

    def test_get_only(self):
        resp = self.client.post(self.url, HTTP_AUTHORIZATION=f"Bearer {issue_admin_token(self.admin)}")
        self.assertEqual(resp.status_code, 405)
