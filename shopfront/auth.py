import logging
from datetime import datetime, timedelta, timezone
from functools import wraps

import jwt
from django.conf import settings
from django.contrib.auth import authenticate, get_user_model
from django.core.exceptions import ImproperlyConfigured
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from .http import json_body, json_error, method_not_allowed

logger = logging.getLogger(__name__)

User = get_user_model()

ADMIN_ROLE = "ADMIN"


def _secret() -> str:
    secret = getattr(settings, "JWT_SECRET", "")
    if not secret:
        logger.error("JWT_SECRET missing in settings")
        raise ImproperlyConfigured("JWT_SECRET setting is required for admin tokens")
    return secret


def issue_admin_token(user) -> str:
    """Return a signed HS256 token identifying ``user`` as a store admin."""
    now = datetime.now(timezone.utc)
    payload = {
        "userId": user.pk,
        "role": ADMIN_ROLE,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(hours=settings.JWT_EXPIRY_HOURS)).timestamp()),
    }
    return jwt.encode(payload, _secret(), algorithm="HS256")


def admin_token_required(view):
    """Reject requests without a valid admin bearer token.

    On success the staff user is attached as ``request.admin_user``.
    """

    @wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            secret = _secret()
        except ImproperlyConfigured:
            return json_error("Server authentication configuration error.", status=500)

        auth = request.headers.get("Authorization", "")
        if not auth.startswith("Bearer "):
            return json_error("Authentication token missing or malformed.", status=401)
        token = auth.split(" ", 1)[1].strip()
        if not token:
            return json_error("Authentication token missing.", status=401)

        try:
            claims = jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.ExpiredSignatureError:
            return json_error("Unauthorized: Token expired.", status=401)
        except jwt.PyJWTError as e:
            return json_error(f"Unauthorized: {e}", status=401)

        if not claims.get("userId") or claims.get("role") != ADMIN_ROLE:
            return json_error("Forbidden: Invalid token payload or insufficient permissions.", status=403)

        user = User.objects.filter(pk=claims["userId"], is_active=True).first()
        if user is None:
            return json_error("Unauthorized: Admin user not found.", status=401)
        if not user.is_staff:
            return json_error("Forbidden: User does not have admin privileges.", status=403)

        request.admin_user = user
        return view(request, *args, **kwargs)

    return csrf_exempt(wrapper)


@csrf_exempt
@require_POST
def login_view(request):
    body = json_body(request) or {}
    username = (body.get("username") or body.get("email") or "").strip()
    password = body.get("password") or ""
    if not username or not password:
        return json_error("Username and password are required.")

    user = authenticate(request, username=username, password=password)
    if user is None or not user.is_staff:
        logger.warning("Failed admin login for %s", username)
        return json_error("Invalid credentials.", status=401)

    return JsonResponse({
        "token": issue_admin_token(user),
        "user": _user_payload(user),
    })


def _user_payload(user) -> dict:
    return {"id": user.pk, "username": user.get_username(), "email": user.email, "role": ADMIN_ROLE}


@admin_token_required
def me_view(request):
    if request.method != "GET":
        return method_not_allowed(request, ["GET"])
    return JsonResponse({"user": _user_payload(request.admin_user)})
