"""Small JSON helpers shared by the API views."""

import json

from django.http import JsonResponse


def json_body(request):
    try: return json.loads(request.body.decode("utf-8"))
    except Exception: return None


def json_error(message: str, status: int = 400, **extra) -> JsonResponse:
    return JsonResponse({"message": message, **extra}, status=status)


def method_not_allowed(request, allowed) -> JsonResponse:
    resp = json_error(f"Method {request.method} Not Allowed", status=405)
    resp["Allow"] = ", ".join(allowed)
    return resp


def page_params(request, default_limit: int = 10, max_limit: int = 100):
    """Return ``(page, limit)`` from the query string, clamped to sane values."""
    try:
        page = int(request.GET.get("page", "1"))
    except ValueError:
        page = 1
    try:
        limit = int(request.GET.get("limit", str(default_limit)))
    except ValueError:
        limit = default_limit
    return max(page, 1), min(max(limit, 1), max_limit)


def sort_param(request, allowed: dict, default: str = "-created_at") -> str:
    """Map ``sortBy``/``sortOrder`` onto an ORM ordering expression."""
    field = allowed.get(request.GET.get("sortBy", ""))
    if not field:
        return default
    descending = (request.GET.get("sortOrder") or "desc").lower() != "asc"
    return f"-{field}" if descending else field
