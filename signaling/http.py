import functools
import json
import logging
import os
from typing import Tuple

from django.http import JsonResponse

from .errors import SignalingError

logger = logging.getLogger("signaling")


def json_body(request) -> Tuple[dict, JsonResponse]:
    try:
        body = request.body.decode("utf-8") if request.body else "{}"
        data = json.loads(body)
        if not isinstance(data, dict):
            raise ValueError("JSON body must be an object")
        return data, None
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError) as exc:
        return None, JsonResponse({"error": f"invalid_json: {exc}"}, status=400)


def require_env(*keys):
    missing = [key for key in keys if not os.environ.get(key)]
    if missing:
        return JsonResponse({"error": "missing_env", "missing": missing}, status=500)
    return None


def error_response(exc: SignalingError) -> JsonResponse:
    return JsonResponse(exc.as_dict(), status=exc.status)


def signaling_errors(view):
    """Translate relay errors into JSON responses.

    Anything that is not a ``SignalingError`` is logged with its traceback and
    answered as a 500 ``internal`` error.
    """

    @functools.wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except SignalingError as exc:
            logger.info(f"[{view.__name__}] {exc.code}: {exc.message}")
            return error_response(exc)
        except Exception:
            logger.exception(f"[{view.__name__}] Unexpected error")
            return JsonResponse({"error": "internal"}, status=500)

    return wrapper
