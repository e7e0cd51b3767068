import logging

from django.http import HttpResponseNotAllowed, JsonResponse
from django.views.decorators.csrf import csrf_exempt

from ..auth import identity_required
from ..http import json_body, signaling_errors
from ..runtime import get_runtime
from ..utils import format_timestamp, identity_key

logger = logging.getLogger("signaling")


@csrf_exempt
@identity_required
@signaling_errors
def presence(request):
    """
    Heartbeat / connect / disconnect for the requesting user.

    Body: {"online": true|false}, defaults to true.
    """
    logger.info(f"[PRESENCE] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    data, error = json_body(request)
    if error:
        return error

    online = data.get("online", True)
    if not isinstance(online, bool):
        return JsonResponse({"error": "invalid_online"}, status=400)

    session = get_runtime().relay.presence(request.identity, online)
    return JsonResponse({
        "success": True,
        "online": session.is_online,
        "lastSeenAt": format_timestamp(session.last_seen_at),
    })


@csrf_exempt
@identity_required
@signaling_errors
def presence_status(request, user_id):
    if request.method != "GET":
        return HttpResponseNotAllowed(["GET"])

    sessions = get_runtime().sessions
    user_id = identity_key(user_id, "user_id")
    session = sessions.get(user_id)

    return JsonResponse({
        "userId": user_id,
        "online": bool(session and session.is_online),
        "reachable": sessions.is_reachable(user_id),
        "lastSeenAt": format_timestamp(session.last_seen_at) if session else None,
    })
