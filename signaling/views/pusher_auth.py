import logging

from django.http import HttpResponseNotAllowed, JsonResponse
from django.views.decorators.csrf import csrf_exempt

from ..auth import identity_required
from ..http import require_env, signaling_errors
from ..runtime import get_runtime

logger = logging.getLogger("signaling")


@csrf_exempt
@identity_required
@signaling_errors
def pusher_auth(request):
    """
    Sign a private channel subscription (Pusher client authEndpoint).

    Users may subscribe to their own user channel, their conversations and
    groups they have joined.
    """
    logger.info(f"[PUSHER/AUTH] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    missing_env = require_env("PUSHER_APP_ID", "PUSHER_KEY", "PUSHER_SECRET")
    if missing_env:
        return missing_env

    socket_id = request.POST.get("socket_id")
    channel_name = request.POST.get("channel_name")
    if not socket_id or not channel_name:
        return JsonResponse({"error": "missing_fields", "required": ["socket_id", "channel_name"]}, status=400)

    runtime = get_runtime()
    if not runtime.router.may_subscribe(request.identity.id, channel_name):
        logger.warning(f"[PUSHER/AUTH] {request.identity.id} denied {channel_name}")
        return JsonResponse({"error": "forbidden"}, status=403)

    return JsonResponse(runtime.transport.authorize_channel(socket_id, channel_name))
