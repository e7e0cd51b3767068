import logging

from django.http import HttpResponseNotAllowed, JsonResponse
from django.views.decorators.csrf import csrf_exempt

from ..auth import identity_required
from ..channels import conversation_id, group_channel_id
from ..http import json_body, signaling_errors
from ..runtime import get_runtime

logger = logging.getLogger("signaling")


def _typing_channel(request, data):
    if data.get("channel_id"):
        return data["channel_id"]
    if data.get("receiver_id") is not None:
        return conversation_id(request.identity.id, data["receiver_id"])
    if data.get("group_id") is not None:
        return group_channel_id(data["group_id"])
    return None


@csrf_exempt
@identity_required
@signaling_errors
def typing(request):
    """
    Typing indicator - accepts channel_id, receiver_id (one-to-one) or group_id.
    """
    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    data, error = json_body(request)
    if error:
        return error

    channel_id = _typing_channel(request, data)
    if channel_id is None:
        return JsonResponse({
            "error": "missing_fields",
            "required_one_of": ["channel_id", "receiver_id", "group_id"],
        }, status=400)

    is_typing = data.get("is_typing", True)
    if not isinstance(is_typing, bool):
        return JsonResponse({"error": "invalid_is_typing"}, status=400)

    published = get_runtime().relay.typing(request.identity, channel_id, is_typing)
    return JsonResponse({"success": True, "channelId": channel_id, "published": published})


def _receipt(request, tag, relay_method):
    logger.info(f"[{tag}] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    data, error = json_body(request)
    if error:
        return error

    message_id = data.get("message_id")
    sender_id = data.get("sender_id")
    if message_id is None or sender_id is None:
        return JsonResponse({"error": "missing_fields", "required": ["message_id", "sender_id"]}, status=400)

    published = getattr(get_runtime().relay, relay_method)(request.identity, sender_id, message_id)
    return JsonResponse({"success": True, "messageId": message_id, "published": published})


@csrf_exempt
@identity_required
@signaling_errors
def message_read(request):
    return _receipt(request, "MESSAGES/READ", "read_receipt")


@csrf_exempt
@identity_required
@signaling_errors
def message_delivered(request):
    return _receipt(request, "MESSAGES/DELIVERED", "delivered")
