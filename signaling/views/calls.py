import logging

from django.http import HttpResponseNotAllowed, JsonResponse
from django.views.decorators.csrf import csrf_exempt

from ..auth import identity_required
from ..http import json_body, signaling_errors
from ..runtime import get_runtime
from ..utils import format_timestamp, identity_key

logger = logging.getLogger("signaling")


def _call_response(result, **extra):
    body = {
        "success": True,
        "callId": result.call_id,
        "state": result.state.value,
        "published": result.published,
    }
    if result.duplicate:
        body["duplicate"] = True
    body.update(extra)
    return JsonResponse(body)


@csrf_exempt
@identity_required
@signaling_errors
def call_offer(request):
    """
    Ring another user - the callee must have a live session and no active call.
    """
    logger.info(f"[CALL/OFFER] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    data, error = json_body(request)
    if error:
        return error

    target_id = data.get("target_id")
    if target_id is None:
        return JsonResponse({"error": "missing_fields", "required": ["target_id"]}, status=400)

    result = get_runtime().relay.offer(request.identity, target_id, data.get("payload"))
    return _call_response(result)


@csrf_exempt
@identity_required
@signaling_errors
def call_answer(request):
    """
    Accept a ringing call.
    """
    logger.info(f"[CALL/ANSWER] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    data, error = json_body(request)
    if error:
        return error

    call_id = data.get("call_id")
    if not call_id:
        return JsonResponse({"error": "missing_call_id"}, status=400)

    result = get_runtime().relay.answer(request.identity, call_id, data.get("payload"))
    return _call_response(result)


@csrf_exempt
@identity_required
@signaling_errors
def call_reject(request):
    """
    Decline a ringing call.
    """
    logger.info(f"[CALL/REJECT] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    data, error = json_body(request)
    if error:
        return error

    call_id = data.get("call_id")
    if not call_id:
        return JsonResponse({"error": "missing_call_id"}, status=400)

    result = get_runtime().relay.reject(request.identity, call_id, data.get("reason") or "declined")
    return _call_response(result)


@csrf_exempt
@identity_required
@signaling_errors
def call_end(request):
    """
    Hang up - ends a connected call, or cancels one that is still ringing.
    """
    logger.info(f"[CALL/END] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    data, error = json_body(request)
    if error:
        return error

    call_id = data.get("call_id")
    if not call_id:
        return JsonResponse({"error": "missing_call_id"}, status=400)

    result = get_runtime().relay.end(request.identity, call_id)
    return _call_response(result)


@csrf_exempt
@identity_required
@signaling_errors
def call_signal(request):
    """
    Relay an ICE candidate to the other party. Candidates for a pair without
    a ringing or connected call are dropped, not rejected.
    """
    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    data, error = json_body(request)
    if error:
        return error

    target_id = data.get("target_id")
    candidate = data.get("candidate")
    if target_id is None or candidate is None:
        return JsonResponse({"error": "missing_fields", "required": ["target_id", "candidate"]}, status=400)

    result = get_runtime().relay.ice_candidate(
        request.identity, target_id, candidate, call_id=data.get("call_id")
    )
    return JsonResponse({
        "success": True,
        "callId": result.call_id,
        "relayed": result.published,
    })


@csrf_exempt
@identity_required
@signaling_errors
def call_status(request, user_id):
    """
    Call state between the requesting user and ``user_id``.
    """
    if request.method != "GET":
        return HttpResponseNotAllowed(["GET"])

    relay = get_runtime().relay
    other_id = identity_key(user_id, "user_id")
    state = relay.call_state(request.identity.id, other_id)

    body = {"userId": other_id, "state": state.value, "callId": None}
    call = relay.active_call(request.identity.id)
    if call is not None and call.other(request.identity.id) == other_id:
        body.update({
            "callId": call.call_id,
            "callerId": call.caller_id,
            "calleeId": call.callee_id,
            "createdAt": format_timestamp(call.created_at),
            "answeredAt": format_timestamp(call.answered_at),
        })
    return JsonResponse(body)
