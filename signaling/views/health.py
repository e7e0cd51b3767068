from django.http import JsonResponse, HttpResponseNotAllowed
from django.views.decorators.csrf import csrf_exempt

from ..runtime import get_runtime


@csrf_exempt
def health(request):
    if request.method != "GET":
        return HttpResponseNotAllowed(["GET"])

    runtime = get_runtime()

    return JsonResponse({
        "status": "ok",
        "transport": "configured" if runtime.transport.is_configured() else "not_configured",
        "firestore": "connected" if runtime.persistence.is_available() else "not_configured",
        "sessions": len(runtime.sessions),
        "channels": len(runtime.router),
    })
