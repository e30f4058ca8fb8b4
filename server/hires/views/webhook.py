from django.views.decorators.csrf import csrf_exempt

from hires.webhooks import build_router

_router = None


def get_router():
    global _router
    if _router is None:
        _router = build_router()
    return _router


@csrf_exempt
def webhook(request, service):
    """
    Single ingress for provider callbacks (``/api/webhook/<service>/``).
    """
    return get_router().dispatch(request, service)
