from mangum import Mangum

from taskapi.main import create_app

_asgi_handler = None


def handler(event, context):
    global _asgi_handler

    if _asgi_handler is None:
        _asgi_handler = Mangum(create_app(), lifespan="auto")
    return _asgi_handler(event, context)
