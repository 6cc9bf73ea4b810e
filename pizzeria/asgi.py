import os

import django
from django.core.asgi import get_asgi_application
from channels.routing import ProtocolTypeRouter, URLRouter

# Settings must be configured before any model import
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'pizzeria.settings')
django.setup()

from core.middleware import JWTAuthMiddleware  # noqa: E402
from core.routing import websocket_urlpatterns  # noqa: E402

application = ProtocolTypeRouter({
    "http": get_asgi_application(),
    "websocket": JWTAuthMiddleware(
        URLRouter(websocket_urlpatterns)
    ),
})
