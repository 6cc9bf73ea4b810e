from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import AccessToken

User = get_user_model()


def token_from_scope(scope):
    """Access token from ``?token=`` or, failing that, an ``Authorization: Bearer`` header."""
    query_params = parse_qs(scope.get('query_string', b'').decode())
    token = (query_params.get('token') or [''])[0]
    if token:
        return token

    for name, value in scope.get('headers', []):
        if name == b'authorization':
            scheme, _, credentials = value.decode().partition(' ')
            if scheme.lower() == 'bearer':
                return credentials.strip()
    return ''


class JWTAuthMiddleware(BaseMiddleware):
    """Sets ``scope['user']`` for websocket connections from a SimpleJWT access token."""

    async def __call__(self, scope, receive, send):
        scope = dict(scope, user=AnonymousUser())
        token = token_from_scope(scope)
        if token:
            try:
                access_token = AccessToken(token)
            except TokenError:
                pass
            else:
                scope['user'] = await self.get_user(access_token.get('user_id'))

        return await super().__call__(scope, receive, send)

    @database_sync_to_async
    def get_user(self, user_id):
        try:
            return User.objects.get(id=user_id, is_active=True)
        except User.DoesNotExist:
            return AnonymousUser()
