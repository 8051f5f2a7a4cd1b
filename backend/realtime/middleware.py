"""WebSocket authentication middleware for the change feed."""

import hmac
import logging
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware
from django.conf import settings
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from rest_framework_simplejwt.tokens import AccessToken

User = get_user_model()
logger = logging.getLogger(__name__)


@database_sync_to_async
def _get_user(user_id):
    return User.objects.get(id=user_id)


def _has_store_key(params) -> bool:
    expected = getattr(settings, "STORE_ANON_KEY", "")
    if not expected:
        return True
    supplied = (params.get("apikey") or [""])[0]
    return hmac.compare_digest(supplied, expected)


class FeedAuthMiddleware(BaseMiddleware):
    """
    Authenticate WebSocket connections using either:
    1. JWT in querystring (?token=...), alongside the store key (?apikey=...)
    2. Session cookies - for browser use

    A connection without a valid store key is always anonymous.
    """

    async def __call__(self, scope, receive, send):
        query_string = scope.get("query_string", b"").decode()
        params = parse_qs(query_string)

        if not _has_store_key(params):
            logger.debug("Feed connection rejected: bad store key")
            scope["user"] = AnonymousUser()
            return await super().__call__(scope, receive, send)

        # 1) JWT from query params
        token_list = params.get("token")
        if token_list:
            try:
                access = AccessToken(token_list[0])
                scope["user"] = await _get_user(access["user_id"])
            except Exception as e:
                logger.debug("JWT auth failed: %s", e)
                scope["user"] = AnonymousUser()
            return await super().__call__(scope, receive, send)

        # 2) Cookie/session auth fallback (AuthMiddlewareStack already ran)
        scope.setdefault("user", AnonymousUser())
        return await super().__call__(scope, receive, send)
