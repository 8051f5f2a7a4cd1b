"""Auth client for the store's /api/auth/ endpoints."""

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional

import requests
from asgiref.sync import sync_to_async

from common.lifecycle import ForbiddenError, RemoteUnavailableError, error_from_payload
from .config import StoreConfig

logger = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"


@dataclass(frozen=True)
class Session:
    user_id: int
    email: str
    access_token: str
    refresh_token: Optional[str] = None

    @classmethod
    def from_response(cls, payload: Dict[str, Any]) -> "Session":
        user = payload["user"]
        tokens = payload["tokens"]
        return cls(
            user_id=user["id"],
            email=user.get("email", ""),
            access_token=tokens["access"],
            refresh_token=tokens.get("refresh"),
        )


def _error_message(payload) -> str:
    """Flatten a DRF error body ({"field": ["msg"]}) into one line."""
    if isinstance(payload, dict):
        if "message" in payload:
            return str(payload["message"])
        if "error" in payload and isinstance(payload["error"], str):
            return payload["error"]
        for key, value in payload.items():
            inner = _error_message(value)
            return inner if key == "non_field_errors" else f"{key}: {inner}"
    if isinstance(payload, list) and payload:
        return _error_message(payload[0])
    return str(payload or "")


class AuthClient:
    """
    Sign up / sign in against the store and keep the current Session.

    Listeners registered with on_auth_state_change(callback) are called as
    callback(event, session) on every change.
    """

    def __init__(self, config: StoreConfig, http: Optional[requests.Session] = None):
        self.config = config
        self.http = http or requests.Session()
        self.http.headers.update({"apikey": config.anon_key or ""})
        self._session: Optional[Session] = None
        self._listeners: List[Callable] = []

    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        if not self.config.enabled:
            raise RemoteUnavailableError("The ride sharing service is not configured on this device.")
        try:
            resp = self.http.post(self.config.api_url(path), json=body, timeout=self.config.timeout)
        except requests.RequestException as e:
            raise RemoteUnavailableError(f"Could not reach the store: {e}")

        try:
            payload = resp.json()
        except ValueError:
            payload = {}

        if resp.status_code >= 400:
            structured = isinstance(payload, dict) and "message" in payload and "error" in payload
            error_body = payload if structured else {"message": _error_message(payload)}
            raise error_from_payload(error_body, resp.status_code)
        return payload

    async def sign_up(self, email: str, password: str, **profile) -> Session:
        payload = await sync_to_async(self._post, thread_sensitive=False)(
            "api/auth/register/", {"email": email, "password": password, **profile}
        )
        session = Session.from_response(payload)
        self._set_session(session, SIGNED_IN)
        return session

    async def sign_in(self, password: str, email: Optional[str] = None, username: Optional[str] = None) -> Session:
        body = {"password": password}
        if email:
            body["email"] = email
        if username:
            body["username"] = username
        payload = await sync_to_async(self._post, thread_sensitive=False)("api/auth/login/", body)
        session = Session.from_response(payload)
        self._set_session(session, SIGNED_IN)
        return session

    async def refresh(self) -> Session:
        if self._session is None or not self._session.refresh_token:
            raise ForbiddenError("Not signed in")
        payload = await sync_to_async(self._post, thread_sensitive=False)(
            "api/auth/refresh/", {"refresh": self._session.refresh_token}
        )
        session = replace(self._session, access_token=payload["access"])
        self._set_session(session, TOKEN_REFRESHED)
        return session

    def sign_out(self):
        # JWTs are stateless; dropping them locally is the whole sign-out
        self._set_session(None, SIGNED_OUT)

    def get_session(self) -> Optional[Session]:
        return self._session

    def on_auth_state_change(self, callback: Callable) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _set_session(self, session: Optional[Session], event: str):
        self._session = session
        for listener in list(self._listeners):
            try:
                listener(event, session)
            except Exception:
                logger.exception("Auth state listener failed on %s", event)
