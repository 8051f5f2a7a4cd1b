"""
RemoteStore backed by the hosted store's REST API and WebSocket feed.

HTTP calls go through a requests.Session on worker threads (asgiref's
sync_to_async) so they never block the event loop. The change feed runs a
websocket-client WebSocketApp on a daemon thread and hands every event
back to the event loop with call_soon_threadsafe.
"""

import asyncio
import json
import logging
import threading
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests
import websocket
from asgiref.sync import sync_to_async

from common.lifecycle import RemoteUnavailableError, error_from_payload
from .config import StoreConfig
from .remote import ChangeEvent, RemoteStore, Subscription

logger = logging.getLogger(__name__)

RECONNECT_DELAY = 5


class ApiStore(RemoteStore):
    def __init__(self, config: StoreConfig, access_token: Optional[str] = None, http: Optional[requests.Session] = None):
        self.config = config
        self.http = http or requests.Session()
        self.http.headers.update({"apikey": config.anon_key or ""})
        self.access_token = None
        if access_token:
            self.set_access_token(access_token)

        self._subscriptions: Dict[str, Subscription] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._ws_app: Optional[websocket.WebSocketApp] = None
        self._ws_thread: Optional[threading.Thread] = None
        self._connected = threading.Event()
        self._lock = threading.Lock()

    def set_access_token(self, token: Optional[str]):
        self.access_token = token
        if token:
            self.http.headers["Authorization"] = f"Bearer {token}"
        else:
            self.http.headers.pop("Authorization", None)

    # ---------------------- HTTP ----------------------

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = self.config.api_url(path)
        try:
            resp = self.http.request(method, url, timeout=self.config.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning("%s %s failed: %s", method, url, e)
            raise RemoteUnavailableError(f"Could not reach the store: {e}")

        if resp.status_code >= 400:
            try:
                payload = resp.json()
            except ValueError:
                payload = {}
            raise error_from_payload(payload, resp.status_code)

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            raise RemoteUnavailableError("The store sent a malformed response")

    async def _call(self, method: str, path: str, **kwargs) -> Any:
        return await sync_to_async(self._request, thread_sensitive=False)(method, path, **kwargs)

    async def create(self, table, record):
        return await self._call("POST", f"api/store/{table}/", json=record)

    async def query(self, table, filters=None, order=None, limit=None):
        params = dict(filters or {})
        if order:
            params["order"] = order
        if limit:
            params["limit"] = limit
        return await self._call("GET", f"api/store/{table}/", params=params) or []

    async def update(self, table, id, patch):
        return await self._call("PATCH", f"api/store/{table}/{id}/", json=patch)

    async def rpc(self, name, args):
        return await self._call("POST", f"api/store/rpc/{name}/", json=args)

    # ---------------------- Change feed ----------------------

    async def subscribe(self, table, filters=None):
        self._loop = asyncio.get_running_loop()

        previous = self._subscriptions.get(table)
        if previous is not None:
            await previous.unsubscribe()

        subscription = Subscription(table, filters, on_close=self._drop_subscription)
        self._subscriptions[table] = subscription
        self._ensure_socket()
        self._send({"type": "subscribe", "table": table, "filters": subscription.filters})
        return subscription

    def _drop_subscription(self, subscription: Subscription):
        if self._subscriptions.get(subscription.table) is subscription:
            del self._subscriptions[subscription.table]
            self._send({"type": "unsubscribe", "table": subscription.table})

    def _feed_url(self) -> str:
        params = {"apikey": self.config.anon_key or ""}
        if self.access_token:
            params["token"] = self.access_token
        return f"{self.config.feed_url}?{urlencode(params)}"

    def _ensure_socket(self):
        with self._lock:
            if self._ws_thread is not None and self._ws_thread.is_alive():
                return
            self._ws_app = websocket.WebSocketApp(
                self._feed_url(),
                on_open=self._on_open,
                on_message=self._on_message,
                on_error=self._on_error,
                on_close=self._on_close,
            )
            self._ws_thread = threading.Thread(
                target=self._ws_app.run_forever,
                kwargs={"reconnect": RECONNECT_DELAY},
                name="rideshare-feed",
                daemon=True,
            )
            self._ws_thread.start()

    def _send(self, message: Dict[str, Any]):
        # Before the socket opens, _on_open replays every live subscription
        if not self._connected.is_set() or self._ws_app is None:
            return
        try:
            self._ws_app.send(json.dumps(message))
        except websocket.WebSocketException as e:
            logger.warning("Feed send failed: %s", e)

    def _on_open(self, ws):
        logger.info("Feed connected to %s", self.config.feed_url)
        self._connected.set()
        for table, subscription in list(self._subscriptions.items()):
            ws.send(json.dumps({"type": "subscribe", "table": table, "filters": subscription.filters}))

    def _on_message(self, ws, message):
        self.dispatch(message)

    def _on_error(self, ws, error):
        logger.warning("Feed error: %s", error)

    def _on_close(self, ws, status_code=None, reason=None):
        self._connected.clear()
        logger.info("Feed closed (%s %s)", status_code, reason or "")

    def dispatch(self, message: str) -> bool:
        """Route one raw feed message to its subscription. Runs on the feed thread."""
        try:
            payload = json.loads(message)
        except ValueError:
            logger.warning("Dropping malformed feed message")
            return False

        msg_type = payload.get("type")
        if msg_type == "error":
            logger.warning("Feed error message: %s", payload.get("message"))
            return False
        if msg_type != "change":
            logger.debug("Feed message %s", msg_type)
            return False

        try:
            event = ChangeEvent.from_message(payload)
        except (KeyError, ValueError) as e:
            logger.warning("Dropping bad change event: %s", e)
            return False

        subscription = self._subscriptions.get(event.table)
        if subscription is None or self._loop is None:
            return False
        self._loop.call_soon_threadsafe(subscription.push, event)
        return True

    async def close(self):
        for subscription in list(self._subscriptions.values()):
            await subscription.unsubscribe()
        if self._ws_app is not None:
            self._ws_app.close()
        self._connected.clear()
        self.http.close()
