"""Messaging platform adapter: REST client for outbound calls, websocket event stream inbound."""

from __future__ import annotations

import asyncio
import contextlib
import json
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import aiohttp
import httpx
from loguru import logger
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from threadbridge.core.constants import DISCONNECTED_STATE
from threadbridge.core.errors import TransportError
from threadbridge.events import connection_state_changed, item_added
from threadbridge.formatting.html_text import html_to_text

if TYPE_CHECKING:
    from threadbridge.gateway import Bus

# Default retry: 5 attempts, exponential backoff 2-30s, retry on transient errors
DEFAULT_RETRY = retry(
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=1, min=2, max=30),
    retry=retry_if_exception_type(
        (
            httpx.ConnectError,
            httpx.ConnectTimeout,
            httpx.ReadTimeout,
            httpx.WriteTimeout,
            httpx.PoolTimeout,
            httpx.ReadError,
            httpx.WriteError,
        )
    ),
    reraise=True,
)

# Event stream reconnect backoff: min 2s, max 60s, jitter
_BACKOFF_MIN = 2
_BACKOFF_MAX = 60


@dataclass
class BotCredentials:
    client_id: str
    client_secret: str
    scope: str = "ALL"


@dataclass
class Item:
    """A platform conversation item (the parts the bridge uses)."""

    item_id: str
    conv_id: str
    parent_item_id: str | None = None


@dataclass
class Conversation:
    conv_id: str


class PlatformClient(Protocol):
    """Platform operations used by the controller."""

    async def authenticate(self, credentials: BotCredentials) -> None: ...

    async def get_logged_on_user(self) -> str: ...

    async def add_text_item(
        self,
        conv_id: str,
        content: str,
        *,
        parent_id: str | None = None,
        subject: str | None = None,
    ) -> Item: ...

    async def get_direct_conversation_with_user(self, user_id: str) -> Conversation | None: ...

    async def create_direct_conversation(self, user_id: str) -> Conversation: ...


def _item_from_json(data: dict[str, Any]) -> Item:
    return Item(
        item_id=str(data.get("itemId", "")),
        conv_id=str(data.get("convId", "")),
        parent_item_id=data.get("parentItemId") or None,
    )


class RestPlatformClient:
    """Async REST client for the platform API. Uses tenacity for retries.

    Endpoints (all under ``{base_url}/rest/v2``):
      POST /conversations/{convId}/messages[/{parentId}]  -> item
      GET  /conversations/direct/{userId}                 -> conversation | 404
      POST /conversations/direct                          -> conversation
      GET  /users/profile                                 -> logged-on user
    Authentication is OAuth client credentials at ``{base_url}/oauth/token``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._token: str | None = None

    @property
    def token(self) -> str | None:
        return self._token

    def _headers(self) -> dict[str, str]:
        h: dict[str, str] = {"Accept": "application/json"}
        if self._token:
            h["Authorization"] = f"Bearer {self._token}"
        return h

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def _url(self, path: str) -> str:
        return f"{self._base_url}/rest/v2{path}"

    @DEFAULT_RETRY
    async def authenticate(self, credentials: BotCredentials) -> None:
        async with self._http() as client:
            resp = await client.post(
                f"{self._base_url}/oauth/token",
                data={
                    "grant_type": "client_credentials",
                    "client_id": credentials.client_id,
                    "client_secret": credentials.client_secret,
                    "scope": credentials.scope,
                },
            )
            resp.raise_for_status()
            self._token = resp.json()["access_token"]

    @DEFAULT_RETRY
    async def get_logged_on_user(self) -> str:
        async with self._http() as client:
            resp = await client.get(self._url("/users/profile"), headers=self._headers())
            resp.raise_for_status()
            return str(resp.json()["userId"])

    @DEFAULT_RETRY
    async def add_text_item(
        self,
        conv_id: str,
        content: str,
        *,
        parent_id: str | None = None,
        subject: str | None = None,
    ) -> Item:
        path = f"/conversations/{conv_id}/messages"
        if parent_id:
            path += f"/{parent_id}"
        body: dict[str, str] = {"content": content}
        if subject:
            body["subject"] = subject
        async with self._http() as client:
            resp = await client.post(self._url(path), json=body, headers=self._headers())
            resp.raise_for_status()
            return _item_from_json(resp.json())

    @DEFAULT_RETRY
    async def get_direct_conversation_with_user(self, user_id: str) -> Conversation | None:
        async with self._http() as client:
            resp = await client.get(self._url(f"/conversations/direct/{user_id}"), headers=self._headers())
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            return Conversation(conv_id=str(resp.json()["convId"]))

    @DEFAULT_RETRY
    async def create_direct_conversation(self, user_id: str) -> Conversation:
        async with self._http() as client:
            resp = await client.post(
                self._url("/conversations/direct"),
                json={"participant": user_id},
                headers=self._headers(),
            )
            resp.raise_for_status()
            return Conversation(conv_id=str(resp.json()["convId"]))


def normalize_event(payload: dict[str, Any]) -> object | None:
    """Map a raw event-stream frame to a bridge event. None for frames we ignore."""
    kind = payload.get("type")
    if kind == "itemAdded":
        item = payload.get("item") or {}
        text = item.get("text") or {}
        _, evt = item_added(
            item_id=str(item.get("itemId", "")),
            conv_id=str(item.get("convId", "")),
            creator_id=str(item.get("creatorId", "")),
            content=html_to_text(text.get("content") or ""),
            item_type=str(item.get("type", "")),
            parent_item_id=item.get("parentItemId") or None,
            raw=item,
        )
        return evt
    if kind == "connectionStateChanged":
        _, evt = connection_state_changed(str(payload.get("state", "")))
        return evt
    return None


class PlatformAdapter:
    """Reads the platform event stream and publishes normalized events on the bus."""

    def __init__(self, bus: Bus, client: RestPlatformClient, events_url: str) -> None:
        self._bus = bus
        self._client = client
        self._events_url = events_url
        self._session: aiohttp.ClientSession | None = None
        self._task: asyncio.Task | None = None

    @property
    def name(self) -> str:
        return "platform"

    def handle_frame(self, raw: str) -> None:
        """Decode one event-stream frame and publish it."""
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Platform: undecodable event frame ({} bytes)", len(raw))
            return
        if not isinstance(payload, dict):
            return
        evt = normalize_event(payload)
        if evt is not None:
            self._bus.publish("platform", evt)

    async def _listen(self, session: aiohttp.ClientSession) -> None:
        """Follow the event stream; on drop, report Disconnected and reconnect with backoff."""
        attempt = 0
        while True:
            try:
                headers = {"Authorization": f"Bearer {self._client.token}"} if self._client.token else {}
                async with session.ws_connect(self._events_url, headers=headers, heartbeat=30) as ws:
                    attempt = 0
                    _, evt = connection_state_changed("Connected")
                    self._bus.publish("platform", evt)
                    async for msg in ws:
                        if msg.type == aiohttp.WSMsgType.TEXT:
                            self.handle_frame(msg.data)
                        elif msg.type == aiohttp.WSMsgType.ERROR:
                            break
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Platform event stream failed: {}", exc)
            attempt += 1
            _, evt = connection_state_changed(DISCONNECTED_STATE)
            self._bus.publish("platform", evt)
            delay = min(_BACKOFF_MAX, _BACKOFF_MIN * (2 ** (attempt - 1)))
            wait = delay * random.uniform(0.5, 1.5)
            logger.info("Platform event stream closed, reconnecting in {:.1f}s", wait)
            await asyncio.sleep(wait)

    async def start(self) -> None:
        self._session = aiohttp.ClientSession()
        self._task = asyncio.create_task(self._listen(self._session))
        logger.info("Platform event stream started: {}", self._events_url)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        if self._session:
            await self._session.close()
        self._task = None
        self._session = None


async def call_platform(coro, what: str):
    """Await a platform call, wrapping failures in TransportError."""
    try:
        return await coro
    except (httpx.HTTPError, aiohttp.ClientError, KeyError, ValueError) as exc:
        raise TransportError(f"platform {what} failed: {exc}", original_error=exc) from exc
