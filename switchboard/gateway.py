"""Gateway to the messaging platform.

The core only depends on the small ``Gateway`` protocol and the
``InboundMessage`` record defined here. ``BridgeGateway`` is the shipped
implementation: it talks to a platform bridge service over a WebSocket
(inbound events) and plain HTTP (outbound replies).

Key classes:
    InboundMessage: One received message, already normalized.
    Gateway: Protocol consumed by the dispatcher and command handlers.
    BridgeGateway: aiohttp client for the bridge service.
"""

import asyncio
import json
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, FrozenSet, Optional, Pattern, Protocol

import aiohttp
import structlog

from .exceptions import GatewayError

logger = structlog.get_logger("switchboard.gateway")

MAX_RECONNECT_DELAY = 300


class OriginKind(str, Enum):
    """Where a message was posted."""
    GUILD = "guild"
    DIRECT = "direct"


@dataclass(frozen=True)
class InboundMessage:
    """A message received from the platform.

    Attributes:
        origin_id: Guild id for guild messages, DM channel id otherwise.
        channel_id: Channel replies are posted to.
        author_permissions: Author's permission tokens in the guild;
            None outside a guild.
        bot_permissions: The bot's own permission tokens in the guild;
            None outside a guild.
    """
    message_id: str
    author_id: str
    content: str
    origin_kind: OriginKind
    origin_id: str
    channel_id: str
    author_name: str = ""
    author_permissions: Optional[FrozenSet[str]] = None
    bot_permissions: Optional[FrozenSet[str]] = None
    author_is_bot: bool = False
    is_webhook: bool = False
    received_at: float = field(default_factory=time.time)

    @property
    def in_guild(self) -> bool:
        return self.origin_kind == OriginKind.GUILD


MessageCallback = Callable[[InboundMessage], Awaitable[None]]


class Gateway(Protocol):
    """What the core needs from the platform connection."""

    bot_user_id: str
    bot_name: str

    async def connect(self) -> None:
        ...

    async def reply(self, channel_id: str, content: str) -> None:
        ...

    async def listen(self, on_message: "MessageCallback") -> None:
        ...

    async def close(self) -> None:
        ...


def mention_pattern(bot_user_id: str) -> Pattern[str]:
    """Regex matching a leading mention of the bot plus trailing spaces."""
    return re.compile(rf"^<@!?{re.escape(bot_user_id)}>\s*")


def _permissions(value) -> Optional[FrozenSet[str]]:
    if value is None:
        return None
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"permissions must be a list, got {type(value).__name__}")
    return frozenset(str(p) for p in value)


def parse_bridge_event(data) -> Optional[InboundMessage]:
    """Turn a bridge ``message_create`` event into an InboundMessage.

    Returns None for any other event type or for malformed payloads.
    """
    if not isinstance(data, dict) or data.get("type") != "message_create":
        return None
    msg = data.get("message")
    if not isinstance(msg, dict):
        return None

    author = msg.get("author")
    if not isinstance(author, dict):
        return None
    author_id = author.get("id")
    channel_id = msg.get("channel_id")
    content = msg.get("content") or ""
    if not author_id or not channel_id or not isinstance(content, str):
        return None

    guild_id = msg.get("guild_id")
    if guild_id:
        origin_kind, origin_id = OriginKind.GUILD, str(guild_id)
        try:
            author_permissions = _permissions(msg.get("member_permissions", []))
            bot_permissions = _permissions(msg.get("bot_permissions", []))
        except ValueError as e:
            logger.warning("invalid_event", error=str(e))
            return None
    else:
        origin_kind, origin_id = OriginKind.DIRECT, str(channel_id)
        author_permissions = None
        bot_permissions = None

    return InboundMessage(
        message_id=str(msg.get("id", "")),
        author_id=str(author_id),
        author_name=str(author.get("name", "")),
        content=content,
        origin_kind=origin_kind,
        origin_id=origin_id,
        channel_id=str(channel_id),
        author_permissions=author_permissions,
        bot_permissions=bot_permissions,
        author_is_bot=bool(author.get("bot", False)),
        is_webhook=bool(msg.get("webhook_id")),
    )


class BridgeGateway:
    """Connects to the platform bridge and relays messages both ways.

    Args:
        base_url: Bridge HTTP base URL (ws/wss derived from it).
        token: Bearer token sent with every request.
    """

    def __init__(self, base_url: str, token: str = ""):
        self.base_url = base_url.rstrip("/")
        self._token = token
        self.session: Optional[aiohttp.ClientSession] = None
        self.bot_user_id: str = ""
        self.bot_name: str = ""
        self.running = False

    @property
    def _headers(self) -> dict:
        if not self._token:
            return {}
        return {"Authorization": f"Bearer {self._token}"}

    async def connect(self) -> None:
        """Open the HTTP session and fetch the bot identity."""
        if self.session is None:
            self.session = aiohttp.ClientSession(headers=self._headers)
        url = f"{self.base_url}/v1/me"
        try:
            async with self.session.get(url, timeout=aiohttp.ClientTimeout(total=10)) as resp:
                if resp.status != 200:
                    raise GatewayError("Bridge identity request failed", status=resp.status)
                me = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise GatewayError(f"Bridge unreachable: {e}") from e

        self.bot_user_id = str(me.get("id", ""))
        self.bot_name = str(me.get("name", ""))
        self.running = True
        logger.info("gateway_connected", bot_user_id=self.bot_user_id, bot_name=self.bot_name)

    async def reply(self, channel_id: str, content: str) -> None:
        """Post a text message to a channel."""
        if self.session is None:
            logger.warning("reply_without_session", channel_id=channel_id)
            return
        url = f"{self.base_url}/v1/channels/{channel_id}/messages"
        try:
            async with self.session.post(url, json={"content": content}) as resp:
                if resp.status not in (200, 201):
                    body = await resp.text()
                    logger.warning("reply_failed", status=resp.status, body=body[:200])
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("reply_error", channel_id=channel_id, error=str(e))

    async def listen(self, on_message: MessageCallback) -> None:
        """Receive events over WebSocket until stopped, reconnecting on failure."""
        ws_base = self.base_url.replace("http://", "ws://").replace("https://", "wss://")
        ws_url = f"{ws_base}/v1/events"
        reconnect_delay = 5

        while self.running:
            try:
                logger.info("websocket_connecting", url=ws_url)
                async with self.session.ws_connect(ws_url, heartbeat=30) as ws:
                    logger.info("websocket_connected")
                    reconnect_delay = 5
                    async for msg in ws:
                        if msg.type == aiohttp.WSMsgType.TEXT:
                            try:
                                data = json.loads(msg.data)
                            except json.JSONDecodeError:
                                logger.warning("invalid_json", data=msg.data[:100])
                                continue
                            message = parse_bridge_event(data)
                            if message is not None:
                                await on_message(message)
                        elif msg.type == aiohttp.WSMsgType.ERROR:
                            logger.error("websocket_error", error=str(ws.exception()))
                            break
                        elif msg.type == aiohttp.WSMsgType.CLOSED:
                            logger.info("websocket_closed")
                            break

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("websocket_exception", error=str(e))
                await asyncio.sleep(reconnect_delay)
                reconnect_delay = min(reconnect_delay * 2, MAX_RECONNECT_DELAY)

    async def close(self) -> None:
        self.running = False
        if self.session:
            await self.session.close()
            self.session = None
        logger.info("gateway_closed")
