"""
Async client for the garage's MCP endpoint (JSON-RPC 2.0 over HTTP).

``MCPClient`` speaks the wire protocol; ``GarageAPI`` exposes the handful
of tools the fleet cycle needs under their operational names.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp

from pokedfleet import __version__
from pokedfleet.models import BotState, RaceEvent, Registration
from pokedfleet.parser import (
    StatusParser, parse_bot_list, parse_events, parse_registrations,
)

log = logging.getLogger("PokedFleet.api")

PROTOCOL_VERSION = "2024-11-05"


class RemoteAPIError(Exception):
    """A single RPC call failed before producing a tool result."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class RemoteAPIUnavailable(RemoteAPIError):
    """The server could not be reached at cycle start."""


@dataclass(frozen=True)
class ToolResult:
    is_error: bool
    text:     str = ""
    data:     Any = None   # JSON-decoded text, when it decodes

    @classmethod
    def from_raw(cls, raw: Any) -> "ToolResult":
        if not isinstance(raw, dict):
            return cls(is_error=False, text="" if raw is None else str(raw))
        text = ""
        for block in raw.get("content") or []:
            if isinstance(block, dict) and block.get("type", "text") == "text":
                text = block.get("text") or ""
                break
        data = None
        if text:
            try:
                data = json.loads(text)
            except (json.JSONDecodeError, ValueError):
                data = None
        return cls(is_error=bool(raw.get("isError")), text=text, data=data)


# ═══════════════════════════════════════════════════════════════
#  MCP CLIENT  (async JSON-RPC wrapper)
# ═══════════════════════════════════════════════════════════════

class MCPClient:

    def __init__(self, url: str, key: str, session: aiohttp.ClientSession,
                 timeout: float = 20.0):
        self.url      = url
        self.session  = session
        self.timeout  = timeout
        self.server_info: Optional[dict] = None
        self._req_id  = 0
        self.headers  = {
            "Content-Type": "application/json",
            "Accept":       "application/json",
            "User-Agent":   f"pokedfleet/{__version__}",
        }
        if key:
            self.headers["x-api-key"] = key

    async def _rpc(self, method: str, params: Optional[dict] = None) -> Any:
        self._req_id += 1
        body = {"jsonrpc": "2.0", "id": self._req_id, "method": method, "params": params or {}}
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with self.session.post(self.url, json=body, headers=self.headers,
                                         timeout=timeout) as r:
                text = await r.text()
                log.debug(f"[API] {method} → HTTP {r.status} | body: {text[:300]}")
                if r.status == 401:
                    raise RemoteAPIError("401 UNAUTHORIZED — check MCP_API_KEY", retryable=False)
                if r.status == 403:
                    raise RemoteAPIError("403 FORBIDDEN — key valid but access denied", retryable=False)
                if r.status != 200:
                    raise RemoteAPIError(f"HTTP {r.status}: {text[:200]}",
                                         retryable=r.status == 429 or r.status >= 500)
        except asyncio.TimeoutError:
            raise RemoteAPIError(f"timeout after {self.timeout:.0f}s on {method}")
        except aiohttp.ClientConnectorError as e:
            raise RemoteAPIError(f"cannot connect to {self.url}: {e}")
        except aiohttp.ClientError as e:
            raise RemoteAPIError(f"connection error on {method}: {e}")

        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            raise RemoteAPIError(f"non-JSON response to {method}: {text[:200]}")
        if not isinstance(data, dict):
            raise RemoteAPIError(f"unexpected response type to {method}: {type(data).__name__}")
        if data.get("error"):
            err = data["error"]
            raise RemoteAPIError(f"JSON-RPC error: {err.get('message')} (code: {err.get('code')})")
        return data.get("result")

    async def connect(self) -> dict:
        try:
            result = await self._rpc("initialize", {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities":    {},
                "clientInfo":      {"name": "pokedfleet", "version": __version__},
            })
        except RemoteAPIError as e:
            raise RemoteAPIUnavailable(f"initialize failed: {e}", retryable=e.retryable)
        self.server_info = result or {}
        info = self.server_info.get("serverInfo", {})
        log.info(f"[API] Connected to {info.get('name', self.url)} {info.get('version', '')}".rstrip())
        return self.server_info

    async def list_tools(self) -> list:
        result = await self._rpc("tools/list")
        return (result or {}).get("tools", [])

    async def call_tool(self, name: str, args: Optional[dict] = None) -> ToolResult:
        log.debug(f"[API] tools/call {name} {args or {}}")
        raw = await self._rpc("tools/call", {"name": name, "arguments": args or {}})
        return ToolResult.from_raw(raw)


# ═══════════════════════════════════════════════════════════════
#  GARAGE API  (the operations a fleet cycle consumes)
# ═══════════════════════════════════════════════════════════════

class GarageAPI:

    def __init__(self, client: MCPClient, parser: Optional[StatusParser] = None):
        self.client = client
        self.parser = parser or StatusParser()

    async def get_status(self, bot_id: int) -> Optional[BotState]:
        result = await self.client.call_tool("garage_get_robot_details", {"token_index": bot_id})
        if result.is_error:
            log.warning(f"[STATUS] #{bot_id}: {result.text[:120] or 'error without message'}")
            return None
        return self.parser.parse(bot_id, result)

    async def stop_activity(self, bot_id: int) -> ToolResult:
        return await self.client.call_tool("garage_complete_scavenging", {"token_index": bot_id})

    async def start_activity(self, bot_id: int, zone: str) -> ToolResult:
        return await self.client.call_tool("garage_start_scavenging",
                                           {"token_index": bot_id, "zone": zone})

    async def paid_recharge(self, bot_id: int) -> ToolResult:
        return await self.client.call_tool("garage_recharge_robot", {"token_index": bot_id})

    async def paid_repair(self, bot_id: int) -> ToolResult:
        return await self.client.call_tool("garage_repair_robot", {"token_index": bot_id})

    async def register_for_race(self, event_id: int, bot_id: int) -> ToolResult:
        return await self.client.call_tool("racing_register_for_event",
                                           {"event_id": event_id, "token_index": bot_id})

    async def list_upcoming_races(self) -> list[RaceEvent]:
        result = await self.client.call_tool("racing_list_upcoming_events", {})
        if result.is_error:
            raise RemoteAPIError(f"racing_list_upcoming_events: {result.text[:200]}")
        return parse_events(result)

    async def get_my_registrations(self) -> list[Registration]:
        result = await self.client.call_tool("racing_get_my_registrations", {})
        if result.is_error:
            raise RemoteAPIError(f"racing_get_my_registrations: {result.text[:200]}")
        return parse_registrations(result)

    async def list_my_bots(self) -> list[int]:
        result = await self.client.call_tool("garage_list_my_pokedbots", {})
        if result.is_error:
            raise RemoteAPIError(f"garage_list_my_pokedbots: {result.text[:200]}")
        return parse_bot_list(result)
