#!/usr/bin/env python3
"""
Debug tool: print RAW garage responses to diagnose payload formats.
Run: python3 debug_api.py [BOT_ID ...]
"""
import asyncio, json, sys

import aiohttp

from pokedfleet.client import MCPClient, RemoteAPIError
from pokedfleet.config import API_KEY, CALL_TIMEOUT, SERVER_URL
from pokedfleet.parser import StatusParser

PROBES = [
    ("garage_list_my_pokedbots",    {}),
    ("racing_list_upcoming_events", {}),
    ("racing_get_my_registrations", {}),
]


def show(result):
    print(f"  isError: {result.is_error}")
    print(f"  Text   : {result.text[:800]}")
    if isinstance(result.data, dict):
        print(f"  JSON keys: {list(result.data.keys())}")
    elif isinstance(result.data, list) and result.data:
        print(f"  JSON[0]  : {json.dumps(result.data[0])[:300]}")


async def probe(bot_ids: list):
    print("=" * 60)
    print(f"  MCP URL : {SERVER_URL}")
    print(f"  API KEY : {API_KEY[:8]}..." if len(API_KEY) > 8 else f"  API KEY : {API_KEY or '(none)'}")
    print("=" * 60)

    async with aiohttp.ClientSession() as session:
        client = MCPClient(SERVER_URL, API_KEY, session, timeout=CALL_TIMEOUT)
        try:
            info = await client.connect()
            print(f"  ✅ initialize: {json.dumps(info.get('serverInfo', {}))}")
            tools = await client.list_tools()
        except RemoteAPIError as e:
            print(f"  ❌ {e}")
            return 1
        print(f"\n  {len(tools)} tool(s):")
        for t in tools:
            print(f"   • {t.get('name')}: {(t.get('description') or '')[:70]}")

        calls = PROBES + [("garage_get_robot_details", {"token_index": b}) for b in bot_ids]
        parser = StatusParser()
        for name, args in calls:
            print(f"\n{'─'*50}")
            print(f"  tools/call {name} {args}")
            try:
                result = await client.call_tool(name, args)
            except RemoteAPIError as e:
                print(f"  ❌ {e}")
                continue
            show(result)
            if name == "garage_get_robot_details" and not result.is_error:
                print(f"  Parsed : {parser.parse(args['token_index'], result)}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(probe([int(a) for a in sys.argv[1:]])))
