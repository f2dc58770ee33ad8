from __future__ import annotations

import json
import logging
from dataclasses import asdict

from aiohttp import WSMsgType, web
from pydantic import ValidationError

from locations_offline.agent.agent import OfflineAgent
from locations_offline.agent.messages import parse_message
from locations_offline.agent.models import InterceptedRequest
from locations_offline.agent.transport import filter_headers
from locations_offline.config.models import AppConfig

logger = logging.getLogger(__name__)

AGENT_KEY = web.AppKey("agent", OfflineAgent)

# Photos are capped at 10 MB upstream; leave room for the other form fields.
MAX_REQUEST_BYTES = 16 * 1024 * 1024


async def _on_startup(app: web.Application) -> None:
    agent = app[AGENT_KEY]
    await agent.install()
    # Stale caches are gone before the first request is accepted.
    await agent.activate()
    await agent.start()


async def _on_cleanup(app: web.Application) -> None:
    await app[AGENT_KEY].stop()


async def handle_proxy(request: web.Request) -> web.Response:
    agent = request.app[AGENT_KEY]
    body = await request.read()
    intercepted = InterceptedRequest(
        method=request.method,
        url=agent.upstream_url(request.path_qs),
        headers=dict(request.headers),
        body=body,
        destination=request.headers.get("Sec-Fetch-Dest", ""),
    )
    response = await agent.handle_fetch(intercepted)
    return web.Response(
        status=response.status,
        reason=response.reason or None,
        headers=filter_headers(response.headers),
        body=response.body,
    )


def _bad_message(error: str) -> web.Response:
    return web.json_response({"error": error}, status=400)


async def handle_message(request: web.Request) -> web.Response:
    agent = request.app[AGENT_KEY]
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        return _bad_message("Message body must be JSON.")
    try:
        message = parse_message(payload)
    except ValidationError as e:
        logger.warning("Unknown or malformed agent message. errors=%d", e.error_count())
        return _bad_message("Unknown or malformed message.")
    reply = await agent.handle_message(message)
    return web.json_response(reply or {})


async def handle_websocket(request: web.Request) -> web.WebSocketResponse:
    agent = request.app[AGENT_KEY]
    ws = web.WebSocketResponse(heartbeat=30.0)
    await ws.prepare(request)
    agent.notifier.register(ws)
    try:
        async for msg in ws:
            if msg.type != WSMsgType.TEXT:
                continue
            try:
                message = parse_message(json.loads(msg.data))
            except (json.JSONDecodeError, ValidationError):
                logger.warning("Ignoring unknown or malformed websocket message.")
                await ws.send_json({"type": "ERROR", "error": "Unknown or malformed message."})
                continue
            reply = await agent.handle_message(message)
            if reply is not None:
                await ws.send_json({"type": f"{message.type}_REPLY", **reply})
    finally:
        agent.notifier.unregister(ws)
    return ws


async def handle_sync(request: web.Request) -> web.Response:
    agent = request.app[AGENT_KEY]
    tag = None
    if request.can_read_body:
        try:
            payload = await request.json()
        except json.JSONDecodeError:
            return _bad_message("Sync body must be JSON.")
        if isinstance(payload, dict):
            tag = payload.get("tag")
    report = await agent.handle_sync(tag)
    if report.drained:
        agent.sync_agent.clear_registration(report.tag)
    return web.json_response(asdict(report))


def create_app(config: AppConfig, agent: OfflineAgent) -> web.Application:
    app = web.Application(client_max_size=MAX_REQUEST_BYTES)
    app[AGENT_KEY] = agent

    prefix = config.server.control_prefix.rstrip("/")
    app.router.add_post(f"{prefix}/messages", handle_message)
    app.router.add_get(f"{prefix}/ws", handle_websocket)
    app.router.add_post(f"{prefix}/sync", handle_sync)
    app.router.add_route("*", "/{tail:.*}", handle_proxy)

    app.on_startup.append(_on_startup)
    app.on_cleanup.append(_on_cleanup)
    return app
