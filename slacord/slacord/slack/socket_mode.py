"""Slack Socket Mode ingress.

Used instead of the HTTP Events API when an app-level token is configured.
Every envelope is acknowledged after the relay has persisted it.
"""

from __future__ import annotations

import asyncio
import logging

from slack_sdk.socket_mode.aiohttp import SocketModeClient
from slack_sdk.socket_mode.request import SocketModeRequest
from slack_sdk.socket_mode.response import SocketModeResponse
from slack_sdk.web.async_client import AsyncWebClient

from ..relay.dispatcher import Dispatcher

logger = logging.getLogger(__name__)


def make_listener(dispatcher: Dispatcher):
    async def _listener(client: SocketModeClient, req: SocketModeRequest) -> None:
        if req.type == "events_api":
            event = (req.payload or {}).get("event") or {}
            if event.get("type") == "message":
                await dispatcher.handle_event(event)
        await client.send_socket_mode_response(
            SocketModeResponse(envelope_id=req.envelope_id)
        )

    return _listener


def create_socket_client(
    app_token: str, web_client: AsyncWebClient, dispatcher: Dispatcher
) -> SocketModeClient:
    client = SocketModeClient(app_token=app_token, web_client=web_client)
    client.socket_mode_request_listeners.append(make_listener(dispatcher))
    return client


async def run_socket_mode(client: SocketModeClient) -> None:
    """Connect and keep the Socket Mode session open until cancelled."""

    await client.connect()
    logger.info("Slack Socket Mode connected")
    try:
        await asyncio.Event().wait()
    finally:
        await client.close()
        logger.info("Slack Socket Mode closed")
