import asyncio
import json
import logging
from typing import Any

from fastapi import WebSocket
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder

import config
import usage
from models import HookEvent

log = logging.getLogger(__name__)

clients: set[WebSocket] = set()
_token_task: asyncio.Task | None = None


def encode(message_type: str, data: Any) -> str:
    return json.dumps({"type": message_type, "data": jsonable_encoder(data)})


async def broadcast(message: str) -> None:
    for client in list(clients):
        try:
            await client.send_text(message)
        except Exception as exc:
            log.warning("Dropping WebSocket client after send failure: %s", exc)
            clients.discard(client)


async def broadcast_event(event: HookEvent) -> None:
    await broadcast(encode("event", event))


async def _token_update_loop(interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        if not clients:
            continue
        try:
            result = await run_in_threadpool(usage.get_live_block_data)
            if result.success and result.data:
                await broadcast(encode("tokenUsage", result.data))
        except Exception:
            log.exception("Token usage broadcast failed")


def start_token_updates() -> None:
    global _token_task
    if _token_task is not None and not _token_task.done():
        return
    _token_task = asyncio.create_task(_token_update_loop(config.TOKEN_UPDATE_INTERVAL))
    log.debug("Token usage broadcasts started")


def stop_token_updates() -> None:
    global _token_task
    if _token_task is not None:
        _token_task.cancel()
        _token_task = None
        log.debug("Token usage broadcasts stopped")


def add_client(client: WebSocket) -> None:
    clients.add(client)
    if len(clients) == 1:
        start_token_updates()


def remove_client(client: WebSocket) -> None:
    clients.discard(client)
    if not clients:
        stop_token_updates()
