"""
Live pipeline progress over WebSockets.

    /ws/nl-to-sql                   every conversion event
    /ws/query-execution?requestId=x only the events of request x
"""

import asyncio
import contextlib
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket

from querylens.ai_feature.progress import NL_TO_SQL_TOPIC, QUERY_EXECUTION_TOPIC
from querylens.api.deps import broadcaster

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["Progress"])


async def forward_events(websocket: WebSocket, queue: asyncio.Queue, request_id: Optional[str]):
    while True:
        event = await queue.get()
        if request_id and event.get("requestId") != request_id:
            continue
        await websocket.send_json(event)


async def stream_topic(websocket: WebSocket, topic: str, request_id: Optional[str]):
    # Subscribe before accepting so no event published after the handshake is missed
    async with broadcaster.subscribe(topic) as queue:
        await websocket.accept()
        logger.info(f"Progress subscriber joined {topic} (requestId={request_id})")

        forwarder = asyncio.create_task(forward_events(websocket, queue, request_id))
        try:
            # Subscribers only listen, incoming frames are ignored until they leave
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        finally:
            forwarder.cancel()
            # A failed send ends the forwarder early, its error is logged not leaked
            with contextlib.suppress(asyncio.CancelledError):
                try:
                    await forwarder
                except Exception as e:
                    logger.warning(f"Progress forwarder on {topic} stopped: {e}")
            logger.info(f"Progress subscriber left {topic}")


@router.websocket("/nl-to-sql")
async def nl_to_sql_progress(
    websocket: WebSocket, request_id: Optional[str] = Query(default=None, alias="requestId")
):
    await stream_topic(websocket, NL_TO_SQL_TOPIC, request_id)


@router.websocket("/query-execution")
async def query_execution_progress(
    websocket: WebSocket, request_id: Optional[str] = Query(default=None, alias="requestId")
):
    await stream_topic(websocket, QUERY_EXECUTION_TOPIC, request_id)
