"""WebSocket route for live channel updates.

Endpoint:
  WS /ws/channels?device={id}  - channel value updates of one device
                                 (all devices when the parameter is omitted)
"""

import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from .websocket_hub import ALL_DEVICES, channel_topic

router = APIRouter(tags=["websocket"])
logger = logging.getLogger("coiotd.ws.routes")


@router.websocket("/ws/channels")
async def ws_channels(ws: WebSocket, device: str = Query(default=ALL_DEVICES)):
    """Stream channel updates in real-time."""
    hub = router.app.state.ws_hub
    await ws.accept()
    topic = channel_topic(device)
    await hub.subscribe(ws, topic)
    logger.info("Channel stream connected: device=%s", device)

    try:
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await hub.unsubscribe(ws, topic)
        logger.info("Channel stream disconnected: device=%s", device)
