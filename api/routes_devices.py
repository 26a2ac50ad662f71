"""Device inspection routes for the CoIoT API.

Read-only views on the configured devices and their live sessions, plus
one action: asking a device for a fresh description.
"""

from fastapi import APIRouter, HTTPException, Query

from .models import ChannelValueResponse, DeviceResponse, MessageHistory, SchemaResponse

router = APIRouter(prefix="/api/v1/devices", tags=["devices"])


@router.get("", response_model=list[DeviceResponse])
def list_devices():
    """List all configured devices with live session state."""
    manager = router.app.state.manager
    return manager.list_devices()


@router.get("/{device_id}", response_model=DeviceResponse)
def get_device(device_id: str):
    manager = router.app.state.manager
    device = manager.get_device(device_id)
    if not device:
        raise HTTPException(status_code=404, detail="Device not found")
    return device


@router.get("/{device_id}/schema", response_model=SchemaResponse)
def get_schema(device_id: str):
    """Blocks and sensors decoded from the device description."""
    manager = router.app.state.manager
    schema = manager.get_schema(device_id)
    if schema is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return schema


@router.get("/{device_id}/channels", response_model=list[ChannelValueResponse])
def get_channels(device_id: str):
    """Last published value of every channel, ordered by channel id."""
    manager = router.app.state.manager
    channels = manager.get_channels(device_id)
    if channels is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return channels


@router.post("/{device_id}/refresh", status_code=202)
def refresh_device(device_id: str):
    """Request the device description now (replaces any outstanding request)."""
    manager = router.app.state.manager
    if not manager.refresh(device_id):
        raise HTTPException(status_code=404, detail="Device not found")
    return {"status": "requested", "device_id": device_id}


@router.get("/{device_id}/messages", response_model=MessageHistory)
def get_messages(
    device_id: str,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
):
    """Recently processed CoIoT messages of a device (newest first)."""
    manager = router.app.state.manager
    if not manager.get_device(device_id):
        raise HTTPException(status_code=404, detail="Device not found")
    inspector = router.app.state.message_inspector
    if inspector is None:
        return {"messages": [], "count": 0, "total_buffered": 0}
    entries = inspector.get_history(device_id, limit=limit, offset=offset)
    stats = inspector.get_stats(device_id)
    return {
        "messages": entries,
        "count": len(entries),
        "total_buffered": stats.get("buffered", 0),
    }
