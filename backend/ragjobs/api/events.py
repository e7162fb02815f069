from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ragjobs.api.deps import verify_ws_token
from ragjobs.utils.time import utc_now
from ragjobs.websocket.manager import manager

router = APIRouter()


@router.websocket("/events")
async def events(websocket: WebSocket) -> None:
    if not await verify_ws_token(websocket):
        return
    await manager.connect(websocket)
    service = getattr(websocket.app.state, "job_service", None)
    active_jobs = service.registry.snapshot() if service else []
    await websocket.send_json(
        {"type": "connected", "timestamp": utc_now(), "active_jobs": active_jobs}
    )
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)
