"""Room history REST API router.

Endpoints:
    GET /rooms/{room_id}/history - Most recent messages of a room
"""
import logging

from fastapi import APIRouter, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from .store import RoomStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rooms"])

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


@router.get("/rooms/{room_id}/history")
async def get_room_history(
    request: Request,
    room_id: str,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE, description="Number of messages to return"),
) -> JSONResponse:
    """Get the most recent messages of a room, oldest first.

    A room that is not cached is read from storage without being cached.
    An unknown room returns an empty list.

    Example:
        GET /rooms/alice_bob/history?limit=20
    """
    store: RoomStore = request.app.state.room_store
    messages = await run_in_threadpool(store.read_history, room_id, limit)
    return JSONResponse({
        "roomId": room_id,
        "messages": [msg.to_wire() for msg in messages],
    })
