from fastapi import APIRouter, HTTPException, Request
from schemas.rooms import CreateRoomResponse, RoomDetailsResponse
from backend import signaling_backend
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


@rooms_router.post("/", response_model=CreateRoomResponse)
async def create_room(request: Request):
    """Mint a room code for a client that wants one before opening its socket.

    The code is not reserved: the room only exists once a client sends
    create-room over the WebSocket.
    """
    room_id = signaling_backend.unused_room_code()

    # Construct WebSocket URL using request's base URL
    base_url = str(request.base_url).rstrip('/')
    ws_base = base_url.replace("http://", "ws://").replace("https://", "wss://")
    ws_url = f"{ws_base}/ws"

    client_host = request.client.host if request.client else 'unknown'
    logger.info(f"Minted room code {room_id} for {client_host}")
    return CreateRoomResponse(room_id=room_id, ws_url=ws_url)


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: str):
    room = signaling_backend.get_room(room_id)
    if room is None:
        logger.info(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    return RoomDetailsResponse(
        room_id=room.room_id,
        created_at=room.created_at.isoformat(),
        participants_count=len(room.members),
        is_full=room.is_full,
    )
