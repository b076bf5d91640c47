from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from routers.rooms import rooms_router
from backend import JoinError, signaling_backend
from schemas.rooms import HealthResponse, MalformedMessage, parse_client_message
from constants import CORS_ORIGINS, LOG_FILE, LOG_LEVEL, SWEEP_INTERVAL_SECONDS
from logging_config import get_logger, setup_logging
import asyncio

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


async def sweep_empty_rooms(interval: float):
    """Background task deleting rooms whose members vanished without a clean leave."""
    logger.info(f"Starting empty-room sweeper (every {interval}s)")
    try:
        while True:
            await asyncio.sleep(interval)
            try:
                removed = await signaling_backend.sweep()
                if removed:
                    logger.info(f"Sweep removed {removed} empty rooms")
            except Exception as e:
                logger.error(f"Error during room sweep: {e}", exc_info=True)
    except asyncio.CancelledError:
        logger.info("Empty-room sweeper cancelled")
        raise


@asynccontextmanager
async def lifespan(_app: FastAPI):
    sweeper = asyncio.create_task(sweep_empty_rooms(SWEEP_INTERVAL_SECONDS))
    yield
    sweeper.cancel()
    await asyncio.gather(sweeper, return_exceptions=True)


app = FastAPI(title="Voice call signaling relay", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rooms_router)

logger.info("FastAPI application initialized")


@app.get("/health", response_model=HealthResponse)
async def health():
    stats = signaling_backend.stats
    return HealthResponse(
        status="ok",
        rooms=len(signaling_backend.rooms),
        connections=len(signaling_backend.connections),
        relayed=stats.relayed,
        dropped_unaddressable=stats.dropped_unaddressable,
        dropped_overflow=stats.dropped_overflow,
    )


async def pump_outbox(websocket: WebSocket, connection):
    """Write queued events to the socket in order until cancelled."""
    while True:
        event = await connection.outbox.get()
        await websocket.send_json(event)


async def handle_client_message(connection_id: str, raw: str):
    try:
        message_type, message = parse_client_message(raw)
    except MalformedMessage as e:
        logger.info(f"Malformed message from connection {connection_id}: {e}")
        signaling_backend.send(connection_id, {"type": "error", "error": "malformed", "detail": str(e)})
        return

    logger.debug(f"Received {message_type} from connection {connection_id}")
    if message_type == "create-room":
        await signaling_backend.create_room(connection_id, message.room_id)
    elif message_type == "join-room":
        try:
            await signaling_backend.join_room(connection_id, message.room_id)
        except JoinError as e:
            signaling_backend.send(connection_id, {"type": e.event_type})
    elif message_type == "leave-room":
        await signaling_backend.leave_room(connection_id, message.room_id)
    else:
        await signaling_backend.relay(message_type, message.room_id, connection_id, message.payload)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Signaling socket: one per client, carrying room control and negotiation messages."""
    await websocket.accept()
    connection = signaling_backend.admit()
    connection_id = connection.connection_id
    writer = asyncio.create_task(pump_outbox(websocket, connection))
    client_gone = False

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                client_gone = True
                logger.info(f"WebSocket disconnected for connection {connection_id} (code {frame.get('code')})")
                break

            text = frame.get("text")
            if text is None:
                signaling_backend.send(connection_id, {
                    "type": "error",
                    "error": "malformed",
                    "detail": "Binary frames are not supported",
                })
                continue
            await handle_client_message(connection_id, text)
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
    finally:
        # Peer must hear user-left before this connection's resources go away
        await signaling_backend.dismiss(connection_id)
        writer.cancel()
        await asyncio.gather(writer, return_exceptions=True)
        if not client_gone:
            try:
                await websocket.close()
            except Exception as e:
                logger.debug(f"Error closing WebSocket: {e}")
