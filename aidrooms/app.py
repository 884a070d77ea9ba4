from __future__ import annotations

import asyncio
import json
import logging
import os
import time
import uuid
from pathlib import Path

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from dotenv import load_dotenv

# Load .env from project root (parent folder)
_project_root = Path(__file__).resolve().parent.parent
load_dotenv(_project_root / ".env")

log_level_name = os.getenv("AID_LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
logging.basicConfig(level=log_level)

from aidrooms.config import get_settings
from aidrooms.data_loader import load_grammar
from aidrooms.runtime.bus import EventBus
from aidrooms.runtime.registry import RoomRegistry
from aidrooms.runtime.session import JoinParams
from aidrooms.service.duration import DurationProbe
from aidrooms.service.engine import GrammarEngine
from aidrooms.service.tts import SpeechSynthesizer

logger = logging.getLogger(__name__)

# Supports GOOGLE_APPLICATION_CREDENTIALS (absolute) or GOOGLE_CLOUD_KEY (relative to project root)
_google_creds = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
_google_key_path = os.getenv("GOOGLE_CLOUD_KEY")

if _google_creds:
    if not Path(_google_creds).exists():
        logger.warning(f"Google Cloud credentials file not found at: {_google_creds}")
        logger.warning("Speech synthesis will not work without credentials.")
elif _google_key_path:
    _key_path = _project_root / _google_key_path
    if _key_path.exists():
        os.environ["GOOGLE_APPLICATION_CREDENTIALS"] = str(_key_path)
        logger.info(f"Google Cloud credentials loaded from GOOGLE_CLOUD_KEY: {_key_path}")
    else:
        logger.warning(f"Google Cloud credentials file not found at: {_key_path}")
else:
    logger.info("Neither GOOGLE_APPLICATION_CREDENTIALS nor GOOGLE_CLOUD_KEY set in .env")
    logger.info("Speech synthesis will not work without credentials.")

_registry: RoomRegistry | None = None


def get_registry() -> RoomRegistry:
    global _registry
    if _registry is None:
        settings = get_settings()
        _registry = RoomRegistry(
            EventBus(),
            GrammarEngine(seed=settings.engine.seed),
            SpeechSynthesizer(),
            DurationProbe(),
            grammar=load_grammar(),
        )
    return _registry


app = FastAPI(title="Aid Rooms")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def _client_file(name: str) -> FileResponse:
    path = Path(get_settings().server.client_dir) / name
    if not path.is_file():
        raise HTTPException(status_code=404, detail=f"{name} not found")
    return FileResponse(path)


@app.get("/")
async def home() -> FileResponse:
    return _client_file("index.html")


@app.get("/healthz")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/heartbeat")
async def heartbeat(request: Request) -> dict:
    """Liveness echo, keeps hosted instances from idling."""
    try:
        body = await request.json()
    except json.JSONDecodeError:
        body = {}
    client = body.get("data") if isinstance(body, dict) else None
    logger.info("server: - HEARTBEAT -")
    return {"msg": "heartbeat", "data": {"client": client, "server": int(time.time() * 1000)}}


@app.get("/rooms")
async def list_rooms() -> list[dict]:
    return [room.info() for room in get_registry().rooms()]


@app.get("/audio/{filename}")
async def speech_audio(filename: str) -> FileResponse:
    audio_dir = Path(get_settings().tts.audio_dir).resolve()
    path = (audio_dir / filename).resolve()
    if path.parent != audio_dir or not path.is_file():
        raise HTTPException(status_code=404, detail="Audio not found")
    return FileResponse(path, media_type="audio/wav")


@app.get("/{room_id}")
async def room_page(room_id: str) -> FileResponse:
    return _client_file("room.html")


async def _pump(ws: WebSocket, outbox: asyncio.Queue[str]) -> None:
    try:
        while True:
            frame = await outbox.get()
            await ws.send_text(frame)
    except (WebSocketDisconnect, RuntimeError) as exc:
        # starlette raises RuntimeError when sending on a closed socket
        logger.info("server: stopped sending, socket closed (%s)", exc)


@app.websocket("/ws/{room_id}")
async def room_socket(ws: WebSocket, room_id: str) -> None:
    registry = get_registry()
    await ws.accept()
    participant_id = uuid.uuid4().hex
    logger.info(f"server: new connection {participant_id} for room {room_id}")

    outbox = registry.bus.connect(participant_id)
    registry.bus.join(participant_id, room_id)
    room = registry.join(participant_id, room_id, JoinParams.from_query(ws.url.query))
    sender = asyncio.create_task(_pump(ws, outbox))
    try:
        while True:
            text = await ws.receive_text()
            try:
                message = json.loads(text)
            except json.JSONDecodeError:
                logger.warning("server: undecodable frame from %s", participant_id)
                continue
            if not isinstance(message, dict) or not isinstance(message.get("event"), str):
                logger.warning("server: frame without event from %s", participant_id)
                continue
            room.handle(participant_id, message["event"], message.get("data"))
    except WebSocketDisconnect:
        logger.info(f"server: user disconnected {participant_id}")
    finally:
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
        registry.leave(participant_id)
        registry.bus.disconnect(participant_id)


def run() -> None:
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=get_settings().server.port, log_level=log_level_name.lower())
