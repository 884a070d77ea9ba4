"""
Join a room as a participant, print the story and play its speech.

Usage:
    python quick_launch/watch_room.py my-room --admin --start

Requires the server running locally on port 3000 and a working audio
output device for playback (pass --mute to only print).
"""

from __future__ import annotations

import argparse
import asyncio
import io
import json
import logging
from urllib.parse import urlencode

import httpx
import sounddevice as sd
import soundfile as sf
import websockets

logging.basicConfig(level=logging.INFO, format="[room-client] %(message)s")
logger = logging.getLogger(__name__)

BASE_URL = "http://127.0.0.1:3000"
WS_BASE = "ws://127.0.0.1:3000"


async def check_server() -> None:
    async with httpx.AsyncClient(timeout=10.0) as client:
        resp = await client.post(f"{BASE_URL}/heartbeat", json={"data": "room-client"})
        resp.raise_for_status()
        logger.info("server alive: %s", resp.json()["data"])


async def play_speech(filename: str) -> None:
    async with httpx.AsyncClient(timeout=30.0) as client:
        resp = await client.get(f"{BASE_URL}/audio/{filename}")
        resp.raise_for_status()
    audio, sample_rate = sf.read(io.BytesIO(resp.content), dtype="int16")
    sd.play(audio, samplerate=sample_rate)
    await asyncio.sleep(len(audio) / sample_rate)


async def watch(room_id: str, admin: bool, start: bool, mute: bool) -> None:
    query = urlencode({"admin": "1"} if admin else {})
    url = f"{WS_BASE}/ws/{room_id}" + (f"?{query}" if query else "")
    async with websockets.connect(url, ping_interval=None, ping_timeout=None) as ws:
        logger.info("joined %s", url)
        if start:
            await ws.send(json.dumps({"event": "start", "data": {}}))

        async for raw in ws:
            frame = json.loads(raw)
            event, data = frame.get("event"), frame.get("data")
            if event == "message":
                logger.info("[%ss] %s", data["duration"], data["msg"])
                if data.get("speechAudioFilename") and not mute:
                    asyncio.create_task(play_speech(data["speechAudioFilename"]))
            elif event == "role":
                logger.info("role: %s", data)
            elif event == "pause":
                logger.info("paused" if data else "resumed")
            elif event == "error":
                logger.warning("room error (%s): %s", data.get("kind"), data.get("message"))
            elif event == "finished":
                logger.info("--- finished ---")
            else:
                logger.info("%s: %s", event, data)


async def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("room")
    parser.add_argument("--admin", action="store_true", help="request the ADMIN role")
    parser.add_argument("--start", action="store_true", help="start the session after joining")
    parser.add_argument("--mute", action="store_true", help="do not play speech audio")
    args = parser.parse_args()

    await check_server()
    await watch(args.room, args.admin, args.start, args.mute)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Exiting room client")
