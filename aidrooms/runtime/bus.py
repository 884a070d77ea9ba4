from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, Set

logger = logging.getLogger(__name__)


class Emitter:
    def __init__(self, bus: "EventBus", participant_ids: Iterable[str]) -> None:
        self._bus = bus
        self._participant_ids = list(participant_ids)

    def emit(self, event: str, payload: Any = None) -> None:
        frame = json.dumps({"event": event, "data": payload})
        for participant_id in self._participant_ids:
            self._bus.deliver(participant_id, frame)


class EventBus:
    """Fans encoded event frames out to per-participant outboxes.

    Emitting never blocks: each connection owns an unbounded queue that its
    websocket writer drains.
    """

    def __init__(self) -> None:
        self._outboxes: Dict[str, asyncio.Queue[str]] = {}
        self._rooms: Dict[str, Set[str]] = {}

    def connect(self, participant_id: str) -> asyncio.Queue[str]:
        if participant_id not in self._outboxes:
            self._outboxes[participant_id] = asyncio.Queue()
        return self._outboxes[participant_id]

    def join(self, participant_id: str, room_id: str) -> None:
        self._rooms.setdefault(room_id, set()).add(participant_id)

    def disconnect(self, participant_id: str) -> None:
        self._outboxes.pop(participant_id, None)
        for members in self._rooms.values():
            members.discard(participant_id)

    def members(self, room_id: str) -> Set[str]:
        return set(self._rooms.get(room_id, ()))

    def to_room(self, room_id: str) -> Emitter:
        return Emitter(self, self._rooms.get(room_id, ()))

    def to_participant(self, participant_id: str) -> Emitter:
        return Emitter(self, [participant_id])

    def deliver(self, participant_id: str, frame: str) -> None:
        outbox = self._outboxes.get(participant_id)
        if outbox is None:
            logger.debug("bus: dropping frame for disconnected participant %s", participant_id)
            return
        outbox.put_nowait(frame)
