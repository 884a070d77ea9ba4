from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional

from aidrooms.runtime.bus import EventBus
from aidrooms.runtime.room import AidRoom
from aidrooms.runtime.session import JoinParams, RoomSession
from aidrooms.service.duration import DurationProbe
from aidrooms.service.engine import ExpansionEngine
from aidrooms.service.tts import SpeechSynthesizer

logger = logging.getLogger(__name__)


class RoomRegistry:
    """Room id -> session machine. Rooms are created on first join and never evicted."""

    def __init__(
        self,
        bus: EventBus,
        engine: ExpansionEngine,
        synthesizer: SpeechSynthesizer,
        probe: DurationProbe,
        grammar: Optional[Mapping[str, List[str]]] = None,
    ) -> None:
        self.bus = bus
        self._engine = engine
        self._synthesizer = synthesizer
        self._probe = probe
        self._grammar = grammar
        self._rooms: Dict[str, AidRoom] = {}

    def get(self, room_id: str) -> Optional[AidRoom]:
        return self._rooms.get(room_id)

    def rooms(self) -> List[AidRoom]:
        return list(self._rooms.values())

    def _create(self, room_id: str) -> AidRoom:
        logger.info("registry: creating room %s", room_id)
        room = AidRoom(
            RoomSession(room_id=room_id),
            self.bus,
            self._engine,
            self._synthesizer,
            self._probe,
            self._grammar,
        )
        self._rooms[room_id] = room
        return room

    def join(self, participant_id: str, room_id: str, params: Optional[JoinParams] = None) -> AidRoom:
        room = self._rooms.get(room_id) or self._create(room_id)
        room.add_member(participant_id, params)
        return room

    def leave(self, participant_id: str) -> None:
        # connections are not indexed by room, so every room is told
        for room in self._rooms.values():
            room.remove_member(participant_id)
