"""Shared fixtures for room tests."""
from __future__ import annotations

import pytest

from aidrooms.runtime.room import AidRoom
from aidrooms.runtime.session import RoomSession
from fakes import Clock, FakeEngine, FakeProbe, FakeSynthesizer, Pacer, RecordingBus


@pytest.fixture
def bus() -> RecordingBus:
    return RecordingBus()


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def synthesizer() -> FakeSynthesizer:
    return FakeSynthesizer()


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe(duration=2.0)


@pytest.fixture
def pacer() -> Pacer:
    return Pacer()


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def make_room(bus, engine, synthesizer, probe, pacer, clock):
    def _make(room_id: str = "R1", grammar=None, **overrides) -> AidRoom:
        return AidRoom(
            RoomSession(room_id=room_id),
            overrides.get("bus", bus),
            overrides.get("engine", engine),
            overrides.get("synthesizer", synthesizer),
            overrides.get("probe", probe),
            grammar,
            clock=clock,
            sleep=pacer,
        )

    return _make
