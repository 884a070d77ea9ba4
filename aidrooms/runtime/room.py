"""Per-room session machine: membership, lifecycle control and the expansion loop.

Control methods are synchronous and never await, so under asyncio they are
atomic with respect to the loop. The loop only yields at engine evaluation,
speech synthesis, the duration probe and the paced sleep.

Data flow:
    add member > start > setup engine context > expansion cycles > end > reset
"""
from __future__ import annotations

import asyncio
import logging
import math
import re
import time
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set, Tuple

from aidrooms.errors import CollaboratorError, ExpansionError
from aidrooms.runtime.bus import EventBus
from aidrooms.runtime.session import JoinParams, Lifecycle, MalformedConfigError, RoomSession, merge_form_data
from aidrooms.service.duration import DurationProbe
from aidrooms.service.engine import ExpansionEngine
from aidrooms.service.tts import SpeechSynthesizer

logger = logging.getLogger(__name__)

# Calibration against the synthesizer's systematic bias.
RATE_OFFSET = -0.1
PITCH_OFFSET = -5

MIN_RATE = 0.25
MAX_RATE = 4.0
DEFAULT_RATE = 1.0
DEFAULT_PITCH = 0.0
# milliseconds
DEFAULT_DELAY = "10"

NEXT_SEGMENT = "ss"
DELAY = "delay"
RATE = "rate"
PITCH = "pitch"
END = "end"
AUDIO_CUE = "audio"


def clamp_rate(rate: float) -> float:
    return max(MIN_RATE, min(MAX_RATE, rate))


def _number(text: str, default: float) -> float:
    if not text:
        return default
    try:
        value = float(text)
    except ValueError:
        logger.warning("aid: expected a number, got %r; using %s", text, default)
        return default
    return value if math.isfinite(value) else default


class AidRoom:
    def __init__(
        self,
        session: RoomSession,
        bus: EventBus,
        engine: ExpansionEngine,
        synthesizer: SpeechSynthesizer,
        probe: DurationProbe,
        grammar: Optional[Mapping[str, List[str]]] = None,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.session = session
        self._bus = bus
        self._engine = engine
        self._synthesizer = synthesizer
        self._probe = probe
        self._grammar = dict(grammar or {})
        self._clock = clock
        self._sleep = sleep

        self.members: Set[str] = set()
        self.admins: Set[str] = set()
        self.lifecycle = Lifecycle.NOT_STARTED
        self.restart_pending = False
        self.end_requested = False
        self.context: Any = None
        self._task: Optional[asyncio.Task] = None

    @property
    def room_id(self) -> str:
        return self.session.room_id

    @property
    def cycle_in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    def info(self) -> Dict[str, Any]:
        return {
            "id": self.room_id,
            "lifecycle": self.lifecycle.value,
            "restartPending": self.restart_pending,
            "members": len(self.members),
            "admins": len(self.admins),
        }

    def broadcast(self):
        return self._bus.to_room(self.room_id)

    # membership

    def add_member(self, participant_id: str, params: Optional[JoinParams] = None) -> None:
        params = params or JoinParams()
        logger.info("aid: adding participant %s to %s", participant_id, self.room_id)
        was_empty = not self.members
        self.members.add(participant_id)

        # the first participant into an empty room gets ADMIN
        if was_empty or params.admin:
            self._assign_admin(participant_id)

        if was_empty and self.lifecycle.is_started:
            logger.info("aid: resuming room %s", self.room_id)
            self._schedule()

        if params.update:
            logger.info("aid: join-time update of room %s", self.room_id)
            self.update_form_data(params.form_data)
            self.session.search_params = params.raw
            self.request_restart()

    def remove_member(self, participant_id: str) -> None:
        if participant_id not in self.members:
            return
        logger.info("aid: removing participant %s from %s", participant_id, self.room_id)
        self.members.discard(participant_id)
        if participant_id in self.admins:
            self.admins.discard(participant_id)
            logger.info("aid: %d admins left in %s", len(self.admins), self.room_id)
        if not self.members:
            logger.info("aid: suspending room %s", self.room_id)

    def _assign_admin(self, participant_id: str) -> None:
        if participant_id in self.admins:
            return
        self.admins.add(participant_id)
        self._bus.to_participant(participant_id).emit("role", "ADMIN")
        logger.info("aid: %d admins in %s", len(self.admins), self.room_id)

    # inbound events

    def handle(self, participant_id: str, event: str, data: Any = None) -> None:
        try:
            if event == "start":
                self.start(data.get("formData") if isinstance(data, Mapping) else None)
            elif event == "pause":
                if data:
                    self.pause()
                else:
                    self.unpause()
            elif event == "end":
                self.request_end()
            elif event == "restart":
                self.request_restart()
            elif event == "update-aid":
                self.update_aid(data)
            else:
                logger.warning("aid: unknown event %r from %s", event, participant_id)
        except MalformedConfigError as exc:
            logger.warning("aid: rejected formData from %s: %s", participant_id, exc)
            self._bus.to_participant(participant_id).emit(
                "error", {"kind": "malformed_config", "message": str(exc)}
            )

    # lifecycle control

    def start(self, form_data: Optional[Mapping[str, Any]] = None) -> None:
        if self.lifecycle.is_started:
            logger.debug("aid: start ignored, %s already %s", self.room_id, self.lifecycle.value)
            return
        merged = merge_form_data(self.session.form_data, form_data)
        logger.info("aid: start %s", self.room_id)
        self.session.form_data = merged
        if self.session.start_time is None:
            self.session.start_time = self._clock()
        self.lifecycle = Lifecycle.RUNNING

        self.broadcast().emit("start", self.session.snapshot())

        self._setup()
        self._schedule()

    def pause(self) -> None:
        if self.lifecycle is not Lifecycle.RUNNING:
            logger.debug("aid: pause ignored in %s", self.lifecycle.value)
            return
        logger.info("aid: pause %s", self.room_id)
        self.lifecycle = Lifecycle.PAUSED
        self.broadcast().emit("pause", True)

    def unpause(self) -> None:
        if self.lifecycle is not Lifecycle.PAUSED:
            logger.debug("aid: unpause ignored in %s", self.lifecycle.value)
            return
        logger.info("aid: unpause %s", self.room_id)
        self.lifecycle = Lifecycle.RUNNING
        self.broadcast().emit("pause", False)
        self._schedule()

    def request_end(self) -> None:
        if not self.lifecycle.is_started:
            logger.debug("aid: end ignored in %s", self.lifecycle.value)
            return
        logger.info("aid: end requested for %s", self.room_id)
        self.end_requested = True

    def request_restart(self) -> None:
        if not self.cycle_in_flight:
            self._restart()
            return
        logger.info("aid: restart deferred to next cycle in %s", self.room_id)
        self.restart_pending = True

    def _restart(self) -> None:
        logger.info("aid: restart %s", self.room_id)
        self.broadcast().emit("finished")
        self._reset()
        self.start()

    def _end(self) -> None:
        logger.info("aid: --- FINISHED %s ---", self.room_id)
        self.lifecycle = Lifecycle.ENDED
        self.broadcast().emit("finished")
        self._reset()

    def _reset(self) -> None:
        logger.info("aid: reset state of %s", self.room_id)
        self.context = None
        self.lifecycle = Lifecycle.NOT_STARTED
        self.restart_pending = False
        self.end_requested = False
        self.session.start_time = None

    def update_aid(self, data: Any) -> None:
        if not isinstance(data, Mapping) or data.get("name") != "formData":
            logger.debug("aid: ignoring update-aid %r", data)
            return
        self.update_form_data(data.get("data"))

    def update_form_data(self, delta: Optional[Mapping[str, Any]]) -> None:
        self.session.form_data = merge_form_data(self.session.form_data, delta)
        logger.info("aid: update formData of %s: %s", self.room_id, self.session.form_data)

        # rules read on every cycle must be refreshed in a live context
        if self.context is not None:
            form = self.session.with_defaults()
            self._engine.delete_rule(self.context, "cast_members")
            self._engine.delete_rule(self.context, "session_length")
            self._engine.add_rules(
                self.context,
                {"cast_members": form["cast"], "session_length": form["sessionLength"]},
            )

    def _setup(self) -> None:
        logger.info("aid: setup engine for %s", self.room_id)
        self.session.form_data = self.session.with_defaults()
        form = self.session.form_data
        snapshot = self.session.snapshot()

        self.context = self._engine.init({"formData": form, "roomInfo": snapshot})
        self._engine.add_rules(
            self.context,
            {
                NEXT_SEGMENT: ["#segment#"],
                DELAY: [DEFAULT_DELAY],
                RATE: [str(DEFAULT_RATE)],
                PITCH: [str(DEFAULT_PITCH)],
                # any text in END stops the loop
                END: [""],
            },
        )
        if self._grammar:
            self._engine.add_rules(self.context, self._grammar)
        self._engine.add_rules(
            self.context,
            {
                "room_id": [self.room_id],
                "room_start_time": [str(snapshot["startTime"])],
                "cast_members": form["cast"],
                "user_objects": form["userObjects"],
                "user_areas": form["userAreas"],
                "session_length": form["sessionLength"],
            },
        )

    # expansion loop

    def _can_run(self) -> bool:
        return self.lifecycle is Lifecycle.RUNNING and bool(self.members)

    def _schedule(self) -> None:
        if self.cycle_in_flight or not self._can_run():
            return
        self._task = asyncio.create_task(self._run(), name=f"aid-room:{self.room_id}")

    async def _run(self) -> None:
        logger.info("aid: run %s", self.room_id)
        while self._can_run():
            if self.end_requested:
                self._end()
                return
            if self.restart_pending:
                # start() sees this task in flight and leaves the looping to us
                self._restart()
                continue

            try:
                result, pacing = await self._expand()
            except CollaboratorError as exc:
                logger.exception("aid: %s failed in %s", exc.stage, self.room_id)
                self._fail(exc)
                return

            self.broadcast().emit("message", result)

            logger.debug("aid: %s waits %.3fs", self.room_id, pacing)
            await self._sleep(pacing)

            if self.end_requested:
                self._end()
                return
        logger.info("aid: loop idle in %s (%s, %d members)", self.room_id, self.lifecycle.value, len(self.members))

    def _fail(self, exc: CollaboratorError) -> None:
        was_running = self.lifecycle is Lifecycle.RUNNING
        self.lifecycle = Lifecycle.PAUSED
        self.broadcast().emit("error", {"kind": exc.stage, "message": str(exc)})
        # a participant may already have paused while the cycle was in flight
        if was_running:
            self.broadcast().emit("pause", True)

    def _check_audio_cue(self) -> None:
        cue = self.context.variables.pop(AUDIO_CUE, None)
        if not cue:
            return
        self.broadcast().emit("audio", cue)

    async def _evaluate(self, context: Any, name: str) -> str:
        try:
            return await self._engine.evaluate(context, name)
        except CollaboratorError:
            raise
        except Exception as exc:
            raise ExpansionError(f"evaluating {name!r} failed: {exc}") from exc

    async def _expand(self) -> Tuple[Dict[str, Any], float]:
        context = self.context
        msg = await self._evaluate(context, NEXT_SEGMENT)
        delay = _number(await self._evaluate(context, DELAY), float(DEFAULT_DELAY))
        rate = clamp_rate(_number(await self._evaluate(context, RATE), DEFAULT_RATE))
        pitch = _number(await self._evaluate(context, PITCH), DEFAULT_PITCH)
        if await self._evaluate(context, END):
            self.end_requested = True

        self._check_audio_cue()

        filename = None
        speech_duration = 0.0
        if msg:
            artifact = await self._synthesizer.synthesize(
                msg,
                pitch=pitch + PITCH_OFFSET,
                rate=rate + RATE_OFFSET,
                prefix=re.sub(r"[^\w-]", "_", self.room_id),
            )
            filename = artifact.filename
            speech_duration = await self._probe.measure(artifact.path)

        elapsed = round(self._clock() - self.session.start_time, 1)
        result = {
            "msg": msg,
            "delay": delay,
            "rate": rate,
            "pitch": pitch,
            "duration": elapsed,
            "speechDuration": speech_duration,
            "roomInfo": self.session.snapshot(),
            "aid": dict(context.variables),
            "speechAudioFilename": filename,
        }
        return result, speech_duration + delay / 1000.0
