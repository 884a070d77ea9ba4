from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import parse_qs

FORM_DATA_DEFAULTS: Dict[str, List[str]] = {
    "cast": ["josh", "teb"],
    "userObjects": ["table"],
    "userAreas": ["studio"],
    "sessionLength": ["5"],
}

_FALSY_FLAGS = {"", "0", "false", "no", "off"}


class MalformedConfigError(ValueError):
    """Form data delta rejected before it touched the room."""


class Lifecycle(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    PAUSED = "paused"
    ENDED = "ended"

    @property
    def is_started(self) -> bool:
        return self in (Lifecycle.RUNNING, Lifecycle.PAUSED)


@dataclass
class RoomSession:
    room_id: str
    start_time: Optional[float] = None
    form_data: Dict[str, Any] = field(default_factory=dict)
    search_params: Optional[str] = None

    def snapshot(self) -> Dict[str, Any]:
        start_ms = int(self.start_time * 1000) if self.start_time is not None else None
        return {
            "id": self.room_id,
            "startTime": start_ms,
            "formData": dict(self.form_data),
            "searchParams": self.search_params,
        }

    def with_defaults(self) -> Dict[str, Any]:
        return {**FORM_DATA_DEFAULTS, **self.form_data}


def _validate_value(key: str, value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        raise MalformedConfigError(f"{key} must be a list, got {type(value).__name__}")
    items = []
    for item in value:
        # bool is an int subclass but never a valid roster entry
        if isinstance(item, bool) or not isinstance(item, (str, int, float)):
            raise MalformedConfigError(f"{key} entries must be strings or numbers")
        items.append(str(item))
    return items


def merge_form_data(current: Mapping[str, Any], delta: Any) -> Dict[str, Any]:
    """Return ``current`` overlaid with ``delta``.

    Recognised keys (cast roster, objects, areas, session length) must hold
    lists of strings or numbers and are normalised to lists of strings. Other
    keys pass through untouched. Raises :class:`MalformedConfigError` without
    modifying ``current``.
    """
    if delta is None:
        return dict(current)
    if not isinstance(delta, Mapping):
        raise MalformedConfigError(f"formData must be an object, got {type(delta).__name__}")

    cleaned: Dict[str, Any] = {}
    for key, value in delta.items():
        if key in FORM_DATA_DEFAULTS:
            cleaned[key] = _validate_value(key, value)
        else:
            cleaned[key] = value
    return {**current, **cleaned}


def _flag(values: Optional[List[str]]) -> bool:
    if not values:
        return False
    return values[-1].strip().lower() not in _FALSY_FLAGS


@dataclass
class JoinParams:
    """Out-of-band parameters carried with a transport-level join."""

    admin: bool = False
    update: bool = False
    form_data: Dict[str, List[str]] = field(default_factory=dict)
    raw: Optional[str] = None

    @classmethod
    def from_query(cls, query: Optional[str]) -> "JoinParams":
        if not query:
            return cls()
        parsed = parse_qs(query.lstrip("?"), keep_blank_values=True)
        form_data = {key: parsed[key] for key in FORM_DATA_DEFAULTS if key in parsed}
        return cls(
            admin=_flag(parsed.get("admin")),
            update=_flag(parsed.get("update")),
            form_data=form_data,
            raw=query,
        )
