from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Union

import soundfile as sf

from aidrooms.errors import DurationProbeError

logger = logging.getLogger(__name__)


class DurationProbe:
    """Measures the playback length of a synthesized audio file."""

    async def measure(self, path: Union[str, Path]) -> float:
        try:
            info = await asyncio.to_thread(sf.info, str(path))
        except Exception as exc:
            raise DurationProbeError(f"could not read duration of {path}: {exc}") from exc
        logger.debug("duration of %s: %.3fs", path, info.duration)
        return float(info.duration)
