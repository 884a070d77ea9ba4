"""Load the story grammar rule tables."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from aidrooms.config import get_settings

logger = logging.getLogger(__name__)

_project_root = Path(__file__).resolve().parent
_data_dir = _project_root / "data"

DEFAULT_GRAMMAR_FILE = "grammar.json"


def _load_json(filepath: Path) -> Dict:
    """Load a JSON file, returning an empty mapping when it does not exist."""
    if not filepath.exists():
        logger.warning("grammar file not found: %s", filepath)
        return {}
    with open(filepath, "r", encoding="utf-8") as f:
        return json.load(f)


def load_grammar(path: Optional[str] = None) -> Dict[str, List[str]]:
    """Return the story rule tables, each normalised to a list of alternatives."""
    filepath = Path(path or get_settings().engine.grammar_path or _data_dir / DEFAULT_GRAMMAR_FILE)
    raw = _load_json(filepath)
    grammar: Dict[str, List[str]] = {}
    for name, alternatives in raw.items():
        if isinstance(alternatives, str):
            alternatives = [alternatives]
        grammar[name] = [str(alt) for alt in alternatives]
    logger.info("loaded %d grammar rules from %s", len(grammar), filepath)
    return grammar
