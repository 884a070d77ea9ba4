"""Rule-table expansion engine used to generate story segments.

A context holds rule tables (name -> list of alternatives) and engine-side
variables. Expanding ``#name#`` picks one alternative at random and expands
it recursively; ``[name:value]`` actions expand ``value`` and store it as a
variable, which shadows any rule of the same name for the rest of the session.
"""
from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Union

from aidrooms.errors import ExpansionError

logger = logging.getLogger(__name__)

SYMBOL_RE = re.compile(r"#([A-Za-z_]\w*)#")
ACTION_RE = re.compile(r"\[([A-Za-z_]\w*):([^\[\]]*)\]")
MAX_DEPTH = 32

RuleValue = Union[str, Sequence[Any]]


class ExpansionEngine(Protocol):
    """Contexts returned by ``init`` expose a mutable ``variables`` mapping.

    ``evaluate`` may raise anything; the room reports non-``CollaboratorError``
    failures as an ``ExpansionError``.
    """

    def init(self, seed_vars: Mapping[str, Any]) -> Any: ...

    def add_rules(self, context: Any, rules: Mapping[str, RuleValue]) -> None: ...

    def delete_rule(self, context: Any, name: str) -> None: ...

    async def evaluate(self, context: Any, name: str) -> str: ...


@dataclass
class GrammarContext:
    rng: random.Random
    variables: Dict[str, Any] = field(default_factory=dict)
    rules: Dict[str, List[str]] = field(default_factory=dict)


def trim(text: str) -> str:
    return " ".join(text.split())


class GrammarEngine:
    def __init__(self, seed: Optional[int] = None) -> None:
        self._seed = seed

    def init(self, seed_vars: Mapping[str, Any]) -> GrammarContext:
        return GrammarContext(rng=random.Random(self._seed), variables=dict(seed_vars))

    def add_rules(self, context: GrammarContext, rules: Mapping[str, RuleValue]) -> None:
        for name, alternatives in rules.items():
            if isinstance(alternatives, str):
                alternatives = [alternatives]
            context.rules[name] = [str(alt) for alt in alternatives]

    def delete_rule(self, context: GrammarContext, name: str) -> None:
        context.rules.pop(name, None)

    async def evaluate(self, context: GrammarContext, name: str) -> str:
        return trim(self.expand(context, f"#{name}#"))

    def expand(self, context: GrammarContext, text: str, depth: int = 0) -> str:
        if depth > MAX_DEPTH:
            raise ExpansionError(f"expansion nested deeper than {MAX_DEPTH} levels")

        def _action(match: re.Match) -> str:
            context.variables[match.group(1)] = self.expand(context, match.group(2), depth + 1)
            return ""

        def _symbol(match: re.Match) -> str:
            return self._resolve(context, match.group(1), depth)

        return SYMBOL_RE.sub(_symbol, ACTION_RE.sub(_action, text))

    def _resolve(self, context: GrammarContext, name: str, depth: int) -> str:
        value = context.variables.get(name)
        if isinstance(value, str):
            return value
        alternatives = context.rules.get(name)
        if not alternatives:
            return ""
        return self.expand(context, context.rng.choice(alternatives), depth + 1)
