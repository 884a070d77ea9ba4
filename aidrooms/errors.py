"""Failures raised by the external collaborators of a room."""
from __future__ import annotations


class CollaboratorError(Exception):
    """An expansion, synthesis or duration-probe call failed."""

    stage = "collaborator"


class ExpansionError(CollaboratorError):
    stage = "expansion"


class SynthesisError(CollaboratorError):
    stage = "synthesis"


class DurationProbeError(CollaboratorError):
    stage = "duration"
