"""
Manual distribution commands.

HTTP bodies are parsed once into a small tagged union and validated before
they reach the state machine:

    {"type": "SetStatus", "status": "Closed", "note": "done"}
    {"type": "Assign", "user_id": 7, "note": "please handle"}
    {"type": "AddNote", "note": "called the sender"}
"""

from __future__ import annotations

from dataclasses import dataclass

from docflow.core.exceptions import ValidationError
from docflow.models.routing import DISTRIBUTION_STATUSES
from docflow.services import distribution_service


@dataclass(frozen=True)
class SetStatus:
    status: str
    note: str


@dataclass(frozen=True)
class Assign:
    user_id: int
    note: str | None = None


@dataclass(frozen=True)
class AddNote:
    note: str


Command = SetStatus | Assign | AddNote

COMMAND_TYPES = ("SetStatus", "Assign", "AddNote")


def _text(data: dict, key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_command(data) -> Command:
    """Validate a raw command payload.

    A status change must carry a non-empty reason; that is the one rule
    enforced here and not in the state machine.

    Raises:
        ValidationError: unknown type or missing/invalid fields.
    """
    if not isinstance(data, dict):
        raise ValidationError("Command body must be a JSON object")
    kind = data.get("type")

    match kind:
        case "SetStatus":
            status = _text(data, "status")
            if status not in DISTRIBUTION_STATUSES:
                raise ValidationError(
                    f"Invalid status: {status}",
                    details={"status": sorted(DISTRIBUTION_STATUSES)},
                )
            note = _text(data, "note")
            if not note:
                raise ValidationError("A reason is required to change status", details={"note": "required"})
            return SetStatus(status=status, note=note)
        case "Assign":
            raw = data.get("user_id")
            if isinstance(raw, bool):
                raw = None
            try:
                user_id = int(raw)
            except (TypeError, ValueError) as exc:
                raise ValidationError("user_id must be an integer", details={"user_id": raw}) from exc
            return Assign(user_id=user_id, note=_text(data, "note"))
        case "AddNote":
            note = _text(data, "note")
            if not note:
                raise ValidationError("note is required", details={"note": "required"})
            return AddNote(note=note)
        case _:
            raise ValidationError(
                f"Unknown command type: {kind}",
                details={"type": list(COMMAND_TYPES)},
            )


def apply_command(distribution_id: int, command: Command, actor_id: int | None = None,
                  meta: dict | None = None):
    """Dispatch a parsed command to the matching state-machine operation."""
    match command:
        case SetStatus(status=status, note=note):
            return distribution_service.update_distribution_status(
                distribution_id, status, note, actor_id=actor_id, meta=meta,
            )
        case Assign(user_id=user_id, note=note):
            return distribution_service.assign_distribution(
                distribution_id, user_id, note, actor_id=actor_id, meta=meta,
            )
        case AddNote(note=note):
            return distribution_service.add_distribution_note(
                distribution_id, note, actor_id=actor_id, meta=meta,
            )
    raise ValidationError(f"Unsupported command: {type(command).__name__}")
