"""LocalOutbox — per-user file for sync state that must outlive a process.

Holds writes the store has not acknowledged and parked ``user_choice``
conflicts, so a later invocation can push or resolve them. The file sits
in the data directory beside the database rather than inside it: when the
store is unreachable the outbox still has to be writable.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, ValidationError

from tmrctl.domain.conflicts import Conflict
from tmrctl.domain.session import TimerSession

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

OUTBOX_DIRNAME = "outbox"


class UnsentWrite(BaseModel):
    model_config = {"frozen": True}

    snapshot: TimerSession
    inserted_at: datetime


class OutboxState(BaseModel):
    """Everything one user's engine left behind."""

    unsent: list[UnsentWrite] = Field(default_factory=list)
    conflicts: list[Conflict] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.unsent and not self.conflicts


class LocalOutbox:
    """One JSON document per user under ``{data_dir}/outbox/``."""

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    def path_for(self, user_id: str) -> Path:
        return self._directory / f"{user_id}.json"

    def load(self, user_id: str) -> OutboxState:
        path = self.path_for(user_id)
        if not path.is_file():
            return OutboxState()
        try:
            return OutboxState.model_validate_json(path.read_text(encoding="utf-8"))
        except ValidationError:
            # Keep the unreadable file for inspection; the next save replaces it.
            broken = path.with_suffix(".json.broken")
            os.replace(path, broken)
            logger.warning("Unreadable outbox for %s moved to %s", user_id, broken)
            return OutboxState()

    def save(self, user_id: str, state: OutboxState) -> None:
        """Write *state*, or remove the file once nothing is left to sync."""
        path = self.path_for(user_id)
        if state.is_empty:
            path.unlink(missing_ok=True)
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(state.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, path)
        logger.debug(
            "Saved outbox for %s: %d unsent, %d conflicts",
            user_id,
            len(state.unsent),
            len(state.conflicts),
        )
