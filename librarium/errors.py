"""Error taxonomy for the circulation core.

Services raise exactly one of these per failed call. Transport status codes
live in ``api.py``; nothing here knows about HTTP.
"""

import re
import sqlite3
from typing import Optional


class CirculationError(Exception):
    """Base for every error a workflow can return."""

    kind = "internal"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(CirculationError):
    kind = "not_found"

    def __init__(self, entity: str) -> None:
        super().__init__(f"{entity} not found")
        self.entity = entity


class BadRequestError(CirculationError):
    kind = "bad_request"


class DuplicateError(CirculationError):
    kind = "duplicate"

    def __init__(self, entity: str) -> None:
        super().__init__(f"{entity} already exist")
        self.entity = entity


class InternalError(CirculationError):
    kind = "internal"

    def __init__(self, message: str = "internal server error") -> None:
        super().__init__(message)


# Table name -> entity name used in error messages
_ENTITY_BY_TABLE = {
    "members": "member",
    "books": "book",
    "book_copies": "copy",
    "loans": "loan",
    "reservations": "reservation",
}

_UNIQUE_RE = re.compile(r"UNIQUE constraint failed: (\w+)\.")


def from_storage_error(exc: sqlite3.Error, entity: Optional[str] = None,
                       referenced: Optional[str] = None) -> CirculationError:
    """Map a raw SQLite failure onto the error taxonomy.

    ``entity`` names the row being written (used for duplicates when the
    message does not identify the table); ``referenced`` names the parent a
    foreign key points at.
    """
    message = str(exc)
    if isinstance(exc, sqlite3.IntegrityError):
        match = _UNIQUE_RE.search(message)
        if match:
            return DuplicateError(_ENTITY_BY_TABLE.get(match.group(1), entity or "record"))
        if "FOREIGN KEY constraint failed" in message:
            return NotFoundError(referenced or entity or "record")
    return InternalError()
