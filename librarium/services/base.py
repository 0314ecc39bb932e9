import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from librarium import database
from librarium.errors import from_storage_error


class Service:
    """Holds the database location and turns storage failures into taxonomy errors."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    @contextmanager
    def unit_of_work(self, logger: logging.LoggerAdapter, entity: str,
                     referenced: Optional[str] = None, write: bool = True) -> Iterator[sqlite3.Connection]:
        """Run the block in one transaction (or a plain connection when ``write`` is False)."""
        opener = database.transaction if write else database.connection
        try:
            with opener(self.db_file) as conn:
                yield conn
        except sqlite3.Error as exc:
            logger.error("storage failure: %s", exc, exc_info=True)
            raise from_storage_error(exc, entity=entity, referenced=referenced) from exc
