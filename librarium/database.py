import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from librarium.config import settings

logger = logging.getLogger(__name__)

# Default database file; callers and tests may pass an explicit path instead.
DATABASE_FILE = settings.database_file

COPY_STATUSES = "('available', 'loaned', 'reserved', 'damaged', 'lost')"


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection in autocommit mode; transactions are started explicitly."""
    conn = sqlite3.connect(
        db_file or DATABASE_FILE,
        timeout=settings.database_busy_timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def connection(db_file: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Read-only unit: a connection that is closed on exit."""
    conn = get_db_connection(db_file)
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(db_file: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Write unit: ``BEGIN IMMEDIATE`` ... ``COMMIT``, rolled back on any exception.

    The write lock is taken before the first read, so check-then-act sequences
    inside the block cannot interleave with another writer.
    """
    conn = get_db_connection(db_file)
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the circulation schema if it does not exist yet."""
    conn = get_db_connection(db_file)
    try:
        # WAL lets readers proceed while a workflow holds the write lock
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS members (
                id TEXT PRIMARY KEY,
                email TEXT NOT NULL,
                password_hash TEXT NOT NULL DEFAULT '',
                full_name TEXT NOT NULL,
                role TEXT NOT NULL DEFAULT 'member' CHECK(role IN ('member', 'admin')),
                account_status TEXT NOT NULL DEFAULT 'active'
                    CHECK(account_status IN ('active', 'suspended')),
                created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                deleted_at TIMESTAMP
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                isbn TEXT,
                year INTEGER,
                genre TEXT,
                authors TEXT,
                created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                deleted_at TIMESTAMP
            )
        """)
        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS book_copies (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                book_id TEXT NOT NULL,
                status TEXT NOT NULL CHECK(status IN {COPY_STATUSES}),
                created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                deleted_at TIMESTAMP,
                FOREIGN KEY (book_id) REFERENCES books(id)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS loans (
                id TEXT PRIMARY KEY,
                member_id TEXT NOT NULL,
                copy_id INTEGER NOT NULL,
                loan_date TIMESTAMP NOT NULL,
                due_date TIMESTAMP NOT NULL,
                return_date TIMESTAMP,
                status TEXT NOT NULL CHECK(status IN ('active', 'overdue', 'returned')),
                created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                deleted_at TIMESTAMP,
                FOREIGN KEY (member_id) REFERENCES members(id),
                FOREIGN KEY (copy_id) REFERENCES book_copies(id)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS reservations (
                id TEXT PRIMARY KEY,
                book_id TEXT NOT NULL,
                member_id TEXT NOT NULL,
                copy_id INTEGER,
                reservation_date TIMESTAMP NOT NULL,
                status TEXT NOT NULL CHECK(status IN ('pending', 'fulfilled', 'cancelled')),
                queue_position INTEGER NOT NULL,
                created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                deleted_at TIMESTAMP,
                FOREIGN KEY (book_id) REFERENCES books(id),
                FOREIGN KEY (member_id) REFERENCES members(id),
                FOREIGN KEY (copy_id) REFERENCES book_copies(id)
            )
        """)

        # Uniqueness only among live rows; soft-deleted rows keep their values
        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_members_email
            ON members(email) WHERE deleted_at IS NULL
        """)
        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_books_isbn
            ON books(isbn) WHERE isbn IS NOT NULL AND deleted_at IS NULL
        """)
        # At most one open loan per copy
        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_loans_open_copy
            ON loans(copy_id) WHERE status IN ('active', 'overdue') AND deleted_at IS NULL
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_book_copies_book_status ON book_copies(book_id, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_status_due ON loans(status, due_date)")
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_reservations_queue
            ON reservations(book_id, status, queue_position)
        """)
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Initialise the database; safe to call on every start."""
    create_tables(db_file)
    logger.info("database ready at %s", db_file or DATABASE_FILE)
