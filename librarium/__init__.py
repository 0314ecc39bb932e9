"""Librarium - circulation core for a library backend.

This package contains:
- Copy ledger, loan manager and reservation queue (services/)
- Storage primitives over SQLite (repositories.py, database.py)
- Error taxonomy and request context (errors.py, context.py)
- HTTP boundary (api.py) and operator CLI (cli.py)
"""

__version__ = "1.0.0"
