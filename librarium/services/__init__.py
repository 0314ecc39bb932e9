"""Librarium - Services Package

Circulation workflows, each taking a RequestContext as its first argument:
- Copy ledger (copy status store)
- Loan manager (checkout/return)
- Reservation queue (per-book wait lists)
- Circulation desk (facade sequencing the above)
"""

from librarium.services.catalog import Catalog
from librarium.services.circulation import CirculationDesk, RequestOutcome, ReturnOutcome
from librarium.services.copy_ledger import CopyLedger
from librarium.services.loan_manager import LoanManager
from librarium.services.members import MemberDirectory
from librarium.services.reservation_queue import ReservationQueue

__all__ = [
    "Catalog",
    "CirculationDesk",
    "CopyLedger",
    "LoanManager",
    "MemberDirectory",
    "RequestOutcome",
    "ReservationQueue",
    "ReturnOutcome",
]
