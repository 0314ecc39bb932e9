from typing import Optional

import typer
import uvicorn

from librarium.api import create_app
from librarium.config import configure_logging, settings
from librarium.context import new_context
from librarium.database import initialize_database
from librarium.enums import Role
from librarium.errors import CirculationError
from librarium.pagination import Pagination
from librarium.services import CirculationDesk
from librarium.ui_helpers import print_record, print_rows, set_output_mode

app = typer.Typer(help="Librarium circulation CLI")

_state = {"db_file": None}

COPY_COLUMNS = ("id", "book_id", "status")
LOAN_COLUMNS = ("id", "member_id", "copy_id", "status", "due_date")
QUEUE_COLUMNS = ("queue_position", "member_id", "id", "reservation_date")


def _desk() -> CirculationDesk:
    initialize_database(_state["db_file"])
    return CirculationDesk(_state["db_file"])


def _fail(exc: CirculationError) -> None:
    print(f"Error: {exc.message}")
    raise typer.Exit(code=1)


@app.callback()
def _global_options(
    db: Optional[str] = typer.Option(None, "--db", help="SQLite database file (default: LIBRARIUM_DB_FILE)"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output format: plain | json | rich"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log workflow steps"),
):
    """Global options for every command."""
    _state["db_file"] = db
    if output:
        set_output_mode(output)
    configure_logging("INFO" if verbose else "WARNING")


@app.command("init-db")
def cli_init_db():
    """Create the circulation schema."""
    initialize_database(_state["db_file"])
    print("Database initialised.")


@app.command("add-member")
def cli_add_member(email: str, full_name: str, admin: bool = typer.Option(False, "--admin")):
    """Register a member."""
    try:
        member = _desk().members.register(new_context(), email, full_name, role=Role.ADMIN if admin else Role.MEMBER)
    except CirculationError as exc:
        _fail(exc)
    print(f"Member registered: {member.id}")


@app.command("update-member")
def cli_update_member(
    member_id: str,
    email: Optional[str] = typer.Option(None, "--email"),
    full_name: Optional[str] = typer.Option(None, "--name"),
):
    """Change a member's email or name."""
    try:
        member = _desk().members.update_profile(new_context(), member_id, email=email, full_name=full_name)
    except CirculationError as exc:
        _fail(exc)
    print_record(member.to_dict(), "Member")


@app.command("suspend")
def cli_suspend(member_id: str):
    """Suspend a member account."""
    try:
        _desk().members.suspend(new_context(), member_id)
    except CirculationError as exc:
        _fail(exc)
    print(f"Member {member_id} suspended.")


@app.command("activate")
def cli_activate(member_id: str):
    """Reactivate a suspended member account."""
    try:
        _desk().members.activate(new_context(), member_id)
    except CirculationError as exc:
        _fail(exc)
    print(f"Member {member_id} activated.")


@app.command("add-book")
def cli_add_book(
    title: str,
    isbn: Optional[str] = typer.Option(None, "--isbn"),
    copies: int = typer.Option(1, "--copies", "-c", help="Copies to create"),
):
    """Add a book with an initial batch of available copies."""
    desk = _desk()
    ctx = new_context()
    try:
        book = desk.catalog.add_book(ctx, title, isbn=isbn)
        created = desk.copies.create_batch(ctx, book.id, count=copies) if copies > 0 else []
    except CirculationError as exc:
        _fail(exc)
    print(f"Book added: {book.id} ({len(created)} copies)")


@app.command("copies")
def cli_copies(
    book: Optional[str] = typer.Option(None, "--book"),
    status: Optional[str] = typer.Option(None, "--status"),
    page: int = typer.Option(1, "--page"),
    page_size: int = typer.Option(settings.default_page_size, "--page-size"),
):
    """List copies, optionally filtered by book and status."""
    try:
        found = _desk().copies.find_by_condition(
            new_context(), book_id=book, status=status, pagination=Pagination.from_params(page, page_size)
        )
    except CirculationError as exc:
        _fail(exc)
    print_rows([c.to_dict() for c in found], COPY_COLUMNS, "Copies", "No copies found.")


@app.command("borrow")
def cli_borrow(member_id: str, copy_id: int):
    """Lend a specific copy to a member."""
    try:
        loan = _desk().borrow(new_context(), member_id, copy_id)
    except CirculationError as exc:
        _fail(exc)
    print(f"Loan created: {loan.id} (due {loan.due_date.date().isoformat()})")


@app.command("request")
def cli_request(member_id: str, book_id: str):
    """Borrow any free copy of a book, or join its queue."""
    try:
        outcome = _desk().request_book(new_context(), member_id, book_id)
    except CirculationError as exc:
        _fail(exc)
    if outcome.loan:
        print(f"Loan created: {outcome.loan.id} (copy {outcome.loan.copy_id})")
    else:
        print(f"No copy free; queued at position {outcome.reservation.queue_position}")


@app.command("return")
def cli_return(loan_id: str):
    """Return a loan; the copy goes to the head of the queue if there is one."""
    try:
        outcome = _desk().return_loan(new_context(), loan_id)
    except CirculationError as exc:
        _fail(exc)
    if outcome.promoted:
        print(f"Copy {outcome.copy.id} held for member {outcome.promoted.member_id}")
    else:
        print(f"Copy {outcome.copy.id} is available")


@app.command("reserve")
def cli_reserve(book_id: str, member_id: str):
    """Append a member to a book's queue."""
    try:
        reservation = _desk().reservations.create_reservation(new_context(), book_id, member_id)
    except CirculationError as exc:
        _fail(exc)
    print(f"Reservation {reservation.id} at position {reservation.queue_position}")


@app.command("cancel")
def cli_cancel(reservation_id: str):
    """Cancel a pending reservation."""
    try:
        _desk().reservations.update_reservation(new_context(), reservation_id, "cancelled")
    except CirculationError as exc:
        _fail(exc)
    print(f"Reservation {reservation_id} cancelled.")


@app.command("queue")
def cli_queue(book_id: str):
    """Show a book's wait list."""
    try:
        queue = _desk().reservations.get_queue(new_context(), book_id)
    except CirculationError as exc:
        _fail(exc)
    print_rows([r.to_dict() for r in queue], QUEUE_COLUMNS, "Queue", "Queue is empty.")


@app.command("loans")
def cli_loans(page: int = typer.Option(1, "--page"), page_size: int = typer.Option(25, "--page-size")):
    """List loans."""
    try:
        loans = _desk().loans.get_all_loans(new_context(), Pagination.from_params(page, page_size))
    except CirculationError as exc:
        _fail(exc)
    print_rows([loan.to_dict() for loan in loans], LOAN_COLUMNS, "Loans", "No loans.")


@app.command("loan")
def cli_loan(loan_id: str):
    """Show one loan."""
    try:
        loan = _desk().loans.get_loan_by_id(new_context(), loan_id)
    except CirculationError as exc:
        _fail(exc)
    print_record(loan.to_dict(), "Loan")


@app.command("sweep-overdue")
def cli_sweep_overdue():
    """Flag active loans past their due date as overdue."""
    try:
        count = _desk().loans.mark_overdue(new_context())
    except CirculationError as exc:
        _fail(exc)
    print(f"{count} loans marked overdue.")


@app.command("serve")
def cli_serve(
    host: str = typer.Option(settings.api_host, "--host"),
    port: int = typer.Option(settings.api_port, "--port"),
):
    """Serve the HTTP API with uvicorn."""
    print(f"Starting API on http://{host}:{port}")
    uvicorn.run(create_app(_state["db_file"]), host=host, port=port)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
