from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from librarium.config import configure_logging, settings
from librarium.context import RequestContext, new_context
from librarium.database import get_db_connection, initialize_database
from librarium.enums import CopyStatus, Role
from librarium.errors import CirculationError
from librarium.pagination import Pagination
from librarium.services import CirculationDesk

TRACE_HEADER = "X-Trace-Id"

# Error kind -> HTTP status; the only place transport codes are decided
STATUS_BY_KIND = {
    "not_found": 404,
    "bad_request": 400,
    "duplicate": 409,
    "internal": 500,
}


def envelope(result: Any, code: int = 200, status: str = "OK") -> dict:
    return {"code": code, "status": status, "result": result}


# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key")


def get_api_key(api_key: str = Security(api_key_header)):
    """Dependency guarding every mutating route."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


def get_desk(request: Request) -> CirculationDesk:
    return request.app.state.desk


def get_context(request: Request) -> RequestContext:
    ctx = getattr(request.state, "ctx", None)
    return ctx or new_context()


def get_pagination(page: Optional[int] = Query(None), page_size: Optional[int] = Query(None)) -> Pagination:
    return Pagination.from_params(page, page_size)


# --- Models ---
class MemberCreateModel(BaseModel):
    email: str = Field(..., min_length=3)
    full_name: str = Field(..., min_length=1)
    password_hash: str = ""
    role: Role = Role.MEMBER


class MemberUpdateModel(BaseModel):
    email: Optional[str] = Field(None, min_length=3)
    full_name: Optional[str] = Field(None, min_length=1)
    password_hash: Optional[str] = None


class StatusModel(BaseModel):
    status: str


class BookCreateModel(BaseModel):
    title: str = Field(..., min_length=1)
    isbn: Optional[str] = None
    year: Optional[int] = None
    genre: Optional[str] = None
    authors: Optional[str] = None


class CopyBatchModel(BaseModel):
    status: str = CopyStatus.AVAILABLE.value
    copies: int = Field(1, ge=1, le=1000)


class LoanCreateModel(BaseModel):
    member_id: str
    copy_id: int


class LoanUpdateModel(BaseModel):
    status: str
    book_copy_id: Optional[int] = None
    book_status: Optional[str] = None


class ReservationCreateModel(BaseModel):
    book_id: str
    member_id: str


class BookRequestModel(BaseModel):
    book_id: str
    member_id: str


router = APIRouter()
guarded = [Depends(get_api_key)]


# --- Health ---
@router.get("/health")
def health(desk: CirculationDesk = Depends(get_desk)):
    """Lightweight liveness check with a quick database round trip."""
    db_ok = True
    try:
        conn = get_db_connection(desk.db_file)
        conn.execute("SELECT 1")
        conn.close()
    except Exception:
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "db": db_ok,
        "version": settings.app_version,
    }


# --- Members ---
@router.post("/members", status_code=201, dependencies=guarded)
def register_member(payload: MemberCreateModel, desk: CirculationDesk = Depends(get_desk),
                    ctx: RequestContext = Depends(get_context)):
    member = desk.members.register(ctx, payload.email, payload.full_name, payload.password_hash, payload.role)
    return envelope(member.to_dict(), 201, "Created")


@router.get("/members")
def list_members(pagination: Pagination = Depends(get_pagination), desk: CirculationDesk = Depends(get_desk),
                 ctx: RequestContext = Depends(get_context)):
    return envelope([m.to_dict() for m in desk.members.list(ctx, pagination)])


@router.get("/members/{member_id}")
def get_member(member_id: str, desk: CirculationDesk = Depends(get_desk),
               ctx: RequestContext = Depends(get_context)):
    return envelope(desk.members.get_by_id(ctx, member_id).to_dict())


@router.patch("/members/{member_id}", dependencies=guarded)
def update_member(member_id: str, payload: MemberUpdateModel, desk: CirculationDesk = Depends(get_desk),
                  ctx: RequestContext = Depends(get_context)):
    member = desk.members.update_profile(ctx, member_id, payload.email, payload.full_name, payload.password_hash)
    return envelope(member.to_dict())


@router.patch("/members/{member_id}/status", dependencies=guarded)
def set_member_status(member_id: str, payload: StatusModel, desk: CirculationDesk = Depends(get_desk),
                      ctx: RequestContext = Depends(get_context)):
    return envelope(desk.members.set_status(ctx, member_id, payload.status).to_dict())


@router.delete("/members/{member_id}", dependencies=guarded)
def delete_member(member_id: str, desk: CirculationDesk = Depends(get_desk),
                  ctx: RequestContext = Depends(get_context)):
    desk.members.delete(ctx, member_id)
    return envelope(None)


# --- Books & copies ---
@router.post("/books", status_code=201, dependencies=guarded)
def add_book(payload: BookCreateModel, desk: CirculationDesk = Depends(get_desk),
             ctx: RequestContext = Depends(get_context)):
    book = desk.catalog.add_book(ctx, payload.title, payload.isbn, payload.year, payload.genre, payload.authors)
    return envelope(book.to_dict(), 201, "Created")


@router.get("/books/{book_id}")
def get_book(book_id: str, desk: CirculationDesk = Depends(get_desk), ctx: RequestContext = Depends(get_context)):
    return envelope(desk.catalog.get_book(ctx, book_id).to_dict())


@router.get("/books/{book_id}/availability")
def get_availability(book_id: str, desk: CirculationDesk = Depends(get_desk),
                     ctx: RequestContext = Depends(get_context)):
    return envelope({
        "book_id": book_id,
        "available_copies": desk.copies.count_available(ctx, book_id),
        "queue_length": len(desk.reservations.get_queue(ctx, book_id)),
    })


@router.get("/books/{book_id}/queue")
def get_queue(book_id: str, desk: CirculationDesk = Depends(get_desk), ctx: RequestContext = Depends(get_context)):
    return envelope([r.to_dict() for r in desk.reservations.get_queue(ctx, book_id)])


@router.post("/books/{book_id}/copies", status_code=201, dependencies=guarded)
def add_copies(book_id: str, payload: CopyBatchModel, desk: CirculationDesk = Depends(get_desk),
               ctx: RequestContext = Depends(get_context)):
    copies = desk.copies.create_batch(ctx, book_id, payload.status, payload.copies)
    return envelope([c.to_dict() for c in copies], 201, "Created")


@router.get("/copies")
def find_copies(book_id: Optional[str] = None, status: Optional[str] = None,
                pagination: Pagination = Depends(get_pagination), desk: CirculationDesk = Depends(get_desk),
                ctx: RequestContext = Depends(get_context)):
    copies = desk.copies.find_by_condition(ctx, book_id=book_id, status=status, pagination=pagination)
    return envelope([c.to_dict() for c in copies])


@router.get("/copies/{copy_id}")
def get_copy(copy_id: int, desk: CirculationDesk = Depends(get_desk), ctx: RequestContext = Depends(get_context)):
    return envelope(desk.copies.get_by_id(ctx, copy_id).to_dict())


@router.put("/copies/{copy_id}/status", dependencies=guarded)
def set_copy_status(copy_id: int, payload: StatusModel, desk: CirculationDesk = Depends(get_desk),
                    ctx: RequestContext = Depends(get_context)):
    return envelope(desk.copies.set_status(ctx, copy_id, payload.status).to_dict())


@router.delete("/copies/{copy_id}", dependencies=guarded)
def delete_copy(copy_id: int, desk: CirculationDesk = Depends(get_desk), ctx: RequestContext = Depends(get_context)):
    desk.copies.delete_copy(ctx, copy_id)
    return envelope(None)


# --- Loans ---
@router.post("/loans", status_code=201, dependencies=guarded)
def create_loan(payload: LoanCreateModel, desk: CirculationDesk = Depends(get_desk),
                ctx: RequestContext = Depends(get_context)):
    loan = desk.borrow(ctx, payload.member_id, payload.copy_id)
    return envelope(loan.to_dict(), 201, "Created")


@router.get("/loans")
def list_loans(pagination: Pagination = Depends(get_pagination), desk: CirculationDesk = Depends(get_desk),
               ctx: RequestContext = Depends(get_context)):
    return envelope([loan.to_dict() for loan in desk.loans.get_all_loans(ctx, pagination)])


@router.post("/loans/overdue-sweep", dependencies=guarded)
def sweep_overdue(desk: CirculationDesk = Depends(get_desk), ctx: RequestContext = Depends(get_context)):
    return envelope({"marked_overdue": desk.loans.mark_overdue(ctx)})


@router.get("/loans/{loan_id}")
def get_loan(loan_id: str, desk: CirculationDesk = Depends(get_desk), ctx: RequestContext = Depends(get_context)):
    return envelope(desk.loans.get_loan_by_id(ctx, loan_id).to_dict())


@router.put("/loans/{loan_id}", dependencies=guarded)
def update_loan(loan_id: str, payload: LoanUpdateModel, desk: CirculationDesk = Depends(get_desk),
                ctx: RequestContext = Depends(get_context)):
    loan = desk.loans.update_loan(ctx, loan_id, payload.status, payload.book_copy_id, payload.book_status)
    return envelope(loan.to_dict())


@router.post("/loans/{loan_id}/return", dependencies=guarded)
def return_loan(loan_id: str, desk: CirculationDesk = Depends(get_desk), ctx: RequestContext = Depends(get_context)):
    return envelope(desk.return_loan(ctx, loan_id).to_dict())


@router.delete("/loans/{loan_id}", dependencies=guarded)
def delete_loan(loan_id: str, desk: CirculationDesk = Depends(get_desk), ctx: RequestContext = Depends(get_context)):
    desk.loans.delete_loan(ctx, loan_id)
    return envelope(None)


# --- Reservations ---
@router.post("/reservations", status_code=201, dependencies=guarded)
def create_reservation(payload: ReservationCreateModel, desk: CirculationDesk = Depends(get_desk),
                       ctx: RequestContext = Depends(get_context)):
    reservation = desk.reservations.create_reservation(ctx, payload.book_id, payload.member_id)
    return envelope(reservation.to_dict(), 201, "Created")


@router.get("/reservations")
def list_reservations(pagination: Pagination = Depends(get_pagination), desk: CirculationDesk = Depends(get_desk),
                      ctx: RequestContext = Depends(get_context)):
    return envelope([r.to_dict() for r in desk.reservations.get_all_reservations(ctx, pagination)])


@router.get("/reservations/{reservation_id}")
def get_reservation(reservation_id: str, desk: CirculationDesk = Depends(get_desk),
                    ctx: RequestContext = Depends(get_context)):
    return envelope(desk.reservations.get_reservation_by_id(ctx, reservation_id).to_dict())


@router.put("/reservations/{reservation_id}", dependencies=guarded)
def update_reservation(reservation_id: str, payload: StatusModel, desk: CirculationDesk = Depends(get_desk),
                       ctx: RequestContext = Depends(get_context)):
    return envelope(desk.reservations.update_reservation(ctx, reservation_id, payload.status).to_dict())


@router.delete("/reservations/{reservation_id}", dependencies=guarded)
def delete_reservation(reservation_id: str, desk: CirculationDesk = Depends(get_desk),
                       ctx: RequestContext = Depends(get_context)):
    desk.reservations.delete_reservation(ctx, reservation_id)
    return envelope(None)


# --- Circulation ---
@router.post("/circulation/requests", status_code=201, dependencies=guarded)
def request_book(payload: BookRequestModel, desk: CirculationDesk = Depends(get_desk),
                 ctx: RequestContext = Depends(get_context)):
    return envelope(desk.request_book(ctx, payload.member_id, payload.book_id).to_dict(), 201, "Created")


def create_app(db_file: Optional[str] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        initialize_database(db_file)
        yield

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.state.desk = CirculationDesk(db_file)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def attach_trace_context(request: Request, call_next):
        ctx = new_context(request.headers.get(TRACE_HEADER))
        request.state.ctx = ctx
        response = await call_next(request)
        response.headers[TRACE_HEADER] = ctx.trace_id
        return response

    @app.exception_handler(CirculationError)
    async def circulation_error_handler(request: Request, exc: CirculationError):
        code = STATUS_BY_KIND.get(exc.kind, 500)
        return JSONResponse(status_code=code, content=envelope(None, code, exc.message))

    app.include_router(router)
    return app


app = create_app()
