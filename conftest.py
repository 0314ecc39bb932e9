import pytest

from librarium.context import new_context
from librarium.database import initialize_database
from librarium.services import CirculationDesk


@pytest.fixture
def db_file(tmp_path, request):
    # Fresh database file for every test
    path = str(tmp_path / f"test_{request.node.name}.db")
    initialize_database(path)
    return path


@pytest.fixture
def desk(db_file):
    return CirculationDesk(db_file)


@pytest.fixture
def ctx():
    return new_context("test00")


@pytest.fixture
def member(desk, ctx):
    return desk.members.register(ctx, "ada@example.com", "Ada Lovelace")


@pytest.fixture
def other_member(desk, ctx):
    return desk.members.register(ctx, "alan@example.com", "Alan Turing")


@pytest.fixture
def book(desk, ctx):
    return desk.catalog.add_book(ctx, "Dune", isbn="9780441013593", year=1965, authors="Frank Herbert")


@pytest.fixture
def copy(desk, ctx, book):
    return desk.copies.create_batch(ctx, book.id)[0]
