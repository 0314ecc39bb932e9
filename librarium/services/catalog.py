from typing import Optional

from librarium.context import RequestContext
from librarium.errors import NotFoundError
from librarium.models import Book
from librarium.repositories import BookRepository, new_id
from librarium.services.base import Service


class Catalog(Service):
    """Parent rows for copies and reservations; no editing rules beyond uniqueness."""

    def add_book(self, ctx: RequestContext, title: str, isbn: Optional[str] = None,
                 year: Optional[int] = None, genre: Optional[str] = None,
                 authors: Optional[str] = None) -> Book:
        logger = ctx.logger("Catalog.add_book")
        book = Book(id=new_id(), title=title.strip(), isbn=isbn, year=year, genre=genre, authors=authors)
        with self.unit_of_work(logger, entity="book") as conn:
            BookRepository(conn).create(book)
        logger.info("book %s added", book.id)
        return book

    def get_book(self, ctx: RequestContext, book_id: str) -> Book:
        logger = ctx.logger("Catalog.get_book")
        with self.unit_of_work(logger, entity="book", write=False) as conn:
            book = BookRepository(conn).get_by_id(book_id)
        if book is None:
            raise NotFoundError("book")
        return book
