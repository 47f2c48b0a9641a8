import contextlib
from typing import Iterator
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError, InvalidRequestError
from sqlalchemy.orm.exc import ObjectDeletedError
from sqlmodel import Field, SQLModel

from py_spring_persistence import (
    BATCHING_UNSUPPORTED,
    BaseRepository,
    ExtractedDatabaseMetadata,
    LockModeType,
    PySpringModel,
    SessionContextHolder,
    Transactional,
)
from py_spring_persistence.core.py_spring_session import PySpringSession
from py_spring_persistence.repository.batching_repository import (
    DEFAULT_BATCH_SIZE,
    ID_MUST_NOT_BE_NULL,
)


class Book(PySpringModel, table=True):
    id: int = Field(default=None, primary_key=True)
    title: str
    isbn: str


class BookRepository(BaseRepository[int, Book]): ...


@contextlib.contextmanager
def active_session() -> Iterator[PySpringSession]:
    """Open an outer transaction the repository joins; rolled back on exit."""
    SessionContextHolder.enter_session()
    session = SessionContextHolder.get_or_create_session()
    try:
        yield session
    finally:
        session.rollback()
        SessionContextHolder.clear_session()


def record_flush_batch_sizes(session: PySpringSession) -> list:
    batch_sizes = []

    def before_flush(flush_session, flush_context, instances):
        batch_sizes.append(flush_session.get_batch_size())

    event.listen(session, "before_flush", before_flush)
    return batch_sizes


def unsupported_driver_metadata() -> ExtractedDatabaseMetadata:
    return ExtractedDatabaseMetadata(
        dialect_name="sqlite",
        driver="pysqlite",
        supports_batch_updates=False,
        default_page_size=1000,
    )


class TestBatchingRepository:
    @pytest.fixture(autouse=True)
    def setup_and_teardown(self):
        self.engine = create_engine("sqlite:///:memory:", echo=False)
        PySpringModel.set_engine(self.engine)
        PySpringModel.set_metadata(SQLModel.metadata)
        SessionContextHolder.clear_session()
        SQLModel.metadata.create_all(self.engine)
        self.book_repository = BookRepository()
        self.statements: list[tuple[str, object, bool]] = []
        event.listen(self.engine, "before_cursor_execute", self._record_statement)
        yield
        SessionContextHolder.clear_session()
        SQLModel.metadata.drop_all(self.engine)
        PySpringModel.reset()

    def _record_statement(self, conn, cursor, statement, parameters, context, executemany):
        self.statements.append((statement, parameters, executemany))

    def _written_rows(self, verb: str) -> int:
        return sum(
            len(parameters) if executemany else 1  # type: ignore
            for statement, parameters, executemany in self.statements
            if statement.startswith(verb)
        )

    def _create_books(self, *titles: str) -> list[Book]:
        books = [Book(title=title, isbn=f"isbn-{index}") for index, title in enumerate(titles)]
        return self.book_repository.persist_all_and_flush(books)

    def test_did_get_model_id_type_with_class(self):
        assert self.book_repository.id_type == int
        assert self.book_repository.model_class == Book

    def test_persist_returns_same_reference(self):
        book = Book(title="Dune", isbn="978-0441013593")
        assert self.book_repository.persist(book) is book
        stored = self.book_repository.find_by_id(book.id)
        assert stored is not None
        assert stored.title == "Dune"

    def test_persist_and_flush_assigns_identity_before_returning(self):
        with active_session():
            book = self.book_repository.persist_and_flush(Book(title="Dune", isbn="1"))
            assert book.id is not None

    def test_persist_rejects_detached_entity(self):
        book = self.book_repository.persist(Book(title="Dune", isbn="1"))
        with pytest.raises(InvalidRequestError, match="Detached entity passed to persist"):
            self.book_repository.persist(book)

    def test_persist_all_keeps_input_order(self):
        books = [Book(title=f"Book {index}", isbn=str(index)) for index in range(5)]
        with active_session() as session:
            result = self.book_repository.persist_all(books)
            assert len(result) == len(books)
            assert all(persisted is book for persisted, book in zip(result, books))
            assert all(book in session.new for book in books)

    def test_persist_all_and_flush_sets_default_batch_size_when_unset(self):
        books = [Book(title=title, isbn=title) for title in ("A", "B", "C")]
        with patch.object(
            ExtractedDatabaseMetadata, "from_bind", return_value=unsupported_driver_metadata()
        ):
            with active_session() as session:
                flush_batch_sizes = record_flush_batch_sizes(session)
                assert session.get_batch_size() is None

                result = self.book_repository.persist_all_and_flush(books)

                assert flush_batch_sizes == [DEFAULT_BATCH_SIZE]
                assert session.get_batch_size() is None
                assert result == books
                assert all(book.id is not None for book in books)
                assert len(self.book_repository.find_all()) == 3

    def test_persist_all_and_flush_leaves_connection_page_size_untouched(self):
        default_page_size = self.engine.dialect.insertmanyvalues_page_size
        with active_session() as session:
            self.book_repository.persist_all_and_flush([Book(title="Dune", isbn="1")])

            options = session.connection().get_execution_options()
            assert options.get("insertmanyvalues_page_size", default_page_size) == default_page_size
            assert session.get_batch_size() is None

    def test_update_all_and_flush_keeps_configured_batch_size(self):
        first, second = self._create_books("Dune", "Hyperion")
        self.statements.clear()
        with active_session() as session:
            session.set_batch_size(25)
            flush_batch_sizes = record_flush_batch_sizes(session)

            result = self.book_repository.update_all_and_flush([first, second])

            assert result[0] is first
            assert result[1] is second
            assert flush_batch_sizes == [25]
            assert session.get_batch_size() == 25
            assert self._written_rows("UPDATE") == 2

    def test_update_writes_detached_changes(self):
        (book,) = self._create_books("Dune")
        book.title = "Dune Messiah"
        assert self.book_repository.update_and_flush(book) is book
        stored = self.book_repository.find_by_id(book.id)
        assert stored is not None
        assert stored.title == "Dune Messiah"

    def test_update_rejects_transient_entity(self):
        with pytest.raises(InvalidRequestError, match="Transient entity passed to update"):
            self.book_repository.update(Book(title="Dune", isbn="1"))

    def test_update_all_keeps_input_order(self):
        books = self._create_books("A", "B", "C")
        with active_session() as session:
            result = self.book_repository.update_all(books)
            assert result == books
            assert all(updated is book for updated, book in zip(result, books))
            assert all(book in session.dirty for book in books)

    def test_merge_returns_managed_copy(self):
        (book,) = self._create_books("Dune")
        detached_copy = Book(id=book.id, title="Dune (revised)", isbn=book.isbn)

        @Transactional
        def merge_and_edit() -> Book:
            managed = self.book_repository.merge(detached_copy)
            assert managed is not detached_copy
            managed.title = "Edited through the managed reference"
            detached_copy.title = "Edited through the input reference"
            return managed

        merge_and_edit()
        stored = self.book_repository.find_by_id(book.id)
        assert stored is not None
        assert stored.title == "Edited through the managed reference"

    def test_merge_and_flush_writes_detached_state(self):
        (book,) = self._create_books("Dune")
        with active_session() as session:
            managed = self.book_repository.merge_and_flush(
                Book(id=book.id, title="Children of Dune", isbn=book.isbn)
            )
            assert managed in session
            assert self._written_rows("UPDATE") == 1

    def test_merge_all_and_flush_returns_managed_copies_in_order(self):
        books = self._create_books("A", "B", "C")
        detached_copies = [
            Book(id=book.id, title=f"{book.title} (2nd edition)", isbn=book.isbn) for book in books
        ]
        with active_session() as session:
            flush_batch_sizes = record_flush_batch_sizes(session)
            result = self.book_repository.merge_all_and_flush(detached_copies)

            assert [managed.id for managed in result] == [book.id for book in books]
            assert all(managed is not copy for managed, copy in zip(result, detached_copies))
            assert set(flush_batch_sizes) == {DEFAULT_BATCH_SIZE}
            assert session.get_batch_size() is None

    def test_persist_all_and_flush_restores_batch_size_on_failure(self):
        self.book_repository.persist(Book(id=7, title="Dune", isbn="1"))
        with active_session() as session:
            with pytest.raises(IntegrityError):
                self.book_repository.persist_all_and_flush([Book(id=7, title="Duplicate", isbn="2")])
            assert session.get_batch_size() is None

    def test_execute_batch_reraises_original_failure(self):
        class BatchFailure(Exception): ...

        failure = BatchFailure("simulated failure")
        observed_batch_sizes = []
        with active_session() as session:
            session.set_batch_size(3)

            def failing_operation():
                observed_batch_sizes.append(session.get_batch_size())
                raise failure

            with pytest.raises(BatchFailure) as error_info:
                self.book_repository._execute_batch(failing_operation)

            assert error_info.value is failure
            assert observed_batch_sizes == [3]
            assert session.get_batch_size() == 3

    def test_execute_batch_overrides_only_for_the_operation(self):
        with active_session() as session:
            result = self.book_repository._execute_batch(lambda: session.get_batch_size())
            assert result == DEFAULT_BATCH_SIZE
            assert session.get_batch_size() is None

    def test_get_batch_size_returns_sentinel_when_driver_cannot_batch(self):
        with patch.object(
            ExtractedDatabaseMetadata, "from_bind", return_value=unsupported_driver_metadata()
        ):
            with active_session() as session:
                assert self.book_repository._get_batch_size(session) == BATCHING_UNSUPPORTED
                assert session.get_batch_size() is None

    def test_get_batch_size_returns_factory_batch_size(self):
        supported = unsupported_driver_metadata().model_copy(update={"supports_batch_updates": True})
        with patch.object(ExtractedDatabaseMetadata, "from_bind", return_value=supported) as from_bind:
            with active_session() as session:
                assert self.book_repository._get_batch_size(session) is None
                PySpringModel.set_batch_size(50)
                assert self.book_repository._get_batch_size(session) == 50
                assert from_bind.call_count == 2

    def test_get_reference_by_id_rejects_missing_id_before_session_access(self):
        with patch.object(SessionContextHolder, "get_or_create_session") as get_or_create_session:
            with pytest.raises(ValueError, match=ID_MUST_NOT_BE_NULL):
                self.book_repository.get_reference_by_id(None)  # type: ignore
        get_or_create_session.assert_not_called()
        assert not SessionContextHolder.has_session()

    def test_get_reference_by_id_loads_on_first_access(self):
        (book,) = self._create_books("Dune")
        with active_session():
            self.statements.clear()
            reference = self.book_repository.get_reference_by_id(book.id)
            assert self._written_rows("SELECT") == 0
            assert reference.title == "Dune"
            assert self._written_rows("SELECT") == 1

    def test_get_reference_by_id_fails_on_access_when_row_is_missing(self):
        with active_session():
            reference = self.book_repository.get_reference_by_id(404)
            with pytest.raises(ObjectDeletedError):
                reference.title

    def test_get_reference_by_id_returns_managed_instance(self):
        (book,) = self._create_books("Dune")
        with active_session():
            loaded = self.book_repository.find_by_id(book.id)
            assert self.book_repository.get_reference_by_id(book.id) is loaded

    def test_lock_by_id(self):
        (book,) = self._create_books("Dune")
        with active_session():
            locked = self.book_repository.lock_by_id(book.id, LockModeType.PESSIMISTIC_WRITE)
            assert locked is not None
            assert locked.title == "Dune"
            assert self.book_repository.lock_by_id(404, LockModeType.PESSIMISTIC_READ) is None
