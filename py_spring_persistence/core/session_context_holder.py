from contextvars import ContextVar
from enum import IntEnum
from functools import wraps
from typing import Any, Callable, ClassVar, Optional

from loguru import logger

from py_spring_persistence.core.model import PySpringModel
from py_spring_persistence.core.py_spring_session import PySpringSession


class TransactionalDepth(IntEnum):
    OUTERMOST = 1
    ON_EXIT = 0


def Transactional(func: Callable[..., Any]) -> Callable[..., Any]:
    """
    Decorator for managing database transactions in a nested-safe manner.

    - The outermost @Transactional call creates the session, commits it on success,
      rolls it back on failure and closes it on exit.
    - Nested @Transactional calls reuse that session and leave commit/rollback to the outermost call.

    Example:
        @Transactional
        def import_books(books):
            book_repository.persist_all_and_flush(books)  # joins import_books' transaction
            audit_repository.persist(AuditEntry(...))

    If anything inside import_books raises, neither the books nor the audit entry are committed.
    """

    @wraps(func)
    def wrapper(*args, **kwargs):
        session_depth = SessionContextHolder.enter_session()
        session = SessionContextHolder.get_or_create_session()
        try:
            result = func(*args, **kwargs)
            if session_depth == TransactionalDepth.OUTERMOST.value:
                logger.debug(f"[TRANSACTION COMMIT] Committing transaction of {func.__qualname__}")
                session.commit()
            return result
        except Exception as error:
            if session_depth == TransactionalDepth.OUTERMOST.value:
                logger.error(
                    f"[TRANSACTION ROLLBACK] Rolling back transaction of {func.__qualname__}: {error}"
                )
                session.rollback()
            raise error
        finally:
            SessionContextHolder.exit_session()

    return wrapper


class SessionContextHolder:
    """
    Holds the current PySpringSession in a context variable, along with the depth of nested
    @Transactional calls. Only the outermost transaction manages commit/rollback, and the
    session is closed and cleared once the depth drops back to zero.
    """

    _session: ClassVar[ContextVar[Optional[PySpringSession]]] = ContextVar("session", default=None)
    _session_depth: ClassVar[ContextVar[int]] = ContextVar("session_depth", default=0)

    @classmethod
    def get_or_create_session(cls) -> PySpringSession:
        optional_session = cls._session.get()
        if optional_session is None:
            session = PySpringModel.create_session()
            cls._session.set(session)
            return session
        return optional_session

    @classmethod
    def has_session(cls) -> bool:
        return cls._session.get() is not None

    @classmethod
    def get_session_depth(cls) -> int:
        return cls._session_depth.get()

    @classmethod
    def enter_session(cls) -> int:
        """Increment the depth counter and return the new depth."""
        new_depth = cls._session_depth.get() + 1
        cls._session_depth.set(new_depth)
        return new_depth

    @classmethod
    def exit_session(cls) -> int:
        """Decrement the depth counter, clearing the session when it reaches zero."""
        new_depth = max(0, cls._session_depth.get() - 1)
        cls._session_depth.set(new_depth)

        if new_depth == TransactionalDepth.ON_EXIT.value:
            cls.clear_session()

        return new_depth

    @classmethod
    def clear_session(cls) -> None:
        """Close the session, if any, and reset the depth to 0."""
        session = cls._session.get()
        if session is not None:
            session.close()
        cls._session.set(None)
        cls._session_depth.set(TransactionalDepth.ON_EXIT.value)

    @classmethod
    def is_transaction_managed(cls) -> bool:
        """True when running inside a nested @Transactional call."""
        return cls._session_depth.get() > TransactionalDepth.OUTERMOST.value
