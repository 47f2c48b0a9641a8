from typing import Callable, Generic, Iterable, Optional, TypeVar
from uuid import UUID

from loguru import logger

from py_spring_persistence.core.driver_metadata import (
    BATCHING_UNSUPPORTED,
    ExtractedDatabaseMetadata,
)
from py_spring_persistence.core.entity_store import EntityStore
from py_spring_persistence.core.lock_mode import LockModeType
from py_spring_persistence.core.model import PySpringModel
from py_spring_persistence.core.session_context_holder import SessionContextHolder, Transactional
from py_spring_persistence.repository.repository_base import RepositoryBase

T = TypeVar("T", bound=PySpringModel)
ID = TypeVar("ID", UUID, int)
R = TypeVar("R")

ID_MUST_NOT_BE_NULL = "The given id must not be null"
DEFAULT_BATCH_SIZE = 10


class BatchingRepository(RepositoryBase, Generic[ID, T]):
    """
    A repository with explicit write semantics, as opposed to the `save` family of `CrudRepository`:

    - `persist`: register a new entity for insertion.
    - `merge`: copy the state of a possibly detached entity onto the managed instance and return
      the managed instance. Keep using the returned value, not the argument.
    - `update`: schedule an UPDATE for the entity even if no change was detected.

    Each operation has an `_and_flush` variant flushing right away, an `_all` variant for a sequence
    of entities, and an `_all_and_flush` variant that runs the whole sequence under a batch size so
    that the flush groups the write statements instead of sending one round-trip per entity.
    The session's batch size is restored when the operation completes, whether it succeeded or not.
    """

    def _session(self) -> EntityStore:
        return SessionContextHolder.get_or_create_session()

    @Transactional
    def persist(self, entity: T) -> T:
        self._session().persist(entity)
        return entity

    @Transactional
    def persist_and_flush(self, entity: T) -> T:
        self.persist(entity)
        self._session().flush()
        return entity

    @Transactional
    def persist_all(self, entities: Iterable[T]) -> list[T]:
        return [self.persist(entity) for entity in entities]

    @Transactional
    def persist_all_and_flush(self, entities: Iterable[T]) -> list[T]:
        return self._execute_batch(lambda: self._flushed(self.persist_all(entities)))

    @Transactional
    def merge(self, entity: T) -> T:
        return self._session().merge(entity)

    @Transactional
    def merge_and_flush(self, entity: T) -> T:
        result = self.merge(entity)
        self._session().flush()
        return result

    @Transactional
    def merge_all(self, entities: Iterable[T]) -> list[T]:
        return [self.merge(entity) for entity in entities]

    @Transactional
    def merge_all_and_flush(self, entities: Iterable[T]) -> list[T]:
        return self._execute_batch(lambda: self._flushed(self.merge_all(entities)))

    @Transactional
    def update(self, entity: T) -> T:
        self._session().force_dirty(entity)
        return entity

    @Transactional
    def update_and_flush(self, entity: T) -> T:
        self.update(entity)
        self._session().flush()
        return entity

    @Transactional
    def update_all(self, entities: Iterable[T]) -> list[T]:
        return [self.update(entity) for entity in entities]

    @Transactional
    def update_all_and_flush(self, entities: Iterable[T]) -> list[T]:
        return self._execute_batch(lambda: self._flushed(self.update_all(entities)))

    def get_reference_by_id(self, id: ID) -> T:
        """
        Return a reference to the entity with the given id without hitting the database.
        The row is loaded, and its existence checked, on first attribute access, so the
        reference has to be used inside the transaction it was obtained in.
        """
        if id is None:
            raise ValueError(ID_MUST_NOT_BE_NULL)
        return self._get_reference(id)

    @Transactional
    def _get_reference(self, id: ID) -> T:
        return self._session().get_reference(self.model_class, id)

    @Transactional
    def lock_by_id(self, id: ID, lock_mode: LockModeType) -> Optional[T]:
        return self._session().find_with_lock(self.model_class, id, lock_mode)

    def _flushed(self, result: R) -> R:
        self._session().flush()
        return result

    def _get_batch_size(self, session: EntityStore) -> Optional[int]:
        """
        Inspect the driver behind the session. Returns `BATCHING_UNSUPPORTED` when the driver cannot
        group write statements, otherwise the factory-level batch size, which may be None.
        """
        metadata = ExtractedDatabaseMetadata.from_store(session)
        if not metadata.supports_batch_updates:
            return BATCHING_UNSUPPORTED
        return PySpringModel.get_batch_size()

    def _execute_batch(self, operation: Callable[[], R]) -> R:
        session = self._session()
        batch_size = self._get_batch_size(session)
        original_session_batch_size = session.get_batch_size()
        logger.debug(
            f"[BATCH SCOPE] Driver batch size: {batch_size}, session batch size: {original_session_batch_size}"
        )
        try:
            if original_session_batch_size is None:
                session.set_batch_size(DEFAULT_BATCH_SIZE)
            return operation()
        finally:
            session.set_batch_size(original_session_batch_size)
