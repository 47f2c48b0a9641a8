import contextlib
from typing import Any, Iterable, Iterator, Optional, Sequence, Type, TypeVar

from loguru import logger
from sqlalchemy import exc, inspect
from sqlalchemy.engine.base import Connection
from sqlalchemy.orm import make_transient_to_detached
from sqlalchemy.orm.attributes import flag_dirty, flag_modified
from sqlmodel import Session, SQLModel

from py_spring_persistence.core.lock_mode import LockModeType

T = TypeVar("T", bound=SQLModel)


class PySpringSession(Session):
    """
    A custom SQLAlchemy Session acting as the persistence context of PySpring repositories.

    On top of `sqlmodel.Session` it:

    - Keeps the instances added in this session in `current_session_instance`, so a managed session can refresh them after commit.
    - Holds a session-level batch size (`None` until set) that is applied to the connection every time pending writes are flushed.
    - Offers the explicit entity-store primitives used by `BatchingRepository`: `persist`, `force_dirty`, `get_reference` and `find_with_lock`.
    """

    def __init__(self, *args, **kwargs):
        self.current_session_instance: list[SQLModel] = []
        self._session_batch_size: Optional[int] = None

        super().__init__(*args, **kwargs)

    def add(self, instance: SQLModel, *, _warn: bool = True) -> None:
        self.current_session_instance.append(instance)
        return super().add(instance, _warn=_warn)

    def add_all(self, instances: Iterable[SQLModel]) -> None:
        instances = list(instances)
        self.current_session_instance.extend(instances)
        return super().add_all(instances)

    def refresh_current_session_instances(self) -> None:
        for instance in self.current_session_instance:
            if instance not in self:
                continue
            self.refresh(instance)

    def get_batch_size(self) -> Optional[int]:
        return self._session_batch_size

    def set_batch_size(self, batch_size: Optional[int]) -> None:
        if batch_size is not None and batch_size <= 0:
            raise ValueError(f"[INVALID BATCH SIZE] Batch size must be positive, got: {batch_size}")
        self._session_batch_size = batch_size

    def flush(self, objects: Optional[Sequence[Any]] = None) -> None:
        if not (self.new or self.dirty or self.deleted):
            super().flush(objects)
            return
        with self._batch_size_applied():
            super().flush(objects)

    @contextlib.contextmanager
    def _batch_size_applied(self) -> Iterator[Connection]:
        """
        Apply the session batch size as the connection's `insertmanyvalues_page_size`
        for the duration of the block, then put back whatever the connection had before.
        """
        connection = self.connection()
        default_page_size = connection.dialect.insertmanyvalues_page_size
        previous_page_size = connection.get_execution_options().get(
            "insertmanyvalues_page_size", default_page_size
        )
        page_size = self._session_batch_size
        if page_size is None:
            page_size = default_page_size
        logger.debug(f"[SESSION FLUSH] Flushing pending writes in batches of {page_size}")
        connection.execution_options(insertmanyvalues_page_size=page_size)
        try:
            yield connection
        finally:
            connection.execution_options(insertmanyvalues_page_size=previous_page_size)

    def persist(self, instance: SQLModel) -> None:
        """
        Register a new instance for insertion on the next flush.

        Only transient instances are accepted: an instance that was already persisted and is
        now detached has to go through `merge` or `force_dirty` instead.
        """
        state = inspect(instance)
        if state.detached:
            raise exc.InvalidRequestError(
                f"Detached entity passed to persist: {instance!r}"
            )
        if instance in self:
            return
        self.add(instance)

    def force_dirty(self, instance: SQLModel) -> None:
        """
        Schedule an UPDATE for the instance whether or not a change was observed.
        Detached instances are reattached first.
        """
        state = inspect(instance)
        if state.transient:
            raise exc.InvalidRequestError(
                f"Transient entity passed to update: {instance!r}"
            )
        if state.pending:
            return
        if state.detached:
            self.add(instance)

        primary_key_columns = set(state.mapper.primary_key)
        is_flagged = False
        for column_property in state.mapper.column_attrs:
            if any(column in primary_key_columns for column in column_property.columns):
                continue
            if column_property.key not in state.dict:
                continue
            flag_modified(instance, column_property.key)
            is_flagged = True

        if not is_flagged:
            flag_dirty(instance)

    def get_reference(self, model_cls: Type[T], ident: Any) -> T:
        """
        Return a reference to the row identified by `ident` without querying the database.

        The returned instance only carries its primary key; every other attribute is expired
        and gets loaded on first access, which raises `ObjectDeletedError` when the row does not exist.
        """
        mapper = inspect(model_cls)
        primary_key = list(ident) if isinstance(ident, (tuple, list)) else [ident]
        identity_key = mapper.identity_key_from_primary_key(primary_key)
        existing = self.identity_map.get(identity_key)
        if existing is not None:
            return existing

        instance = mapper.class_manager.new_instance()
        for column, value in zip(mapper.primary_key, primary_key):
            setattr(instance, mapper.get_property_by_column(column).key, value)
        make_transient_to_detached(instance)
        # references are not tracked for refresh, the row may not exist
        super().add(instance)
        return instance

    def find_with_lock(
        self, model_cls: Type[T], ident: Any, lock_mode: LockModeType
    ) -> Optional[T]:
        return self.get(
            model_cls,
            ident,
            with_for_update=lock_mode.to_with_for_update(),
            populate_existing=lock_mode.is_pessimistic(),
        )
