from typing import Any, Optional, Protocol, Type, TypeVar, Union

from sqlalchemy import Connection, Engine
from sqlmodel import SQLModel

from py_spring_persistence.core.lock_mode import LockModeType

T = TypeVar("T", bound=SQLModel)


class EntityStore(Protocol):
    """
    The persistence-context operations a `BatchingRepository` relies on.
    `PySpringSession` is the implementation used at runtime; tests may provide their own.
    """

    def persist(self, instance: Any) -> None: ...

    def merge(self, instance: T, *args: Any, **kwargs: Any) -> T: ...

    def force_dirty(self, instance: Any) -> None: ...

    def flush(self, objects: Any = None) -> None: ...

    def get_reference(self, model_cls: Type[T], ident: Any) -> T: ...

    def find_with_lock(
        self, model_cls: Type[T], ident: Any, lock_mode: LockModeType
    ) -> Optional[T]: ...

    def get_batch_size(self) -> Optional[int]: ...

    def set_batch_size(self, batch_size: Optional[int]) -> None: ...

    def get_bind(self, *args: Any, **kwargs: Any) -> Union[Engine, Connection]: ...
