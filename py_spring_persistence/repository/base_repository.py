from typing import Generic, TypeVar
from uuid import UUID

from py_spring_persistence.core.model import PySpringModel
from py_spring_persistence.repository.batching_repository import BatchingRepository
from py_spring_persistence.repository.crud_repository import CrudRepository

T = TypeVar("T", bound=PySpringModel)
ID = TypeVar("ID", UUID, int)


class BaseRepository(CrudRepository[ID, T], BatchingRepository[ID, T], Generic[ID, T]):
    """
    The default CRUD operations together with the explicit persist/merge/update operations
    and their batched variants.

    ## Example Syntax:
        class BookRepository(BaseRepository[int, Book]): ...

        book_repository = BookRepository()
        book_repository.persist_all_and_flush([Book(title="Dune"), Book(title="Hyperion")])
    """
