from typing import Any, Generic, Iterable, Optional, TypeVar, Union
from uuid import UUID

from loguru import logger
from sqlalchemy import inspect
from sqlmodel import select
from sqlmodel.sql.expression import Select, SelectOfScalar

from py_spring_persistence.core.model import PySpringModel
from py_spring_persistence.core.session_context_holder import SessionContextHolder, Transactional
from py_spring_persistence.repository.repository_base import RepositoryBase

T = TypeVar("T", bound=PySpringModel)
ID = TypeVar("ID", UUID, int)


class CrudRepository(RepositoryBase, Generic[ID, T]):
    """
    A CRUD (Create, Read, Update, Delete) repository providing the default operations for a single SQLModel entity:

    - `find_by_id` / `find_all_by_ids` / `find_all`
    - `save` / `save_all`
    - `delete` / `delete_all` / `delete_by_id` / `delete_all_by_ids`
    - `upsert`: insert or update a single entity based on a set of query parameters.

    Every operation joins the current @Transactional session, or opens its own transaction when called outside one.
    """

    @Transactional
    def _find_by_statement(
        self,
        statement: Union[Select, SelectOfScalar],
    ) -> Optional[T]:
        session = SessionContextHolder.get_or_create_session()
        return session.exec(statement).first()

    @Transactional
    def _find_by_query(
        self,
        query_by: dict[str, Any],
    ) -> Optional[T]:
        statement = select(self.model_class).filter_by(**query_by)
        return self._find_by_statement(statement)

    @Transactional
    def _find_all_by_query(
        self,
        query_by: dict[str, Any],
    ) -> list[T]:
        statement = select(self.model_class).filter_by(**query_by)
        return self._find_all_by_statement(statement)

    @Transactional
    def _find_all_by_statement(
        self,
        statement: Union[Select, SelectOfScalar],
    ) -> list[T]:
        session = SessionContextHolder.get_or_create_session()
        return list(session.exec(statement).all())

    @Transactional
    def find_by_id(self, id: ID) -> Optional[T]:
        session = SessionContextHolder.get_or_create_session()
        return session.get(self.model_class, id)

    @Transactional
    def find_all_by_ids(self, ids: list[ID]) -> list[T]:
        statement = select(self.model_class).where(self.model_class.id.in_(ids))  # type: ignore
        return self._find_all_by_statement(statement)

    @Transactional
    def find_all(self) -> list[T]:
        return self._find_all_by_statement(select(self.model_class))

    @Transactional
    def save(self, entity: T) -> T:
        session = SessionContextHolder.get_or_create_session()
        session.add(entity)
        return entity

    @Transactional
    def save_all(
        self,
        entities: Iterable[T],
    ) -> bool:
        session = SessionContextHolder.get_or_create_session()
        session.add_all(entities)
        return True

    @Transactional
    def delete(self, entity: T) -> bool:
        return self.delete_by_id(entity.id)  # type: ignore

    @Transactional
    def delete_all(self, entities: Iterable[T]) -> bool:
        ids = [entity.id for entity in entities]  # type: ignore
        return self.delete_all_by_ids(ids)

    @Transactional
    def delete_by_id(self, _id: ID) -> bool:
        session = SessionContextHolder.get_or_create_session()
        entity = self.find_by_id(_id)
        if entity is None:
            return False
        session.delete(entity)
        return True

    @Transactional
    def delete_all_by_ids(self, ids: list[ID]) -> bool:
        session = SessionContextHolder.get_or_create_session()
        deleted_entities = self.find_all_by_ids(ids)
        if len(deleted_entities) == 0:
            return False
        for entity in deleted_entities:
            session.delete(entity)
        logger.debug(
            f"[CRUD DELETE] Deleted {len(deleted_entities)} {self.model_class.__name__} rows"
        )
        return True

    @Transactional
    def upsert(self, entity: T, query_by: dict[str, Any]) -> T:
        session = SessionContextHolder.get_or_create_session()
        existing_entity = self._find_by_query(query_by)
        if existing_entity is None:
            session.add(entity)
            return entity

        primary_key_names = {column.key for column in inspect(self.model_class).primary_key}
        for key, value in entity.model_dump(exclude=primary_key_names).items():
            setattr(existing_entity, key, value)
        session.add(existing_entity)
        return existing_entity
