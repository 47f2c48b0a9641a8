from typing import Union

from pydantic import BaseModel, ConfigDict
from sqlalchemy import Connection, Engine

from py_spring_persistence.core.entity_store import EntityStore

BATCHING_UNSUPPORTED = -(2**31)


class ExtractedDatabaseMetadata(BaseModel):
    """
    Capabilities reported by the dialect and DBAPI driver behind a session.

    - `dialect_name`: the SQLAlchemy dialect name, e.g. `sqlite` or `postgresql`.
    - `driver`: the DBAPI driver name, e.g. `pysqlite` or `psycopg2`.
    - `supports_batch_updates`: whether the driver groups write statements into one round-trip
      and reports reliable row counts for them.
    - `default_page_size`: how many rows a grouped INSERT carries when no batch size is set.
    """

    model_config = ConfigDict(frozen=True)
    dialect_name: str
    driver: str
    supports_batch_updates: bool
    default_page_size: int

    @classmethod
    def from_bind(cls, bind: Union[Engine, Connection]) -> "ExtractedDatabaseMetadata":
        dialect = bind.dialect
        can_group_inserts = bool(
            dialect.use_insertmanyvalues or dialect.supports_multivalues_insert
        )
        return cls(
            dialect_name=dialect.name,
            driver=dialect.driver,
            supports_batch_updates=can_group_inserts
            and bool(dialect.supports_sane_multi_rowcount),
            default_page_size=dialect.insertmanyvalues_page_size,
        )

    @classmethod
    def from_store(cls, store: EntityStore) -> "ExtractedDatabaseMetadata":
        return cls.from_bind(store.get_bind())
