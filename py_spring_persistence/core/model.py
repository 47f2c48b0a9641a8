import contextlib
from typing import ClassVar, Iterator, Optional

from loguru import logger
from sqlalchemy import Engine, MetaData
from sqlmodel import SQLModel

from py_spring_persistence.core.py_spring_session import PySpringSession


class PySpringModel(SQLModel):
    """
    The `PySpringModel` class is the base class for all models persisted through PySpring repositories.
    It holds the class-level state shared by every model class and acts as the session factory:

    - the SQLAlchemy engine, metadata and model registry;
    - the factory-level batch size, i.e. how many write statements a flush groups per round-trip
      when a session does not override it;
    - `create_session` and the `create_managed_session` context manager.
    """

    __table_args__ = {"extend_existing": True}
    _engine: ClassVar[Optional[Engine]] = None
    _models: ClassVar[Optional[list[type["PySpringModel"]]]] = None
    _metadata: ClassVar[Optional[MetaData]] = None
    _batch_size: ClassVar[Optional[int]] = None

    @classmethod
    def set_metadata(cls, metadata: MetaData) -> None:
        cls._metadata = metadata

    @classmethod
    def set_engine(cls, engine: Engine) -> None:
        cls._engine = engine

    @classmethod
    def set_models(cls, models: list[type["PySpringModel"]]) -> None:
        cls._models = models

    @classmethod
    def set_batch_size(cls, batch_size: Optional[int]) -> None:
        if batch_size is not None and batch_size <= 0:
            raise ValueError(f"[INVALID BATCH SIZE] Batch size must be positive, got: {batch_size}")
        cls._batch_size = batch_size

    @classmethod
    def get_batch_size(cls) -> Optional[int]:
        """
        Returns the factory-level batch size, or None when it was never configured
        and the driver default applies.
        """
        return cls._batch_size

    @classmethod
    def get_engine(cls) -> Engine:
        if cls._engine is None:
            raise ValueError("[ENGINE NOT SET] SQL Engine is not set")

        return cls._engine

    @classmethod
    def get_metadata(cls) -> MetaData:
        if cls._metadata is None:
            raise ValueError("[METADATA NOT SET] SQL MetaData is not set")
        return cls._metadata

    @classmethod
    def get_model_lookup(cls) -> dict[str, type["PySpringModel"]]:
        if cls._models is None:
            raise ValueError("[MODEL_LOOKUP NOT SET] Model lookup is not set")
        return {str(_model.__tablename__): _model for _model in cls._models}

    @classmethod
    def reset(cls) -> None:
        """Forget the engine and every piece of factory configuration."""
        cls._engine = None
        cls._models = None
        cls._metadata = None
        cls._batch_size = None

    @classmethod
    def create_session(cls) -> PySpringSession:
        engine = cls.get_engine()
        return PySpringSession(engine, expire_on_commit=False)

    @classmethod
    @contextlib.contextmanager
    def create_managed_session(cls) -> Iterator[PySpringSession]:
        """
        Creates a managed session context that commits on a clean exit, rolls back on error
        and always closes the session.
        ## Example Syntax:
            with PySpringModel.create_managed_session() as session:
                session.persist(Book(title="Dune"))
        """
        session = cls.create_session()
        try:
            yield session
            logger.debug("[MANAGED SESSION COMMIT] Session committing...")
            session.commit()
            logger.debug(
                "[MANAGED SESSION COMMIT] Session committed, refreshing instances..."
            )
            session.refresh_current_session_instances()
            logger.success("[MANAGED SESSION COMMIT] Session committed.")
        except Exception as error:
            logger.error(error)
            logger.error("[MANAGED SESSION ROLLBACK] Session rolling back...")
            session.rollback()
            raise
        finally:
            logger.debug("[MANAGED SESSION CLOSE] Session closing...")
            session.close()
