from typing import Optional, Type, cast

from loguru import logger
from py_spring_core import ApplicationContextRequired, PySpringStarter
from sqlalchemy import Engine, create_engine
from sqlmodel import SQLModel

from py_spring_persistence.core.commons import PySpringPersistenceProperties
from py_spring_persistence.core.model import PySpringModel


class ApplicationContextNotSetError(Exception): ...


class PySpringPersistenceProvider(PySpringStarter, ApplicationContextRequired):
    """
    The `PySpringPersistenceProvider` class initializes the persistence layer once the application context is ready:
    - Reading `PySpringPersistenceProperties` from the application context
    - Creating the SQLAlchemy engine
    - Registering the PySpringModel classes and metadata
    - Configuring the factory-level batch size
    - Creating all SQLModel tables, unless disabled

    On shutdown the engine is disposed and the model factory is reset.
    """

    sql_engine: Optional[Engine] = None

    def _get_props(self) -> PySpringPersistenceProperties:
        app_context = self.app_context
        if app_context is None:
            app_context = self._app_context
        if app_context is None:
            raise ApplicationContextNotSetError(
                "[APPLICATION CONTEXT NOT SET] PySpringPersistenceProvider requires an application context"
            )
        props = app_context.get_properties(PySpringPersistenceProperties)
        if props is None:
            raise ValueError(
                f"[PROPERTIES NOT FOUND] Properties with key: {PySpringPersistenceProperties.get_key()} are not registered"
            )
        return props

    def _get_pyspring_model_inheritors(self) -> set[Type[PySpringModel]]:
        class_name_with_class_map: dict[str, Type[PySpringModel]] = {}
        for _cls in set(PySpringModel.__subclasses__()):
            if _cls.__name__ in class_name_with_class_map:
                continue
            class_name_with_class_map[_cls.__name__] = _cls

        return set(class_name_with_class_map.values())

    def _create_all_tables(self, engine: Engine) -> None:
        table_names = SQLModel.metadata.tables.keys()
        logger.success(
            f"[SQLMODEL TABLE CREATION] Create all SQLModel tables, engine url: {engine.url}, tables: {', '.join(table_names)}"
        )
        SQLModel.metadata.create_all(engine)

    def _init_pyspring_model(self, engine: Engine, props: PySpringPersistenceProperties) -> None:
        model_classes = self._get_pyspring_model_inheritors()
        PySpringModel.set_engine(engine)
        PySpringModel.set_models(cast(list[Type[PySpringModel]], list(model_classes)))
        PySpringModel.set_metadata(SQLModel.metadata)
        PySpringModel.set_batch_size(props.batch_size)
        logger.success(
            f"[SQLMODEL TABLE MODEL IMPORT] Get model classes from PySpringModel inheritors: {', '.join([_cls.__name__ for _cls in model_classes])}"
        )

    def provider_init(self) -> Engine:
        props = self._get_props()
        logger.info(
            f"[PYSPRING PERSISTENCE PROVIDER INIT] Initialize PySpringPersistenceProvider, batch size: {props.batch_size}"
        )
        self.sql_engine = create_engine(url=props.sqlalchemy_database_uri, echo=props.echo_sql)
        self._init_pyspring_model(self.sql_engine, props)
        if not props.create_all_tables:
            logger.info("[SQLMODEL TABLE CREATION] Skip creating all tables, set create_all_tables to True to enable.")
            return self.sql_engine
        self._create_all_tables(self.sql_engine)
        return self.sql_engine

    def provider_close(self) -> None:
        PySpringModel.reset()
        if self.sql_engine is not None:
            self.sql_engine.dispose()
            self.sql_engine = None
        logger.info("[PYSPRING PERSISTENCE PROVIDER CLOSE] Engine disposed.")

    def on_initialized(self) -> None:
        self.provider_init()

    def on_destroy(self) -> None:
        self.provider_close()


def provide_py_spring_persistence() -> PySpringStarter:
    return PySpringPersistenceProvider(
        properties_classes=[PySpringPersistenceProperties],
    )
