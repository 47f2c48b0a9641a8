from typing import Optional

from py_spring_core import Properties
from pydantic import Field


class PySpringPersistenceProperties(Properties):
    """
    A class that extends the `Properties` class from the `py_spring_core` module.
    This class defines properties specific to PySpring persistence, including:

    - `__key__`: The key used to identify this set of properties.
    - `sqlalchemy_database_uri`: The SQLAlchemy database URI used for the models.
    - `create_all_tables`: Create every registered table on provider init.
    - `echo_sql`: Log every emitted SQL statement through the engine.
    - `batch_size`: Factory-level batch size; leave unset to keep the driver default.
    """

    __key__ = "py_spring_persistence"
    sqlalchemy_database_uri: str
    create_all_tables: bool = True
    echo_sql: bool = False
    batch_size: Optional[int] = Field(default=None, gt=0)
