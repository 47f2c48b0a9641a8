from sqlmodel import Field

from py_spring_persistence.core.driver_metadata import BATCHING_UNSUPPORTED, ExtractedDatabaseMetadata
from py_spring_persistence.core.lock_mode import LockModeType
from py_spring_persistence.core.model import PySpringModel
from py_spring_persistence.core.session_context_holder import SessionContextHolder, Transactional
from py_spring_persistence.py_spring_persistence_provider import (
    ApplicationContextNotSetError,
    PySpringPersistenceProvider,
    provide_py_spring_persistence,
)
from py_spring_persistence.repository.base_repository import BaseRepository
from py_spring_persistence.repository.batching_repository import BatchingRepository
from py_spring_persistence.repository.crud_repository import CrudRepository
from py_spring_persistence.repository.repository_base import RepositoryBase


__all__ = [
    "PySpringModel",
    "Field",
    "SessionContextHolder",
    "Transactional",
    "provide_py_spring_persistence",
    "PySpringPersistenceProvider",
    "ApplicationContextNotSetError",
    "CrudRepository",
    "BatchingRepository",
    "BaseRepository",
    "RepositoryBase",
    "LockModeType",
    "ExtractedDatabaseMetadata",
    "BATCHING_UNSUPPORTED",
]

__version__ = "0.1.0"
