from typing import Any, Type, TypeVar, get_args

from py_spring_core import Component


class RepositoryBase(Component):
    """
    Base class of every PySpring repository.

    Subclasses are parameterized with the id type and the model class, e.g.
    `class BookRepository(BaseRepository[int, Book])`; both are resolved from the
    generic arguments when the repository is instantiated.
    """

    def __init__(self) -> None:
        self.id_type, self.model_class = self._get_model_id_type_with_class()

    @classmethod
    def _get_model_id_type_with_class(cls) -> tuple[Type[Any], Type[Any]]:
        for base in getattr(cls, "__orig_bases__", ()):
            args = get_args(base)
            if len(args) == 2 and not any(isinstance(arg, TypeVar) for arg in args):
                return args
        raise TypeError(
            f"[REPOSITORY GENERIC ARGUMENTS] {cls.__name__} must be parameterized with an id type and a model class"
        )
