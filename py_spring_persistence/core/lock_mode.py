from enum import Enum
from typing import Any


class LockModeType(Enum):
    """
    Database-level lock modes accepted by `BatchingRepository.lock_by_id`.

    `NONE` and `OPTIMISTIC` read without a row lock (optimistic checks are left to the
    model's version column, if any); every pessimistic mode renders a `FOR UPDATE` variant.
    """

    NONE = "none"
    OPTIMISTIC = "optimistic"
    PESSIMISTIC_READ = "pessimistic_read"
    PESSIMISTIC_WRITE = "pessimistic_write"
    PESSIMISTIC_WRITE_NOWAIT = "pessimistic_write_nowait"
    PESSIMISTIC_WRITE_SKIP_LOCKED = "pessimistic_write_skip_locked"

    def is_pessimistic(self) -> bool:
        return self not in (LockModeType.NONE, LockModeType.OPTIMISTIC)

    def to_with_for_update(self) -> Any:
        """Translate into the `with_for_update` argument of `Session.get`."""
        return _WITH_FOR_UPDATE[self]


_WITH_FOR_UPDATE: dict[LockModeType, Any] = {
    LockModeType.NONE: None,
    LockModeType.OPTIMISTIC: None,
    LockModeType.PESSIMISTIC_READ: {"read": True},
    LockModeType.PESSIMISTIC_WRITE: True,
    LockModeType.PESSIMISTIC_WRITE_NOWAIT: {"nowait": True},
    LockModeType.PESSIMISTIC_WRITE_SKIP_LOCKED: {"skip_locked": True},
}
