# Model package init
from .dispatch import DispatchQueueEntry, DispatchStatus  # noqa: F401 re-export
from .ledger import RollRecord  # noqa: F401 re-export
from .models import User  # noqa: F401 re-export

__all__ = [
    "DispatchQueueEntry",
    "DispatchStatus",
    "RollRecord",
    "User",
]
