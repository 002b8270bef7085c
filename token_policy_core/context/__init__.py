"""Cross-cutting execution context: operation logging and record locks."""

from .operation_context import OperationContext, OperationHandler, operation
from .record_locks import RecordLockRegistry

__all__ = [
    "OperationContext",
    "OperationHandler",
    "operation",
    "RecordLockRegistry",
]
