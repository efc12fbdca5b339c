from .messages import MessageRecordsMixin
from .schema import MessageSchemaMixin

__all__ = [
    "MessageSchemaMixin",
    "MessageRecordsMixin",
]
