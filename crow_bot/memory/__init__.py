from .flavor_store import FlavorStore
from .records import MessageRecord
from .store import MessageStore

__all__ = ["FlavorStore", "MessageRecord", "MessageStore"]
