from .commands_mixin import CommandsMixin
from .identity_mixin import IdentityMixin
from .interjection_mixin import InterjectionMixin
from .reaction_mixin import ReactionMixin
from .recovery_mixin import RecoveryMixin
from .workers_mixin import WorkersMixin

__all__ = [
    "CommandsMixin",
    "IdentityMixin",
    "InterjectionMixin",
    "ReactionMixin",
    "RecoveryMixin",
    "WorkersMixin",
]
