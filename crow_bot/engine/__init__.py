from .addressing import is_direct_address
from .silence import InactivityAmplifier
from .state import EngineState, RecentSpeakers

__all__ = ["EngineState", "InactivityAmplifier", "RecentSpeakers", "is_direct_address"]
