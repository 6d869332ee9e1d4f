"""Reset & Rescan job sessions."""

from .manager import JobSessionManager
from .session import JobSession, Phase, transition

__all__ = ["JobSession", "JobSessionManager", "Phase", "transition"]
