from .tracker import SessionRecord, SessionTracker

__all__ = ["SessionRecord", "SessionTracker"]
