# Namespace for in-memory session models.
from .session import FileRecord, Session

__all__ = ["FileRecord", "Session"]
