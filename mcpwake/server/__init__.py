"""HTTP viewer and REST surface."""
from .server import WakeServer, status_for_error

__all__ = ["WakeServer", "status_for_error"]
