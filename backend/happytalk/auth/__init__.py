"""Authorization checks for privileged routes."""
from .dependencies import require_admin

__all__ = ["require_admin"]
