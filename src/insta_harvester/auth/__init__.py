"""Form login used to capture fresh session cookies."""

from .login import login

__all__ = ["login"]
