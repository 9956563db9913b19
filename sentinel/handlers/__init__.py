"""AWS Lambda handlers for the reserve sentinel."""

from .cycle_handler import handler as cycle_handler

__all__ = ["cycle_handler"]
