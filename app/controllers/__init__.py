"""FastAPI routers acting as controllers in the MVC architecture."""

from . import labs, student

__all__ = ["labs", "student"]
