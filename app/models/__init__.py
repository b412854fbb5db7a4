"""SQLAlchemy models for the table-visit backend."""

from .base import Base
from .menu_dish import MenuDish  # noqa: F401
from .visit_record import VisitRecord  # noqa: F401

__all__ = [
    "Base",
    "MenuDish",
    "VisitRecord",
]
