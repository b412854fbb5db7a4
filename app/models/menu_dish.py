"""Menu dishes used as the reference vocabulary for transcript correction."""

from __future__ import annotations

from sqlalchemy import Boolean, Column, Integer, String

from app.models.base import Base


class MenuDish(Base):
    __tablename__ = "menu_dishes"

    id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(String(64), nullable=False, index=True)
    name = Column(String(128), nullable=False)
    active = Column(Boolean, nullable=False, default=True)


__all__ = ["MenuDish"]
