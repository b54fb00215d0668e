"""Declarative base shared by every ORM model."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    # Models declare plain ``Column`` attributes with type annotations.
    __allow_unmapped__ = True
