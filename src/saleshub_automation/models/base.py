"""Declarative base for the queue database models."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
