"""Reacher API SQLModel tables: import here so SQLModel.metadata is populated."""

from reacher_api.models.user import User

__all__ = ["User"]
