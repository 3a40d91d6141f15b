from .base import TimestampModel, get_session, engine
from .user import User
from .document import Requirement, Standard
from .generated_set import GeneratedSet

__all__ = [
    "TimestampModel", "get_session", "engine",
    "User", "Requirement", "Standard", "GeneratedSet",
]

def init_db():
    """データベーススキーマを初期化する"""
    from sqlmodel import SQLModel
    from . import base

    SQLModel.metadata.create_all(base.engine)
