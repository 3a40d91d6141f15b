from sqlmodel import Field
from typing import Optional
from datetime import datetime
from .base import TimestampModel

class User(TimestampModel, table=True):
    __tablename__ = "user"
    """IDプロバイダーで認証されたユーザー"""
    id: Optional[int] = Field(default=None, primary_key=True)
    google_id: str = Field(index=True, unique=True)
    email: str = Field(index=True, unique=True)
    name: Optional[str] = None
    picture: Optional[str] = None
    last_login_at: Optional[datetime] = None
