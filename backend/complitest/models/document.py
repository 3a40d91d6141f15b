from sqlmodel import Field
from sqlalchemy import Column, UniqueConstraint
from typing import Optional, Dict, Any
from datetime import datetime
from .base import TimestampModel, utc_now
from .json_column import JSONEncodedDict

class Requirement(TimestampModel, table=True):
    __tablename__ = "requirement"
    __table_args__ = (UniqueConstraint("user_id", "req_id", name="uq_requirement_user_req"),)
    """要求仕様ドキュメント"""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    req_id: str = Field(index=True)
    title: str
    original_name: Optional[str] = None
    file_uri: Optional[str] = None
    uploaded_at: datetime = Field(default_factory=utc_now)
    # メディアストアの生レスポンス
    raw: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONEncodedDict))

class Standard(TimestampModel, table=True):
    __tablename__ = "standard"
    __table_args__ = (UniqueConstraint("user_id", "filename", name="uq_standard_user_filename"),)
    """規格ドキュメント"""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    filename: str = Field(index=True)
    file_uri: Optional[str] = None
    uploaded_at: datetime = Field(default_factory=utc_now)
    raw: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONEncodedDict))
