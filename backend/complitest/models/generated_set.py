from sqlmodel import Field
from sqlalchemy import Column, Index
from typing import Optional, List, Dict, Any
from .base import TimestampModel
from .json_column import JSONEncodedList

class GeneratedSet(TimestampModel, table=True):
    __tablename__ = "generatedset"
    __table_args__ = (Index("ix_generatedset_user_requirement_created", "user_id", "requirement_id", "created_at"),)
    """要求仕様1件と選択された規格から生成されたテストケースの集合"""
    id: str = Field(primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    requirement_ref: Optional[int] = Field(default=None, foreign_key="requirement.id")
    requirement_id: str
    requirement_title: Optional[str] = None
    jira_id: str = ""
    selected_standards: List[str] = Field(default_factory=list, sa_column=Column(JSONEncodedList))
    # 正規化済みテストケース（dict）の順序付きリスト
    testcases: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSONEncodedList))
    prompt_override: Optional[str] = None
