from typing import List, Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field

class RequirementUploadResponse(BaseModel):
    req_id: str
    title: str
    file_uri: Optional[str] = Field(default=None, serialization_alias="fileUri")
    message: Optional[str] = None

class RequirementSummary(BaseModel):
    id: str
    title: str
    file_uri: Optional[str] = Field(default=None, serialization_alias="fileUri")

class StandardUploadResponse(BaseModel):
    filename: str
    file_uri: Optional[str] = Field(default=None, serialization_alias="fileUri")
    message: Optional[str] = None

class StandardSummary(BaseModel):
    filename: str
    file_uri: Optional[str] = Field(default=None, serialization_alias="fileUri")

class SummarizeRequest(BaseModel):
    selected_standards: List[str] = Field(default_factory=list, alias="selectedStandards")
    prompt: str = "Summarize the documents."

    model_config = ConfigDict(populate_by_name=True)

class SummarizeResponse(BaseModel):
    summary: str

class UserProfile(BaseModel):
    id: int
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None
