from typing import List, Optional, Dict, Any
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

class Testcase(BaseModel):
    """正規化済みのテストケース。フィールド構成は固定"""
    __test__ = False
    tc_id: str
    req_id: str
    jira_id: str = ""
    title: str
    preconditions: List[str] = []
    steps: List[str] = []
    expected: str = ""
    automatable: bool = False
    suggested_tool: str = "manual"
    confidence: float = 0.0
    compliance: List[str] = []

class GenerateTestcasesRequest(BaseModel):
    selected_requirements: List[str] = Field(default_factory=list, alias="selectedRequirements")
    selected_standards: List[str] = Field(default_factory=list, alias="selectedStandards")
    prompt_override: Optional[str] = Field(default=None, alias="promptOverride")

    model_config = ConfigDict(populate_by_name=True)

class RegenerateRequirementRequest(BaseModel):
    selected_standards: List[str] = Field(default_factory=list, alias="selectedStandards")
    prompt_override: Optional[str] = Field(default=None, alias="promptOverride")

    model_config = ConfigDict(populate_by_name=True)

class RegenerateTestcaseRequest(BaseModel):
    prompt_override: Optional[str] = Field(default=None, alias="promptOverride")

    model_config = ConfigDict(populate_by_name=True)

class JiraMirrorRequest(BaseModel):
    project_key: Optional[str] = Field(default=None, alias="projectKey")

    model_config = ConfigDict(populate_by_name=True)

class GenerationItemResult(BaseModel):
    """一括生成における要求仕様ごとの結果"""
    req_id: str
    success: bool
    gen_id: Optional[str] = Field(default=None, serialization_alias="genId")
    count: Optional[int] = None
    error: Optional[str] = None

class GenerateTestcasesResponse(BaseModel):
    success: bool
    results: List[GenerationItemResult]

class GeneratedSetSummary(BaseModel):
    id: str
    requirement_id: str = Field(serialization_alias="requirementId")
    jira_id: str = Field(serialization_alias="jiraId")
    requirement_title: Optional[str] = Field(default=None, serialization_alias="requirementTitle")
    created_at: datetime = Field(serialization_alias="createdAt")
    count: int

class TestcaseResponse(BaseModel):
    __test__ = False
    success: bool = True
    testcase: Testcase

class RegenerateRequirementResponse(BaseModel):
    success: bool = True
    gen_id: str = Field(serialization_alias="genId")
    count: int
    requirement_id: str = Field(serialization_alias="requirementId")
    requirement_title: Optional[str] = Field(default=None, serialization_alias="requirementTitle")

class JiraMirrorResponse(BaseModel):
    success: bool = True
    jira: Dict[str, Any]
