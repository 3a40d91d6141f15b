from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends

from complitest.api.deps import get_current_user, get_generation_service, get_jira_bridge, get_store
from complitest.exceptions import NotFoundException
from complitest.logging_config import logger
from complitest.models import User
from complitest.schemas.testcase import (
    GeneratedSetSummary,
    GenerateTestcasesRequest,
    GenerateTestcasesResponse,
    JiraMirrorRequest,
    JiraMirrorResponse,
    RegenerateRequirementRequest,
    RegenerateRequirementResponse,
    RegenerateTestcaseRequest,
    Testcase,
    TestcaseResponse,
)
from complitest.services.jira.bridge import JiraBridge
from complitest.services.testgen import TestcaseGenerationService, summarize_generated_set
from complitest.services.teststore import TestcaseStore

router = APIRouter(tags=["testcases"])


@router.post("/testcases", response_model=GenerateTestcasesResponse)
async def generate_testcases(
    request: GenerateTestcasesRequest,
    service: TestcaseGenerationService = Depends(get_generation_service),
):
    """
    選択した要求仕様ごとにテストケースを生成する

    要求仕様は1件ずつ順番に処理され、見つからない要求仕様や生成に失敗した要求仕様は
    results の該当項目が success: false になる。
    """
    logger.info(
        f"Generating testcases for {len(request.selected_requirements)} requirements "
        f"against {len(request.selected_standards)} standards"
    )
    results = await service.generate_for_requirements(
        request.selected_requirements,
        request.selected_standards,
        request.prompt_override,
    )
    return GenerateTestcasesResponse(success=True, results=results)


@router.get("/generated", response_model=List[GeneratedSetSummary])
async def list_generated(
    user: User = Depends(get_current_user),
    store: TestcaseStore = Depends(get_store),
):
    """生成セットの一覧（新しい順）"""
    return [GeneratedSetSummary(**summarize_generated_set(gen_set)) for gen_set in store.list_generated_sets(user.id)]


@router.get("/generated/requirement/{set_or_requirement_id}", response_model=List[Testcase])
async def get_generated_testcases(
    set_or_requirement_id: str,
    user: User = Depends(get_current_user),
    store: TestcaseStore = Depends(get_store),
):
    """
    生成セットのテストケース配列を返す

    IDはまず生成セットIDとして、見つからなければ要求仕様IDとして（最新のセットを）解決する。
    """
    gen_set = store.get_generated_set(user.id, set_or_requirement_id)
    if gen_set is None:
        gen_set = store.latest_set_for_requirement(user.id, set_or_requirement_id)
    if gen_set is None:
        raise NotFoundException(
            f"Generated set not found: {set_or_requirement_id}", details={"id": set_or_requirement_id}
        )
    return [Testcase.model_validate(item) for item in gen_set.testcases]


@router.post("/testcases/{gen_id}/regenerate/{tc_id}", response_model=TestcaseResponse)
async def regenerate_testcase(
    gen_id: str,
    tc_id: str,
    request: Optional[RegenerateTestcaseRequest] = Body(None),
    service: TestcaseGenerationService = Depends(get_generation_service),
):
    """生成セット内の1件を再生成する。失敗時は元のテストケースを変更しない"""
    logger.info(f"Regenerating testcase {tc_id} in set {gen_id}")
    prompt_override = request.prompt_override if request else None
    testcase = await service.regenerate_testcase(gen_id, tc_id, prompt_override)
    return TestcaseResponse(success=True, testcase=testcase)


@router.post("/requirements/{req_id}/regenerate", response_model=RegenerateRequirementResponse)
async def regenerate_requirement(
    req_id: str,
    request: RegenerateRequirementRequest,
    service: TestcaseGenerationService = Depends(get_generation_service),
):
    """要求仕様単位で再生成する。既存の最新セットがあれば同じIDのまま上書きする"""
    logger.info(f"Regenerating testcases for requirement {req_id}")
    gen_set = await service.regenerate_requirement(req_id, request.selected_standards, request.prompt_override)
    return RegenerateRequirementResponse(
        success=True,
        gen_id=gen_set.id,
        count=len(gen_set.testcases),
        requirement_id=gen_set.requirement_id,
        requirement_title=gen_set.requirement_title,
    )


@router.patch("/testcases/{gen_id}/{tc_id}", response_model=TestcaseResponse)
async def patch_testcase(
    gen_id: str,
    tc_id: str,
    patch: Any = Body(...),
    service: TestcaseGenerationService = Depends(get_generation_service),
):
    """フィールド単位で手動更新する。不正な値のフィールドは変更されない"""
    logger.info(f"Patching testcase {tc_id} in set {gen_id}")
    testcase = service.patch_testcase(gen_id, tc_id, patch)
    return TestcaseResponse(success=True, testcase=testcase)


@router.post("/testcases/{gen_id}/{tc_id}/jira", response_model=JiraMirrorResponse)
async def mirror_to_jira(
    gen_id: str,
    tc_id: str,
    request: Optional[JiraMirrorRequest] = Body(None),
    user: User = Depends(get_current_user),
    store: TestcaseStore = Depends(get_store),
    bridge: JiraBridge = Depends(get_jira_bridge),
):
    """テストケースをJiraのサブタスクとして作成する（親課題が無ければ先に作成する）"""
    gen_set = store.get_generated_set(user.id, gen_id)
    if gen_set is None:
        raise NotFoundException(f"Generated set not found: {gen_id}", details={"genId": gen_id})
    logger.info(f"Mirroring testcase {tc_id} of set {gen_id} to Jira")
    jira = await bridge.mirror_testcase(gen_set, tc_id, request.project_key if request else None)
    return JiraMirrorResponse(success=True, jira=jira)
