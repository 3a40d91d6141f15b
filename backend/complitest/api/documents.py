import mimetypes
import uuid
from pathlib import Path
from typing import Dict, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from complitest.api.deps import get_current_user, get_generation_service, get_store
from complitest.exceptions import ValidationException
from complitest.logging_config import logger
from complitest.models import User
from complitest.schemas.document import (
    RequirementSummary,
    RequirementUploadResponse,
    StandardSummary,
    StandardUploadResponse,
    SummarizeRequest,
    SummarizeResponse,
)
from complitest.services.media_store import MediaStore, extract_file_uri, get_media_store
from complitest.services.testgen import TestcaseGenerationService
from complitest.services.teststore import TestcaseStore

router = APIRouter(tags=["documents"])

NO_URI_MESSAGE = "Uploaded but no fileUri in SDK response"


async def _read_upload(file: Optional[UploadFile]) -> bytes:
    if file is None or not file.filename:
        raise ValidationException("No file uploaded")
    content = await file.read()
    if not content:
        raise ValidationException("Uploaded file is empty", details={"filename": file.filename})
    return content


def _mime_type(file: UploadFile) -> str:
    if file.content_type and file.content_type != "application/octet-stream":
        return file.content_type
    guessed, _ = mimetypes.guess_type(file.filename or "")
    return guessed or "application/octet-stream"


@router.post("/requirements/upload", response_model=RequirementUploadResponse)
async def upload_requirement(
    file: Optional[UploadFile] = File(None),
    req_id: Optional[str] = Form(None, alias="reqId"),
    title: Optional[str] = Form(None),
    user: User = Depends(get_current_user),
    store: TestcaseStore = Depends(get_store),
    media_store: MediaStore = Depends(get_media_store),
):
    """
    要求仕様ドキュメントをアップロードする

    reqId を省略した場合は REQ-<16進8桁> を、title を省略した場合はファイル名（拡張子なし）を使う。
    同じ reqId で再アップロードすると既存の要求仕様を更新する。
    """
    content = await _read_upload(file)
    req_id = (req_id or "").strip() or f"REQ-{uuid.uuid4().hex[:8].upper()}"
    title = (title or "").strip() or Path(file.filename).stem
    logger.info(f"Uploading requirement {req_id}: {file.filename}")

    raw = await media_store.upload(content, file.filename, _mime_type(file), owner=user.id)
    file_uri = extract_file_uri(raw)
    store.save_requirement(user.id, req_id, title, file.filename, file_uri, raw)

    if file_uri is None:
        logger.warning(f"No file URI in media store response for requirement {req_id}")
        return RequirementUploadResponse(req_id=req_id, title=title, file_uri=None, message=NO_URI_MESSAGE)
    return RequirementUploadResponse(req_id=req_id, title=title, file_uri=file_uri)


@router.get("/requirements", response_model=Dict[str, RequirementSummary])
async def list_requirements(
    user: User = Depends(get_current_user),
    store: TestcaseStore = Depends(get_store),
):
    """要求仕様IDをキーにした一覧を返す"""
    return {
        requirement.req_id: RequirementSummary(
            id=requirement.req_id, title=requirement.title, file_uri=requirement.file_uri
        )
        for requirement in store.list_requirements(user.id)
    }


@router.post("/upload", response_model=StandardUploadResponse)
async def upload_standard(
    file: Optional[UploadFile] = File(None),
    user: User = Depends(get_current_user),
    store: TestcaseStore = Depends(get_store),
    media_store: MediaStore = Depends(get_media_store),
):
    """標準ドキュメントをアップロードする。ファイル名が標準の識別子になる"""
    content = await _read_upload(file)
    filename = Path(file.filename).name
    logger.info(f"Uploading standard {filename}")

    raw = await media_store.upload(content, filename, _mime_type(file), owner=user.id)
    file_uri = extract_file_uri(raw)
    store.save_standard(user.id, filename, file_uri, raw)

    if file_uri is None:
        logger.warning(f"No file URI in media store response for standard {filename}")
        return StandardUploadResponse(filename=filename, file_uri=None, message=NO_URI_MESSAGE)
    return StandardUploadResponse(filename=filename, file_uri=file_uri)


@router.get("/standards", response_model=Dict[str, StandardSummary])
async def list_standards(
    user: User = Depends(get_current_user),
    store: TestcaseStore = Depends(get_store),
):
    """ファイル名をキーにした標準の一覧を返す"""
    return {
        standard.filename: StandardSummary(filename=standard.filename, file_uri=standard.file_uri)
        for standard in store.list_standards(user.id)
    }


@router.post("/summarize", response_model=SummarizeResponse)
async def summarize_standards(
    request: SummarizeRequest,
    service: TestcaseGenerationService = Depends(get_generation_service),
):
    """選択した標準ドキュメントを要約する"""
    logger.info(f"Summarizing {len(request.selected_standards)} standards")
    summary = await service.summarize_standards(request.selected_standards, request.prompt)
    return SummarizeResponse(summary=summary)
