"""
テストケース生成サービス

要求仕様と標準ドキュメントからテストケースを生成し、生成セットとして保存します。
処理の流れは プロンプト組み立て → LLM呼び出し → JSON復元 → 正規化 → 保存 です。
一括生成では要求仕様を1件ずつ順番に処理し、1件の失敗が他の要求仕様に影響しないようにします。
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

from complitest.config import config
from complitest.exceptions import (
    ComplitestException,
    NotFoundException,
    ValidationException,
)
from complitest.logging_config import logger
from complitest.models import GeneratedSet, Requirement, Standard
from complitest.schemas.testcase import GenerationItemResult, Testcase
from complitest.services.extraction import DocumentTextExtractor
from complitest.services.generation.composer import (
    ExpectedShape,
    RequirementContext,
    StandardContext,
    compose_generation_blocks,
    compose_regeneration_blocks,
    compose_summary_blocks,
)
from complitest.services.generation.normalizer import merge_testcase, normalize_testcases
from complitest.services.generation.recovery import ResponseRecoveryEngine
from complitest.services.llm.client import LLMClient, LLMClientFactory, Message, MessageRole
from complitest.services.llm.prompts import get_prompt_template
from complitest.services.teststore import TestcaseStore


def _has_object_element(value: Any) -> bool:
    # 正規化後に1件も残らない配列は失敗として再試行させる
    return isinstance(value, list) and any(isinstance(item, dict) for item in value)


def _unique(values: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(v for v in values if isinstance(v, str) and v.strip()))


class TestcaseGenerationService:
    """生成セットのライフサイクル（作成・再生成・パッチ）を扱うサービス"""
    __test__ = False

    def __init__(
        self,
        store: TestcaseStore,
        user_id: int,
        llm_client: Optional[LLMClient] = None,
        extractor: Optional[DocumentTextExtractor] = None,
        recovery_engine: Optional[ResponseRecoveryEngine] = None,
    ):
        self.store = store
        self.user_id = user_id
        self._llm_client = llm_client
        self.extractor = extractor or DocumentTextExtractor()
        self._recovery_engine = recovery_engine

    @property
    def llm_client(self) -> LLMClient:
        # 認証情報の不足はここで ConfigurationException になる
        if self._llm_client is None:
            self._llm_client = LLMClientFactory.create_default()
        return self._llm_client

    @property
    def recovery_engine(self) -> ResponseRecoveryEngine:
        if self._recovery_engine is None:
            self._recovery_engine = ResponseRecoveryEngine(self.llm_client)
        return self._recovery_engine

    @property
    def attach_media(self) -> bool:
        return bool(config.get(config.llm.ATTACH_MEDIA))

    def _resolve_standards(self, names: Sequence[str]) -> List[Standard]:
        found = self.store.get_standards_by_names(self.user_id, names)
        missing = [name for name in names if name not in found]
        if missing:
            raise NotFoundException(f"Standard not found: {', '.join(missing)}", details={"missing": missing})
        return [found[name] for name in names]

    async def _standard_contexts(self, standards: Sequence[Standard]) -> List[StandardContext]:
        contexts = []
        for standard in standards:
            text = await self.extractor.extract(standard.file_uri)
            contexts.append(StandardContext(name=standard.filename, text=text, file_uri=standard.file_uri))
        return contexts

    async def _requirement_context(self, requirement: Requirement) -> RequirementContext:
        text = await self.extractor.extract(requirement.file_uri)
        return RequirementContext(
            req_id=requirement.req_id,
            title=requirement.title,
            text=text,
            file_uri=requirement.file_uri,
        )

    async def _generate(
        self,
        engine: ResponseRecoveryEngine,
        requirement: Requirement,
        standards: Sequence[StandardContext],
        prompt_override: Optional[str],
    ) -> List[Testcase]:
        instruction = get_prompt_template("testcase_generation").format(req_id=requirement.req_id)
        blocks = compose_generation_blocks(
            instruction,
            await self._requirement_context(requirement),
            standards,
            prompt_override=prompt_override,
            attach_media=self.attach_media,
        )
        result = await engine.recover(
            blocks, ExpectedShape.ARRAY, requirement.req_id, accept=_has_object_element
        )
        return normalize_testcases(result.value, requirement.req_id)

    async def generate_for_requirements(
        self,
        requirement_ids: Sequence[str],
        standard_names: Sequence[str],
        prompt_override: Optional[str] = None,
    ) -> List[GenerationItemResult]:
        """
        選択された要求仕様ごとに生成セットを作成する

        Args:
            requirement_ids: 要求仕様IDのリスト（1件以上）
            standard_names: 標準のファイル名のリスト（1件以上）
            prompt_override: ユーザーの追加指示

        Returns:
            要求仕様ごとの結果。見つからない要求仕様や生成失敗はその項目だけの失敗になる

        Raises:
            ValidationException: 入力が空の場合
            NotFoundException: 存在しない標準が指定された場合
        """
        requirement_ids = _unique(requirement_ids)
        standard_names = _unique(standard_names)
        if not requirement_ids or not standard_names:
            raise ValidationException(
                "selectedRequirements and selectedStandards must be non-empty arrays"
            )

        standards = self._resolve_standards(standard_names)
        # LLMクライアントの設定不備はI/Oの前に検出する
        engine = self.recovery_engine
        standard_contexts = await self._standard_contexts(standards)

        results: List[GenerationItemResult] = []
        for req_id in requirement_ids:
            requirement = self.store.get_requirement(self.user_id, req_id)
            if requirement is None:
                logger.warning(f"Requirement {req_id} not found for user {self.user_id}")
                results.append(GenerationItemResult(req_id=req_id, success=False, error="Requirement not found"))
                continue
            try:
                testcases = await self._generate(engine, requirement, standard_contexts, prompt_override)
                gen_set = self.store.create_generated_set(
                    self.user_id,
                    requirement,
                    standard_names,
                    [tc.model_dump() for tc in testcases],
                    prompt_override,
                )
            except ComplitestException as e:
                logger.error(f"Generation failed for {req_id}: {e}")
                results.append(GenerationItemResult(req_id=req_id, success=False, error=e.message))
                continue
            results.append(GenerationItemResult(req_id=req_id, success=True, gen_id=gen_set.id, count=len(testcases)))

        return results

    async def regenerate_requirement(
        self,
        req_id: str,
        standard_names: Sequence[str],
        prompt_override: Optional[str] = None,
    ) -> GeneratedSet:
        """
        要求仕様単位で再生成する

        最新の生成セットがあれば同じIDのままテストケース・標準・追加指示を上書きし、無ければ新規作成する。
        生成に失敗した場合は既存のセットに手を触れない。
        """
        standard_names = _unique(standard_names)
        if not standard_names:
            raise ValidationException("selectedStandards must be a non-empty array")

        requirement = self.store.get_requirement(self.user_id, req_id)
        if requirement is None:
            raise NotFoundException(f"Requirement not found: {req_id}", details={"reqId": req_id})
        standards = self._resolve_standards(standard_names)
        engine = self.recovery_engine

        testcases = await self._generate(engine, requirement, await self._standard_contexts(standards), prompt_override)
        payload = [tc.model_dump() for tc in testcases]

        existing = self.store.latest_set_for_requirement(self.user_id, req_id)
        if existing is not None:
            logger.info(f"Overwriting generated set {existing.id} for {req_id}")
            return self.store.replace_testcases(existing, payload, standard_names, prompt_override)
        return self.store.create_generated_set(self.user_id, requirement, standard_names, payload, prompt_override)

    def _locate(self, gen_id: str, tc_id: str) -> Tuple[GeneratedSet, Testcase]:
        gen_set = self.store.get_generated_set(self.user_id, gen_id)
        if gen_set is None:
            raise NotFoundException(f"Generated set not found: {gen_id}", details={"genId": gen_id})
        for item in gen_set.testcases:
            if isinstance(item, dict) and item.get("tc_id") == tc_id:
                return gen_set, Testcase.model_validate(item)
        raise NotFoundException(f"Testcase not found: {tc_id}", details={"genId": gen_id, "tcId": tc_id})

    async def regenerate_testcase(self, gen_id: str, tc_id: str, prompt_override: Optional[str] = None) -> Testcase:
        """
        生成セット内の1件だけを再生成する

        モデルが返さなかった値や型の合わない値は以前の値を保持し、tc_id は常に元のIDに戻す。
        復元に失敗した場合は元のテストケースを変更せずに例外を送出する。
        """
        gen_set, previous = self._locate(gen_id, tc_id)
        engine = self.recovery_engine

        requirement = self.store.get_requirement_by_ref(self.user_id, gen_set.requirement_ref)
        if requirement is not None:
            requirement_context = await self._requirement_context(requirement)
        else:
            requirement_context = RequirementContext(
                req_id=gen_set.requirement_id, title=gen_set.requirement_title or "", text=""
            )

        # 保存済みセットが参照する標準のうち、削除されたものは文脈から外す
        found = self.store.get_standards_by_names(self.user_id, gen_set.selected_standards)
        standards = [found[name] for name in gen_set.selected_standards if name in found]

        instruction = get_prompt_template("testcase_regeneration").format(
            req_id=gen_set.requirement_id, tc_id=tc_id
        )
        blocks = compose_regeneration_blocks(
            instruction,
            requirement_context,
            await self._standard_contexts(standards),
            existing_set=gen_set.testcases,
            target=previous.model_dump(),
            prompt_override=prompt_override,
            attach_media=self.attach_media,
        )
        result = await engine.recover(blocks, ExpectedShape.OBJECT, gen_set.requirement_id)

        merged = merge_testcase(result.value, previous)
        self.store.update_testcase(gen_set, merged.model_dump())
        return merged

    def patch_testcase(self, gen_id: str, tc_id: str, patch: Any) -> Testcase:
        """
        手動で一部のフィールドを更新する。LLMは呼び出さない

        各フィールドは個別に検証され、不正な値や指定されなかったフィールドは変更されない。
        """
        if not isinstance(patch, dict):
            raise ValidationException("Patch body must be a JSON object")
        gen_set, previous = self._locate(gen_id, tc_id)
        merged = merge_testcase(patch, previous)
        self.store.update_testcase(gen_set, merged.model_dump())
        return merged

    async def summarize_standards(self, standard_names: Sequence[str], prompt: str) -> str:
        """
        選択した標準ドキュメントを要約する

        出力はプレーンテキストのため、JSON復元は行わない。
        """
        standard_names = _unique(standard_names)
        if not standard_names:
            raise ValidationException("selectedStandards must be a non-empty array")

        found = self.store.get_standards_by_names(self.user_id, standard_names)
        standards = [found[name] for name in standard_names if name in found and found[name].file_uri]
        if not standards:
            raise ValidationException("No fileUris found for selected standards", details={"selectedStandards": standard_names})

        instruction = get_prompt_template("standards_summary").format(prompt=prompt or "Summarize the documents.")
        blocks = compose_summary_blocks(instruction, await self._standard_contexts(standards), self.attach_media)
        return await self.llm_client.acall([Message(MessageRole.USER, blocks)])


def summarize_generated_set(gen_set: GeneratedSet) -> Dict[str, Any]:
    return {
        "id": gen_set.id,
        "requirement_id": gen_set.requirement_id,
        "jira_id": gen_set.jira_id or "",
        "requirement_title": gen_set.requirement_title,
        "created_at": gen_set.created_at,
        "count": len(gen_set.testcases),
    }
