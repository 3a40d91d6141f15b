"""
テストケース生成の中核（プロンプト組み立て・レスポンス復元・正規化）
"""
from .composer import (
    ExpectedShape, RequirementContext, StandardContext,
    compose_generation_blocks, compose_regeneration_blocks, compose_retry_blocks, compose_summary_blocks,
)
from .recovery import (
    RecoveryState, RecoveryResult, ResponseRecoveryEngine,
    strip_code_fences, find_balanced_object, find_balanced_array, extract_json,
)
from .normalizer import normalize_testcase, normalize_testcases, merge_testcase, synthesize_tc_id
from .audit import AuditTrail
