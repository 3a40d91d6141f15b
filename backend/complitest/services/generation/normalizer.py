"""
テストケース正規化モジュール

LLMの出力から得た任意のJSON値を固定スキーマの Testcase に変換します。
各フィールドは「値が妥当なら正規化して採用、そうでなければ既定値」という
リゾルバで解決されるため、どのような入力に対しても例外を送出しません。
"""

import json
import math
import secrets
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from complitest.logging_config import logger
from complitest.schemas.testcase import Testcase

DEFAULT_SUGGESTED_TOOL = "manual"

# 妥当な入力ではないことを表す番兵
_MISSING = object()


def synthesize_tc_id() -> str:
    """TC-<エポックミリ秒>-<ランダム16進6桁> 形式のIDを生成する"""
    return f"TC-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def _non_empty_string(value: Any) -> Any:
    if isinstance(value, str) and value.strip():
        return value
    return _MISSING


def _string(value: Any) -> Any:
    return value if isinstance(value, str) else _MISSING


def _coerce_element(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def _string_list(value: Any) -> Any:
    if not isinstance(value, list):
        return _MISSING
    return [_coerce_element(item) for item in value]


def _expected(value: Any) -> Any:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return " ".join(_coerce_element(item) for item in value)
    return _MISSING


def _strict_bool(value: Any) -> Any:
    return value if isinstance(value, bool) else _MISSING


def _confidence(value: Any) -> Any:
    # bool は int のサブクラスなので明示的に除外する
    if isinstance(value, bool):
        return _MISSING
    if isinstance(value, str):
        value = value.strip()
    elif not isinstance(value, (int, float)):
        return _MISSING
    # float に収まらない巨大な整数は OverflowError になる
    try:
        number = float(value)
    except (OverflowError, ValueError):
        return _MISSING
    if not math.isfinite(number):
        return _MISSING
    return min(1.0, max(0.0, number))


# tc_id / req_id / title は他フィールドに依存するため個別に解決する
FIELD_RESOLVERS: Dict[str, Tuple[Callable[[Any], Any], Any]] = {
    "jira_id": (_string, ""),
    "preconditions": (_string_list, []),
    "steps": (_string_list, []),
    "expected": (_expected, ""),
    "automatable": (_strict_bool, False),
    "suggested_tool": (_non_empty_string, DEFAULT_SUGGESTED_TOOL),
    "confidence": (_confidence, 0.0),
    "compliance": (_string_list, []),
}


def normalize_testcase(value: Any, fallback_req_id: str, tc_id: Optional[str] = None) -> Testcase:
    """
    任意のJSON値を Testcase に正規化する

    Args:
        value: パース済みJSON値（dict以外は空オブジェクトとして扱う）
        fallback_req_id: req_id が無効な場合に使う要求仕様ID
        tc_id: 指定した場合はこのIDを強制する

    Returns:
        すべてのフィールドが埋まった Testcase
    """
    source = value if isinstance(value, dict) else {}

    resolved_tc_id = tc_id or _non_empty_string(source.get("tc_id"))
    if resolved_tc_id is _MISSING:
        resolved_tc_id = synthesize_tc_id()

    req_id = _non_empty_string(source.get("req_id"))
    title = _non_empty_string(source.get("title"))

    fields: Dict[str, Any] = {
        "tc_id": resolved_tc_id,
        "req_id": fallback_req_id if req_id is _MISSING else req_id,
        "title": f"Testcase {resolved_tc_id}" if title is _MISSING else title,
    }
    for name, (resolver, default) in FIELD_RESOLVERS.items():
        resolved = resolver(source.get(name, _MISSING))
        fields[name] = default if resolved is _MISSING else resolved

    return Testcase(**fields)


def normalize_testcases(value: Any, fallback_req_id: str) -> List[Testcase]:
    """
    テストケース配列を正規化する

    dict以外の要素は破棄する。tc_id が重複した場合は後続の要素に新しいIDを割り当て、
    生成セット内での一意性を保つ。順序はモデルの出力順のまま。

    Args:
        value: パース済みJSON値（配列を想定）
        fallback_req_id: 既定の要求仕様ID

    Returns:
        正規化済み Testcase のリスト（入力が配列でなければ空リスト）
    """
    if not isinstance(value, list):
        return []

    testcases: List[Testcase] = []
    seen_ids = set()
    for index, item in enumerate(value):
        if not isinstance(item, dict):
            logger.warning(f"Dropping non-object testcase element at index {index}: {type(item).__name__}")
            continue
        testcase = normalize_testcase(item, fallback_req_id)
        while testcase.tc_id in seen_ids:
            logger.warning(f"Duplicate tc_id {testcase.tc_id} in generated set, assigning a new id")
            testcase = testcase.model_copy(update={"tc_id": synthesize_tc_id()})
        seen_ids.add(testcase.tc_id)
        testcases.append(testcase)
    return testcases


def merge_testcase(value: Any, previous: Testcase) -> Testcase:
    """
    既存のテストケースに部分的な値をマージする

    単一テストケースの再生成と手動パッチで共通に使う。妥当な値のみ置き換え、
    欠落または型が合わない値は以前の値を保持する。tc_id は常に元の値に固定する。

    Args:
        value: LLM出力またはパッチとして受け取ったJSON値
        previous: 置き換え対象の保存済みテストケース

    Returns:
        マージ後の Testcase
    """
    source = value if isinstance(value, dict) else {}
    merged = previous.model_dump()

    for name, resolver in (("req_id", _non_empty_string), ("title", _non_empty_string)):
        resolved = resolver(source.get(name, _MISSING))
        if resolved is not _MISSING:
            merged[name] = resolved

    for name, (resolver, _) in FIELD_RESOLVERS.items():
        if name not in source:
            continue
        resolved = resolver(source[name])
        if resolved is _MISSING:
            logger.debug(f"Ignoring invalid value for field {name} on {previous.tc_id}")
            continue
        merged[name] = resolved

    merged["tc_id"] = previous.tc_id
    return Testcase(**merged)
