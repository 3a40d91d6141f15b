"""
LLMレスポンス復元エンジン

LLMが返すテキストは説明文やMarkdownのコードフェンスでJSONを包んでいることが多いため、
フェンスを除去した上で括弧の対応を数えて最初の完全なJSON断片を取り出します。
正規表現による貪欲マッチではネストした構造の途中で切れてしまうため使いません。

取り出しに失敗した場合は、元の入力に大文字の厳格な指示を加えて一度だけ再試行します。
2回目も失敗すれば ResponseRecoveryException を送出します。各試行の生レスポンスは監査ログに残します。
"""

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence

from complitest.exceptions import ResponseRecoveryException
from complitest.logging_config import logger
from complitest.services.generation.audit import AuditTrail
from complitest.services.generation.composer import ExpectedShape, compose_retry_blocks
from complitest.services.llm.client import ContentBlock, LLMClient, Message, MessageRole

_FENCE_PATTERN = re.compile(r"```[A-Za-z0-9_+-]*")


def strip_code_fences(text: str) -> str:
    """言語指定つき・なしのコードフェンス記号を取り除く"""
    return _FENCE_PATTERN.sub("", text or "")


def _find_balanced(text: str, opener: str, closer: str) -> Optional[str]:
    # 文字列リテラル内の括弧は数えない。開始前の文字列（説明文の引用符など）は追跡しない
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for index, char in enumerate(text):
        if depth > 0 and in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if depth > 0 and char == '"':
            in_string = True
        elif char == opener:
            if depth == 0:
                start = index
            depth += 1
        elif char == closer and depth > 0:
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def find_balanced_object(text: str) -> Optional[str]:
    """最初の完全な {...} 断片を返す"""
    return _find_balanced(text, "{", "}")


def find_balanced_array(text: str) -> Optional[str]:
    """最初の完全な [...] 断片を返す"""
    return _find_balanced(text, "[", "]")


def extract_json_fragment(raw_text: str, shape: ExpectedShape) -> Optional[str]:
    """
    生テキストからJSON断片を取り出す

    object を要求する場合はまずオブジェクトを探し、見つからなければ配列を探す。
    array を要求する場合は配列だけを探す。
    """
    text = strip_code_fences(raw_text)
    if shape == ExpectedShape.OBJECT:
        fragment = find_balanced_object(text)
        if fragment is not None:
            return fragment
    return find_balanced_array(text)


def parse_json_fragment(fragment: Optional[str]) -> Optional[Any]:
    """断片をパースする。失敗しても例外は送出せず None を返す"""
    if fragment is None:
        return None
    try:
        return json.loads(fragment)
    except ValueError:
        return None


def extract_json(raw_text: str, shape: ExpectedShape) -> Optional[Any]:
    """フェンス除去、断片抽出、パースをまとめて行う"""
    return parse_json_fragment(extract_json_fragment(raw_text, shape))


def matches_shape(value: Any, shape: ExpectedShape) -> bool:
    if shape == ExpectedShape.ARRAY:
        return isinstance(value, list)
    return isinstance(value, dict)


class RecoveryState(Enum):
    """復元の状態遷移（FIRST_ATTEMPT → RETRY_ATTEMPT → FAILED）"""
    FIRST_ATTEMPT = 1
    RETRY_ATTEMPT = 2
    FAILED = 3


@dataclass
class RecoveryResult:
    value: Any
    attempts: int
    audit_files: List[str] = field(default_factory=list)


class ResponseRecoveryEngine:
    """
    LLM呼び出しとJSON復元を行うエンジン

    再試行は同じ入力の再送ではなく、厳格な指示を加えた入力で1回だけ行う。
    """

    def __init__(self, llm_client: LLMClient, audit_trail: Optional[AuditTrail] = None):
        self.llm_client = llm_client
        self.audit_trail = audit_trail or AuditTrail()

    async def recover(
        self,
        blocks: Sequence[ContentBlock],
        shape: ExpectedShape,
        owner_req_id: str,
        accept: Optional[Callable[[Any], bool]] = None,
    ) -> RecoveryResult:
        """
        LLMを呼び出し、要求した形のJSON値を取り出す

        Args:
            blocks: 組み立て済みのプロンプト
            shape: 要求するJSONの形
            owner_req_id: 監査ログのキーとなる要求仕様ID
            accept: 形が合った値に対する追加の受け入れ条件

        Returns:
            RecoveryResult

        Raises:
            ResponseRecoveryException: 再試行後も有効なJSONが得られなかった場合
        """
        state = RecoveryState.FIRST_ATTEMPT
        current_blocks = list(blocks)
        audit_files: List[str] = []

        while state != RecoveryState.FAILED:
            attempt = state.value
            raw_text = await self.llm_client.acall([Message(MessageRole.USER, current_blocks)])

            audit_path = self.audit_trail.record(owner_req_id, attempt, raw_text)
            if audit_path:
                audit_files.append(audit_path)

            value = extract_json(raw_text, shape)
            if matches_shape(value, shape) and (accept is None or accept(value)):
                if attempt > 1:
                    logger.info(f"Recovered {shape.value} JSON for {owner_req_id} on retry")
                return RecoveryResult(value=value, attempts=attempt, audit_files=audit_files)

            if state == RecoveryState.FIRST_ATTEMPT:
                logger.warning(f"No valid {shape.value} JSON in LLM response for {owner_req_id}, retrying once")
                current_blocks = compose_retry_blocks(blocks, shape)
                state = RecoveryState.RETRY_ATTEMPT
            else:
                state = RecoveryState.FAILED

        logger.error(f"Failed to recover {shape.value} JSON for {owner_req_id} after retry")
        raise ResponseRecoveryException(
            f"AIの応答から有効なJSONを取得できませんでした。監査ログを確認してください ({owner_req_id})",
            details={"reqId": owner_req_id, "attempts": 2, "auditFiles": audit_files}
        )
