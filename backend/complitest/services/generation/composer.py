"""
プロンプト組み立てモジュール

LLMへの入力を ContentBlock の列として組み立てます。順序は常に
指示 → ユーザー追加指示 → 要求仕様 → 標準一覧 → 各標準の本文 → 既存状態 → 出力形式の念押し
で固定です。すべての関数は入力のみに依存し、副作用を持ちません。
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from complitest.services.llm.client import ContentBlock


class ExpectedShape(Enum):
    """LLMに要求するJSONの形"""
    ARRAY = "array"
    OBJECT = "object"


@dataclass(frozen=True)
class RequirementContext:
    req_id: str
    title: str
    text: str
    file_uri: Optional[str] = None


@dataclass(frozen=True)
class StandardContext:
    name: str
    text: str
    file_uri: Optional[str] = None


FINAL_DIRECTIVES = {
    ExpectedShape.ARRAY: (
        "Return ONLY a JSON array of test case objects. "
        "Do not add explanations, headings or markdown around the array."
    ),
    ExpectedShape.OBJECT: (
        "Return ONLY a single JSON object for the target test case. "
        "Do not add explanations, headings or markdown around the object."
    ),
}

RETRY_DIRECTIVES = {
    ExpectedShape.ARRAY: (
        "YOUR PREVIOUS ANSWER COULD NOT BE PARSED. RETURN ONLY VALID JSON. "
        "NO PROSE. NO MARKDOWN. NO CODE FENCES. THE RESPONSE MUST BE A JSON ARRAY EXACTLY LIKE:\n"
        '[{"tc_id": "TC-001", "req_id": "REQ-1", "title": "...", "preconditions": ["..."], '
        '"steps": ["..."], "expected": "...", "automatable": false, "suggested_tool": "manual", '
        '"confidence": 0.8, "compliance": ["..."]}]'
    ),
    ExpectedShape.OBJECT: (
        "YOUR PREVIOUS ANSWER COULD NOT BE PARSED. RETURN ONLY VALID JSON. "
        "NO PROSE. NO MARKDOWN. NO CODE FENCES. THE RESPONSE MUST BE ONE JSON OBJECT EXACTLY LIKE:\n"
        '{"tc_id": "TC-001", "req_id": "REQ-1", "title": "...", "preconditions": ["..."], '
        '"steps": ["..."], "expected": "...", "automatable": false, "suggested_tool": "manual", '
        '"confidence": 0.8, "compliance": ["..."]}'
    ),
}


def _override_block(prompt_override: Optional[str]) -> List[ContentBlock]:
    # 固定の指示を置き換えず、後ろに追加する
    if prompt_override and prompt_override.strip():
        return [ContentBlock.of_text(f"Additional instructions from the user:\n{prompt_override.strip()}")]
    return []


def _requirement_blocks(requirement: RequirementContext, attach_media: bool) -> List[ContentBlock]:
    body = requirement.text if requirement.text else "(no text could be extracted from this document)"
    blocks = [ContentBlock.of_text(
        f"Requirement {requirement.req_id}: {requirement.title}\n---\n{body}"
    )]
    if attach_media and requirement.file_uri:
        blocks.append(ContentBlock.of_media(requirement.file_uri))
    return blocks


def _standards_blocks(standards: Sequence[StandardContext], attach_media: bool) -> List[ContentBlock]:
    if not standards:
        return []
    names = "\n".join(f"- {standard.name}" for standard in standards)
    blocks = [ContentBlock.of_text(f"Selected standards:\n{names}")]
    for standard in standards:
        body = standard.text if standard.text else "(no text could be extracted from this document)"
        blocks.append(ContentBlock.of_text(f"Standard {standard.name}\n---\n{body}"))
        if attach_media and standard.file_uri:
            blocks.append(ContentBlock.of_media(standard.file_uri))
    return blocks


def _to_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, indent=2)


def compose_generation_blocks(
    instruction: str,
    requirement: RequirementContext,
    standards: Sequence[StandardContext],
    prompt_override: Optional[str] = None,
    attach_media: bool = False,
) -> List[ContentBlock]:
    """
    一括生成・要求仕様単位の再生成用のブロックを組み立てる

    Args:
        instruction: テンプレートから得た固定の指示
        requirement: 要求仕様のメタデータと抽出テキスト
        standards: 選択された標準（名前と抽出テキスト）
        prompt_override: ユーザーが追加した指示
        attach_media: ファイルURIをメディアとして添付するか

    Returns:
        ContentBlock のリスト（最後は配列を要求する指示）
    """
    return [
        ContentBlock.of_text(instruction),
        *_override_block(prompt_override),
        *_requirement_blocks(requirement, attach_media),
        *_standards_blocks(standards, attach_media),
        ContentBlock.of_text(FINAL_DIRECTIVES[ExpectedShape.ARRAY]),
    ]


def compose_regeneration_blocks(
    instruction: str,
    requirement: RequirementContext,
    standards: Sequence[StandardContext],
    existing_set: Sequence[Dict[str, Any]],
    target: Dict[str, Any],
    prompt_override: Optional[str] = None,
    attach_media: bool = False,
) -> List[ContentBlock]:
    """
    単一テストケース再生成用のブロックを組み立てる

    既存セット全体と対象テストケースをJSONとして文脈に含め、最後に単一オブジェクトを要求する。
    """
    return [
        ContentBlock.of_text(instruction),
        *_override_block(prompt_override),
        *_requirement_blocks(requirement, attach_media),
        *_standards_blocks(standards, attach_media),
        ContentBlock.of_text(f"Current test case set:\n{_to_json(list(existing_set))}"),
        ContentBlock.of_text(f"Target test case to regenerate:\n{_to_json(target)}"),
        ContentBlock.of_text(FINAL_DIRECTIVES[ExpectedShape.OBJECT]),
    ]


def compose_retry_blocks(original: Sequence[ContentBlock], shape: ExpectedShape) -> List[ContentBlock]:
    """元の入力の後ろに、大文字の厳格な指示と形の例を付け加える"""
    return [*original, ContentBlock.of_text(RETRY_DIRECTIVES[shape])]


def compose_summary_blocks(
    instruction: str,
    standards: Sequence[StandardContext],
    attach_media: bool = False,
) -> List[ContentBlock]:
    """標準ドキュメント要約用のブロック。出力はプレーンテキスト"""
    return [
        ContentBlock.of_text(instruction),
        *_standards_blocks(standards, attach_media),
    ]
