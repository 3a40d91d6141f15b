import json
import pytest

from complitest.exceptions import ModelCallException, ResponseRecoveryException
from complitest.services.generation.audit import AuditTrail
from complitest.services.generation.composer import ExpectedShape
from complitest.services.generation.recovery import (
    RecoveryState,
    ResponseRecoveryEngine,
    extract_json,
    extract_json_fragment,
    find_balanced_array,
    find_balanced_object,
    parse_json_fragment,
    strip_code_fences,
)
from complitest.services.llm.client import ContentBlock
from tests.fakes import ScriptedLLMClient


def test_strip_code_fences_removes_tagged_and_bare_markers():
    text = "```json\n[1, 2]\n```\nand\n```\n{}\n```"
    stripped = strip_code_fences(text)
    assert "```" not in stripped
    assert "json" not in stripped
    assert "[1, 2]" in stripped


def test_extract_array_from_fenced_prose():
    """説明文とコードフェンスに囲まれた配列を取り出す"""
    raw = 'Here is the result:\n```json\n[{"tc_id":"T1","title":"Login"}]\n```\nThanks!'
    fragment = extract_json_fragment(raw, ExpectedShape.ARRAY)
    assert fragment == '[{"tc_id":"T1","title":"Login"}]'
    assert extract_json(raw, ExpectedShape.ARRAY) == [{"tc_id": "T1", "title": "Login"}]


def test_brackets_inside_strings_do_not_confuse_scanner():
    payload = [{"tc_id": "T1", "steps": ["Use array [1,2,3]", "close ] early", "open [ late"]}]
    raw = "Sure!\n```json\n" + json.dumps(payload) + "\n```"
    assert extract_json(raw, ExpectedShape.ARRAY) == payload


def test_nested_structures_are_not_truncated():
    payload = {"tc_id": "T1", "meta": {"nested": {"deep": [1, {"x": "}"}]}}, "title": "t"}
    raw = "prefix " + json.dumps(payload) + " suffix {not json}"
    assert find_balanced_object(raw) == json.dumps(payload)
    assert extract_json(raw, ExpectedShape.OBJECT) == payload


def test_escaped_quotes_inside_strings():
    raw = r'{"title": "say \"hi\" {twice}", "steps": []}'
    assert extract_json(raw, ExpectedShape.OBJECT) == {"title": 'say "hi" {twice}', "steps": []}


def test_object_shape_falls_back_to_array_scan():
    assert extract_json_fragment("values: [1, 2, 3]", ExpectedShape.OBJECT) == "[1, 2, 3]"


def test_array_shape_ignores_objects_outside_arrays():
    assert extract_json_fragment('{"a": 1} then [2]', ExpectedShape.ARRAY) == "[2]"


def test_no_fragment_returns_none_without_raising():
    assert find_balanced_array("no json here") is None
    assert find_balanced_object("unterminated { \"a\": 1") is None
    assert extract_json("plain prose", ExpectedShape.ARRAY) is None


def test_invalid_fragment_parses_to_none():
    assert parse_json_fragment("[1, 2,]") is None
    assert parse_json_fragment(None) is None


def test_quotes_in_prose_before_fragment_are_ignored():
    raw = 'The model said "here you go: [1, 2]'
    assert extract_json(raw, ExpectedShape.ARRAY) == [1, 2]


def test_recovery_states_are_ordered():
    assert [state.name for state in RecoveryState] == ["FIRST_ATTEMPT", "RETRY_ATTEMPT", "FAILED"]


@pytest.mark.asyncio
async def test_recover_succeeds_on_first_attempt(tmp_path):
    llm = ScriptedLLMClient(['```json\n[{"tc_id": "T1"}]\n```'])
    engine = ResponseRecoveryEngine(llm, AuditTrail(tmp_path))

    result = await engine.recover([ContentBlock.of_text("generate")], ExpectedShape.ARRAY, "REQ-1")

    assert result.value == [{"tc_id": "T1"}]
    assert result.attempts == 1
    assert len(llm.calls) == 1
    assert len(list(tmp_path.iterdir())) == 1


@pytest.mark.asyncio
async def test_invalid_twice_retries_once_and_writes_two_audit_files(tmp_path):
    """2回続けて不正なJSONなら再試行は1回だけで、監査ファイルが2つ残る"""
    llm = ScriptedLLMClient(["not json at all", "still {broken"])
    engine = ResponseRecoveryEngine(llm, AuditTrail(tmp_path))

    with pytest.raises(ResponseRecoveryException) as exc_info:
        await engine.recover([ContentBlock.of_text("generate")], ExpectedShape.ARRAY, "REQ-1")

    assert len(llm.calls) == 2
    audit_files = sorted(tmp_path.iterdir())
    assert len(audit_files) == 2
    assert {path.read_text(encoding="utf-8") for path in audit_files} == {"not json at all", "still {broken"}
    assert all(path.name.startswith("REQ-1_") for path in audit_files)
    assert exc_info.value.details["attempts"] == 2
    assert len(exc_info.value.details["auditFiles"]) == 2


@pytest.mark.asyncio
async def test_retry_appends_strict_directive_to_original_content(tmp_path):
    llm = ScriptedLLMClient(["Sorry, I cannot help.", "[{\"tc_id\": \"T9\"}]"])
    engine = ResponseRecoveryEngine(llm, AuditTrail(tmp_path))
    original = [ContentBlock.of_text("instruction"), ContentBlock.of_text("requirement")]

    result = await engine.recover(original, ExpectedShape.ARRAY, "REQ-1")

    assert result.attempts == 2
    assert result.value == [{"tc_id": "T9"}]
    retry_blocks = llm.calls[1][0].content
    assert retry_blocks[:2] == original
    assert "RETURN ONLY VALID JSON" in retry_blocks[-1].text
    assert "[{" in retry_blocks[-1].text


@pytest.mark.asyncio
async def test_object_shape_takes_first_object_inside_array(tmp_path):
    llm = ScriptedLLMClient(['[{"tc_id": "T1"}]', '{"title": "ok"}'])
    engine = ResponseRecoveryEngine(llm, AuditTrail(tmp_path))

    result = await engine.recover([ContentBlock.of_text("x")], ExpectedShape.OBJECT, "REQ-1")

    # 1回目は配列内のオブジェクトが取れるため、そのまま成功する
    assert result.attempts == 1
    assert result.value == {"tc_id": "T1"}


@pytest.mark.asyncio
async def test_array_required_but_object_returned_retries(tmp_path):
    llm = ScriptedLLMClient(['{"tc_id": "T1"}', '[{"tc_id": "T2"}]'])
    engine = ResponseRecoveryEngine(llm, AuditTrail(tmp_path))

    result = await engine.recover([ContentBlock.of_text("x")], ExpectedShape.ARRAY, "REQ-1")

    assert result.attempts == 2
    assert result.value == [{"tc_id": "T2"}]


@pytest.mark.asyncio
async def test_accept_predicate_rejects_empty_array(tmp_path):
    llm = ScriptedLLMClient(["[]", "[]"])
    engine = ResponseRecoveryEngine(llm, AuditTrail(tmp_path))

    with pytest.raises(ResponseRecoveryException):
        await engine.recover(
            [ContentBlock.of_text("x")], ExpectedShape.ARRAY, "REQ-1", accept=lambda value: len(value) > 0
        )
    assert len(llm.calls) == 2


@pytest.mark.asyncio
async def test_audit_failure_does_not_affect_outcome(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file in the way")
    llm = ScriptedLLMClient(['[{"tc_id": "T1"}]'])
    engine = ResponseRecoveryEngine(llm, AuditTrail(blocker))

    result = await engine.recover([ContentBlock.of_text("x")], ExpectedShape.ARRAY, "REQ-1")

    assert result.value == [{"tc_id": "T1"}]
    assert result.audit_files == []


@pytest.mark.asyncio
async def test_model_call_errors_are_not_retried(tmp_path):
    class FailingClient(ScriptedLLMClient):
        async def _acall_llm(self, messages):
            self.calls.append(messages)
            raise RuntimeError("upstream down")

    llm = FailingClient()
    engine = ResponseRecoveryEngine(llm, AuditTrail(tmp_path))

    with pytest.raises(ModelCallException):
        await engine.recover([ContentBlock.of_text("x")], ExpectedShape.ARRAY, "REQ-1")
    assert len(llm.calls) == 1
