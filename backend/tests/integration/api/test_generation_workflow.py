import pytest
from fastapi.testclient import TestClient

from complitest.api.deps import get_current_user, get_generation_service
from complitest.main import app
from complitest.models import get_session
from complitest.services.extraction import DocumentTextExtractor
from complitest.services.generation.audit import AuditTrail
from complitest.services.generation.recovery import ResponseRecoveryEngine
from complitest.services.testgen import TestcaseGenerationService
from tests.fakes import ScriptedLLMClient


@pytest.fixture
def workflow_client(session, store, user, upload_dir, audit_dir):
    """ローカル保存と実際のテキスト抽出を使い、LLMだけを差し替えたクライアント"""
    llm = ScriptedLLMClient()
    service = TestcaseGenerationService(
        store,
        user.id,
        llm_client=llm,
        extractor=DocumentTextExtractor(max_bytes=1024 * 1024, max_chars=5000, timeout_seconds=5),
        recovery_engine=ResponseRecoveryEngine(llm, AuditTrail(audit_dir)),
    )
    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_current_user] = lambda: user
    app.dependency_overrides[get_generation_service] = lambda: service
    yield TestClient(app), llm
    app.dependency_overrides.clear()


def _prompt_text(call):
    return "\n".join(block.text for block in call[0].content)


def test_upload_generate_regenerate_patch(workflow_client, audit_dir):
    """アップロードから生成、単一再生成、要求仕様の再生成、パッチまでの一連の流れ"""
    client, llm = workflow_client

    # ドキュメントの登録
    requirement = client.post(
        "/requirements/upload",
        files={"file": ("lockout.txt", b"The system shall lock an account after 5 failed logins.", "text/plain")},
        data={"reqId": "REQ-LOCK", "title": "Account lockout"},
    ).json()
    assert requirement["fileUri"].startswith("file://")
    standard = client.post("/upload", files={"file": ("iso27001.txt", b"A.9.4.2 Secure log-on", "text/plain")})
    assert standard.status_code == 200

    # 生成（1回目は壊れた応答、再試行で成功）
    llm.responses = [
        "Here are the test cases: [{\"tc_id\": \"TC-1\", \"title\": ",
        '```json\n[{"tc_id": "TC-1", "title": "Lock after 5 failures", "confidence": 0.9,'
        ' "compliance": ["A.9.4.2"]}, {"tc_id": "TC-1", "title": "Duplicate id"}]\n```',
    ]
    generated = client.post(
        "/testcases",
        json={"selectedRequirements": ["REQ-LOCK"], "selectedStandards": ["iso27001.txt"], "promptOverride": "Cover audit logging"},
    ).json()

    result = generated["results"][0]
    assert result["success"] is True
    assert result["count"] == 2
    gen_id = result["genId"]

    first_prompt = _prompt_text(llm.calls[0])
    assert "lock an account after 5 failed logins" in first_prompt
    assert "A.9.4.2 Secure log-on" in first_prompt
    assert "Cover audit logging" in first_prompt
    assert "RETURN ONLY VALID JSON" in _prompt_text(llm.calls[1])
    assert len(list(audit_dir.iterdir())) == 2

    testcases = client.get(f"/generated/requirement/{gen_id}").json()
    assert testcases[0]["tc_id"] == "TC-1"
    assert testcases[1]["tc_id"] != "TC-1"

    # 単一テストケースの再生成
    llm.responses = ['{"title": "Lock account after five failed logins"}']
    regenerated = client.post(f"/testcases/{gen_id}/regenerate/TC-1", json={}).json()["testcase"]
    assert regenerated["title"] == "Lock account after five failed logins"
    assert regenerated["compliance"] == ["A.9.4.2"]
    assert regenerated["confidence"] == 0.9

    # 手動パッチ
    patched = client.patch(f"/testcases/{gen_id}/TC-1", json={"confidence": 2, "tc_id": "OTHER"}).json()["testcase"]
    assert patched["confidence"] == 1.0
    assert patched["tc_id"] == "TC-1"

    # 要求仕様単位の再生成は同じセットを上書きする
    llm.responses = ['[{"tc_id": "TC-A", "title": "Fresh"}]']
    regenerated_set = client.post(
        "/requirements/REQ-LOCK/regenerate", json={"selectedStandards": ["iso27001.txt"]}
    ).json()
    assert regenerated_set["genId"] == gen_id
    assert regenerated_set["count"] == 1

    listing = client.get("/generated").json()
    assert [item["id"] for item in listing] == [gen_id]
    assert listing[0]["count"] == 1
