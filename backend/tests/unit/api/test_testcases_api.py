import pytest

from complitest.api.deps import get_jira_bridge
from complitest.main import app
from complitest.services.jira.bridge import JiraBridge
from tests.fakes import RecordingJiraClient

GENERATED = '[{"tc_id": "TC-1", "title": "Lockout", "steps": ["Fail 5 logins"]}, {"tc_id": "TC-2", "title": "Unlock"}]'


@pytest.fixture
def generated(client, seeded, llm):
    """REQ-1 に対して生成済みのセットを1つ用意する"""
    llm.responses = [GENERATED]
    response = client.post(
        "/testcases", json={"selectedRequirements": ["REQ-1"], "selectedStandards": ["iso27001.pdf"]}
    )
    return response.json()["results"][0]["genId"]


def test_generate_returns_per_requirement_results(client, seeded, llm):
    llm.responses = [GENERATED]

    response = client.post(
        "/testcases",
        json={"selectedRequirements": ["REQ-1", "REQ-404"], "selectedStandards": ["iso27001.pdf", "gdpr.pdf"]},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["results"][0]["req_id"] == "REQ-1"
    assert body["results"][0]["success"] is True
    assert body["results"][0]["count"] == 2
    assert body["results"][0]["genId"]
    assert body["results"][1]["success"] is False
    assert body["results"][1]["error"] == "Requirement not found"


@pytest.mark.parametrize("payload", [
    {"selectedRequirements": [], "selectedStandards": ["iso27001.pdf"]},
    {"selectedRequirements": ["REQ-1"]},
    {"selectedRequirements": "REQ-1", "selectedStandards": ["iso27001.pdf"]},
])
def test_generate_rejects_invalid_selection(client, seeded, payload):
    response = client.post("/testcases", json=payload)

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert "error" in response.json()


def test_generate_unknown_standard_is_404(client, seeded, llm):
    response = client.post(
        "/testcases", json={"selectedRequirements": ["REQ-1"], "selectedStandards": ["unknown.pdf"]}
    )

    assert response.status_code == 404
    assert response.json()["details"] == {"missing": ["unknown.pdf"]}
    assert llm.calls == []


def test_list_and_fetch_generated(client, generated):
    listing = client.get("/generated").json()

    assert len(listing) == 1
    assert listing[0]["id"] == generated
    assert listing[0]["requirementId"] == "REQ-1"
    assert listing[0]["requirementTitle"] == "Account lockout"
    assert listing[0]["jiraId"] == ""
    assert listing[0]["count"] == 2
    assert "createdAt" in listing[0]

    by_set = client.get(f"/generated/requirement/{generated}").json()
    by_requirement = client.get("/generated/requirement/REQ-1").json()
    assert by_set == by_requirement
    assert [tc["tc_id"] for tc in by_set] == ["TC-1", "TC-2"]
    assert by_set[0]["suggested_tool"] == "manual"


def test_fetch_unknown_generated_set_is_404(client):
    response = client.get("/generated/requirement/nothing-here")

    assert response.status_code == 404
    assert response.json()["success"] is False


def test_regenerate_single_testcase(client, generated, llm):
    llm.responses = ['Sure! {"title": "Lockout after five failures", "tc_id": "TC-XYZ"}']

    response = client.post(f"/testcases/{generated}/regenerate/TC-1", json={"promptOverride": "Be precise"})

    assert response.status_code == 200
    testcase = response.json()["testcase"]
    assert testcase["tc_id"] == "TC-1"
    assert testcase["title"] == "Lockout after five failures"
    assert testcase["steps"] == ["Fail 5 logins"]


def test_regenerate_single_without_body(client, generated, llm):
    llm.responses = ['{"title": "Unlock later"}']

    response = client.post(f"/testcases/{generated}/regenerate/TC-2")

    assert response.status_code == 200
    assert response.json()["testcase"]["title"] == "Unlock later"


def test_regenerate_single_unrecoverable_is_502(client, generated, llm):
    """2回とも復元できなければ502になり、監査ファイルの一覧が返る"""
    llm.responses = ["prose only", "more prose"]

    response = client.post(f"/testcases/{generated}/regenerate/TC-1", json={})

    assert response.status_code == 502
    body = response.json()
    assert body["success"] is False
    assert len(body["details"]["auditFiles"]) == 2
    assert client.get(f"/generated/requirement/{generated}").json()[0]["title"] == "Lockout"


def test_regenerate_requirement_keeps_gen_id(client, generated, llm):
    llm.responses = ['[{"tc_id": "TC-10", "title": "Fresh"}]']

    response = client.post("/requirements/REQ-1/regenerate", json={"selectedStandards": ["gdpr.pdf"]})

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "genId": generated,
        "count": 1,
        "requirementId": "REQ-1",
        "requirementTitle": "Account lockout",
    }


def test_regenerate_unknown_requirement_is_404(client, seeded):
    response = client.post("/requirements/REQ-404/regenerate", json={"selectedStandards": ["gdpr.pdf"]})
    assert response.status_code == 404


def test_patch_testcase(client, generated):
    response = client.patch(
        f"/testcases/{generated}/TC-1", json={"title": "Edited", "confidence": "abc", "automatable": True}
    )

    assert response.status_code == 200
    testcase = response.json()["testcase"]
    assert testcase["title"] == "Edited"
    assert testcase["confidence"] == 0.0
    assert testcase["automatable"] is True


def test_patch_rejects_non_object_body(client, generated):
    response = client.patch(f"/testcases/{generated}/TC-1", json=["title"])
    assert response.status_code == 400


def test_patch_unknown_testcase_is_404(client, generated):
    response = client.patch(f"/testcases/{generated}/TC-404", json={"title": "x"})
    assert response.status_code == 404


def test_mirror_to_jira(client, store, generated):
    jira = RecordingJiraClient()
    app.dependency_overrides[get_jira_bridge] = lambda: JiraBridge(store, client_factory=lambda: jira)

    response = client.post(f"/testcases/{generated}/TC-1/jira", json={"projectKey": "QA"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "jira": {"parent": "QA-1", "subtask": "QA-2"}}
    assert client.get("/generated").json()[0]["jiraId"] == "QA-1"


def test_mirror_unknown_set_is_404(client):
    response = client.post("/testcases/nope/TC-1/jira", json={"projectKey": "QA"})
    assert response.status_code == 404
