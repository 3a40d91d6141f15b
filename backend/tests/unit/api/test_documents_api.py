from fastapi.testclient import TestClient

from complitest.api.documents import NO_URI_MESSAGE
from complitest.main import app
from complitest.models import get_session
from complitest.services.media_store import MediaStore, get_media_store


class UriLessMediaStore(MediaStore):
    async def upload(self, content, filename, mime_type, owner=None):
        return {"id": "opaque-123"}


def test_upload_requirement_and_list(client):
    response = client.post(
        "/requirements/upload",
        files={"file": ("lockout-policy.txt", b"Lock the account after 5 failures.", "text/plain")},
        data={"reqId": "REQ-7"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["req_id"] == "REQ-7"
    assert body["title"] == "lockout-policy"
    assert body["fileUri"].startswith("file://")

    listing = client.get("/requirements").json()
    assert listing["REQ-7"] == {"id": "REQ-7", "title": "lockout-policy", "fileUri": body["fileUri"]}


def test_upload_requirement_generates_id(client):
    response = client.post(
        "/requirements/upload",
        files={"file": ("spec.txt", b"text", "text/plain")},
        data={"title": "Password policy"},
    )

    body = response.json()
    assert body["req_id"].startswith("REQ-")
    assert len(body["req_id"]) == len("REQ-") + 8
    assert body["title"] == "Password policy"


def test_upload_without_file_is_rejected(client):
    response = client.post("/requirements/upload", data={"reqId": "REQ-1"})

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "No file uploaded"}


def test_upload_without_uri_keeps_record(client):
    """URIが得られなくてもレコードは保存され、メッセージが返る"""
    app.dependency_overrides[get_media_store] = lambda: UriLessMediaStore()

    response = client.post("/upload", files={"file": ("nist.pdf", b"%PDF-1.4", "application/pdf")})

    assert response.status_code == 200
    assert response.json() == {"filename": "nist.pdf", "fileUri": None, "message": NO_URI_MESSAGE}
    assert client.get("/standards").json()["nist.pdf"] == {"filename": "nist.pdf", "fileUri": None}


def test_upload_standard_and_list(client):
    response = client.post("/upload", files={"file": ("iso27001.txt", b"A.9.4.2", "text/plain")})

    assert response.status_code == 200
    file_uri = response.json()["fileUri"]
    assert file_uri.startswith("file://")
    assert client.get("/standards").json() == {"iso27001.txt": {"filename": "iso27001.txt", "fileUri": file_uri}}


def test_summarize_standards(client, seeded, llm):
    llm.responses = ["Secure log-on is mandatory."]

    response = client.post("/summarize", json={"selectedStandards": ["iso27001.pdf"], "prompt": "Summarize"})

    assert response.status_code == 200
    assert response.json() == {"summary": "Secure log-on is mandatory."}


def test_summarize_unknown_standards(client, seeded):
    response = client.post("/summarize", json={"selectedStandards": ["unknown.pdf"]})

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_missing_authorization_header_is_401(session):
    app.dependency_overrides[get_session] = lambda: session
    try:
        response = TestClient(app).get("/auth/me")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 401
    assert response.json()["success"] is False
    assert response.json()["error"]


def test_me_returns_profile(client, user):
    response = client.get("/auth/me")
    assert response.json() == {"id": user.id, "email": "qa@example.com", "name": "QA Engineer", "picture": None}


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
