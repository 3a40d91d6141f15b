import pytest
import os

os.environ["TESTING"] = "1"

TEST_BASE_DIR = "/tmp/test_complitest"
os.environ["UPLOAD_DIR"] = f"{TEST_BASE_DIR}/uploads"
os.environ["AUDIT_DIR"] = f"{TEST_BASE_DIR}/ai_responses"
os.makedirs(TEST_BASE_DIR, exist_ok=True)

import complitest.config
complitest.config.settings.UPLOAD_DIR = f"{TEST_BASE_DIR}/uploads"
complitest.config.settings.AUDIT_DIR = f"{TEST_BASE_DIR}/ai_responses"

from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session, create_engine
from sqlalchemy.pool import StaticPool

from complitest.models import User, get_session
from complitest.services.generation.audit import AuditTrail
from complitest.services.generation.recovery import ResponseRecoveryEngine
from complitest.services.testgen import TestcaseGenerationService
from complitest.services.teststore import TestcaseStore
from tests.fakes import ScriptedLLMClient, StaticTextExtractor


@pytest.fixture(name="engine")
def engine_fixture():
    """テスト用のインメモリSQLiteエンジン（TestClientのスレッドからも同じDBを見る）"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    """テスト用のデータベースセッション"""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="store")
def store_fixture(session):
    return TestcaseStore(session)


@pytest.fixture(name="user")
def user_fixture(store):
    """テスト用のユーザー"""
    return store.upsert_user(google_id="google-123", email="qa@example.com", name="QA Engineer")


@pytest.fixture(name="audit_dir")
def audit_dir_fixture(tmp_path, monkeypatch):
    """監査ログの保存先を一時ディレクトリに差し替える"""
    directory = tmp_path / "ai_responses"
    monkeypatch.setattr(complitest.config.settings, "AUDIT_DIR", str(directory))
    return directory


@pytest.fixture(name="upload_dir")
def upload_dir_fixture(tmp_path, monkeypatch):
    directory = tmp_path / "uploads"
    monkeypatch.setattr(complitest.config.settings, "UPLOAD_DIR", str(directory))
    return directory


@pytest.fixture(name="llm")
def llm_fixture():
    return ScriptedLLMClient()


@pytest.fixture(name="extractor")
def extractor_fixture():
    return StaticTextExtractor({
        "file:///docs/req-1.pdf": "The system shall lock an account after 5 failed logins.",
        "file:///docs/iso27001.pdf": "A.9.4.2 Secure log-on procedures.",
        "file:///docs/gdpr.pdf": "Art. 32 Security of processing.",
    })


@pytest.fixture(name="service")
def service_fixture(store, user, llm, extractor, audit_dir):
    """フェイクのLLMと抽出器を使う生成サービス"""
    engine = ResponseRecoveryEngine(llm, AuditTrail(audit_dir))
    return TestcaseGenerationService(store, user.id, llm_client=llm, extractor=extractor, recovery_engine=engine)


@pytest.fixture(name="seeded")
def seeded_fixture(store, user):
    """要求仕様1件と標準2件を登録する"""
    requirement = store.save_requirement(
        user.id, "REQ-1", "Account lockout", "req-1.pdf", "file:///docs/req-1.pdf", {"file": {"uri": "file:///docs/req-1.pdf"}}
    )
    iso = store.save_standard(user.id, "iso27001.pdf", "file:///docs/iso27001.pdf", {})
    gdpr = store.save_standard(user.id, "gdpr.pdf", "file:///docs/gdpr.pdf", {})
    return {"requirement": requirement, "standards": [iso, gdpr]}


@pytest.fixture(name="client")
def client_fixture(session, user, service, upload_dir):
    """認証とLLMを差し替えたTestClient"""
    from complitest.main import app
    from complitest.api.deps import get_current_user, get_generation_service

    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_current_user] = lambda: user
    app.dependency_overrides[get_generation_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture(name="file_config")
def file_config_fixture(tmp_path, monkeypatch):
    """一時的な config.yaml を読み込んだ Config を返す（環境変数より低い優先度の層を検証する）"""
    import yaml
    from complitest.config import Config

    for env_var in ("LLM_PROVIDER", "ANTHROPIC_API_KEY", "ANTHROPIC_MODEL_NAME", "LLM_TEMPERATURE",
                    "JIRA_PROJECT_KEY", "JIRA_PARENT_ISSUE_TYPE", "JIRA_SUBTASK_ISSUE_TYPE"):
        monkeypatch.delenv(env_var, raising=False)

    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "llm": {"provider": "anthropic", "anthropic_api_key": "sk-ant-file", "anthropic_model_name": "claude-file"},
        "jira": {"project_key": "QA", "parent_issue_type": "Story"},
    }), encoding="utf-8")
    monkeypatch.setenv("CONFIG_FILE", str(path))

    cfg = Config()
    # 設定値はクラス属性としてキャッシュされるため前後でクリアする
    cfg.clear_cache()
    yield cfg
    cfg.clear_cache()
