from sqlmodel import Field, SQLModel, create_engine, Session
from datetime import datetime, UTC
import os
from complitest.config import settings

# データベース接続設定
# テスト環境の場合はSQLiteを使用
if os.environ.get("TESTING") == "1":
    TEST_DB_PATH = "/tmp/test_complitest/test.db"
    DATABASE_URL = f"sqlite:///{TEST_DB_PATH}"
else:
    DATABASE_URL = settings.DATABASE_URL

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)

def get_session():
    with Session(engine) as session:
        yield session

def utc_now() -> datetime:
    return datetime.now(UTC)

# ベースモデル
class TimestampModel(SQLModel):
    """タイムスタンプを持つ全モデルの基底クラス"""
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
