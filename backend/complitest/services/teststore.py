import uuid
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from complitest.exceptions import DatabaseException
from complitest.logging_config import logger
from complitest.models import GeneratedSet, Requirement, Standard, User
from complitest.models.base import utc_now


class TestcaseStore:
    """
    要求仕様・標準・生成セットの永続化を扱うストア

    すべての参照はユーザー単位でスコープされる。書き込みは1行を1トランザクションで確定させる。
    JSONカラムはインプレースで変更すると検知されないため、常に新しいリストを代入する。
    """
    __test__ = False

    def __init__(self, session: Session):
        self.session = session

    def _commit(self, instance: Any) -> Any:
        try:
            self.session.add(instance)
            self.session.commit()
            self.session.refresh(instance)
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Database error while saving {type(instance).__name__}: {e}", exc_info=True)
            raise DatabaseException(f"データベースへの保存に失敗しました: {e}")
        return instance

    # ユーザー

    def upsert_user(self, google_id: str, email: str, name: Optional[str] = None, picture: Optional[str] = None) -> User:
        user = self.session.exec(select(User).where(User.google_id == google_id)).first()
        if user is None:
            user = User(google_id=google_id, email=email)
            logger.info(f"Registering new user {email}")
        user.email = email
        user.name = name
        user.picture = picture
        user.last_login_at = utc_now()
        user.updated_at = utc_now()
        return self._commit(user)

    # 要求仕様

    def save_requirement(
        self,
        user_id: int,
        req_id: str,
        title: str,
        original_name: Optional[str],
        file_uri: Optional[str],
        raw: Dict[str, Any],
    ) -> Requirement:
        """(ユーザー, req_id) をキーに要求仕様を登録または更新する"""
        requirement = self.get_requirement(user_id, req_id)
        if requirement is None:
            requirement = Requirement(user_id=user_id, req_id=req_id, title=title)
        requirement.title = title
        requirement.original_name = original_name
        requirement.file_uri = file_uri
        requirement.raw = dict(raw or {})
        requirement.uploaded_at = utc_now()
        requirement.updated_at = utc_now()
        return self._commit(requirement)

    def get_requirement(self, user_id: int, req_id: str) -> Optional[Requirement]:
        statement = select(Requirement).where(Requirement.user_id == user_id, Requirement.req_id == req_id)
        return self.session.exec(statement).first()

    def get_requirement_by_ref(self, user_id: int, ref: Optional[int]) -> Optional[Requirement]:
        if ref is None:
            return None
        requirement = self.session.get(Requirement, ref)
        if requirement is None or requirement.user_id != user_id:
            return None
        return requirement

    def list_requirements(self, user_id: int) -> List[Requirement]:
        statement = select(Requirement).where(Requirement.user_id == user_id).order_by(Requirement.uploaded_at)
        return list(self.session.exec(statement).all())

    # 標準

    def save_standard(self, user_id: int, filename: str, file_uri: Optional[str], raw: Dict[str, Any]) -> Standard:
        """(ユーザー, ファイル名) をキーに標準を登録または更新する"""
        standard = self.session.exec(
            select(Standard).where(Standard.user_id == user_id, Standard.filename == filename)
        ).first()
        if standard is None:
            standard = Standard(user_id=user_id, filename=filename)
        standard.file_uri = file_uri
        standard.raw = dict(raw or {})
        standard.uploaded_at = utc_now()
        standard.updated_at = utc_now()
        return self._commit(standard)

    def list_standards(self, user_id: int) -> List[Standard]:
        statement = select(Standard).where(Standard.user_id == user_id).order_by(Standard.uploaded_at)
        return list(self.session.exec(statement).all())

    def get_standards_by_names(self, user_id: int, names: Sequence[str]) -> Dict[str, Standard]:
        if not names:
            return {}
        statement = select(Standard).where(Standard.user_id == user_id, Standard.filename.in_(list(names)))
        return {standard.filename: standard for standard in self.session.exec(statement).all()}

    # 生成セット

    def create_generated_set(
        self,
        user_id: int,
        requirement: Requirement,
        selected_standards: Sequence[str],
        testcases: Sequence[Dict[str, Any]],
        prompt_override: Optional[str] = None,
    ) -> GeneratedSet:
        gen_set = GeneratedSet(
            id=str(uuid.uuid4()),
            user_id=user_id,
            requirement_ref=requirement.id,
            requirement_id=requirement.req_id,
            requirement_title=requirement.title,
            selected_standards=list(selected_standards),
            testcases=list(testcases),
            prompt_override=prompt_override,
        )
        gen_set = self._commit(gen_set)
        logger.info(f"Created generated set {gen_set.id} for {requirement.req_id} with {len(gen_set.testcases)} testcases")
        return gen_set

    def get_generated_set(self, user_id: int, gen_id: str) -> Optional[GeneratedSet]:
        gen_set = self.session.get(GeneratedSet, gen_id)
        if gen_set is None or gen_set.user_id != user_id:
            return None
        return gen_set

    def latest_set_for_requirement(self, user_id: int, requirement_id: str) -> Optional[GeneratedSet]:
        statement = (
            select(GeneratedSet)
            .where(GeneratedSet.user_id == user_id, GeneratedSet.requirement_id == requirement_id)
            .order_by(GeneratedSet.created_at.desc())
        )
        return self.session.exec(statement).first()

    def list_generated_sets(self, user_id: int) -> List[GeneratedSet]:
        statement = (
            select(GeneratedSet)
            .where(GeneratedSet.user_id == user_id)
            .order_by(GeneratedSet.created_at.desc())
        )
        return list(self.session.exec(statement).all())

    def replace_testcases(
        self,
        gen_set: GeneratedSet,
        testcases: Sequence[Dict[str, Any]],
        selected_standards: Sequence[str],
        prompt_override: Optional[str],
    ) -> GeneratedSet:
        """要求仕様単位の再生成。IDと課題管理の紐付けはそのまま、テストケース配列を丸ごと置き換える"""
        gen_set.testcases = list(testcases)
        gen_set.selected_standards = list(selected_standards)
        gen_set.prompt_override = prompt_override
        gen_set.updated_at = utc_now()
        return self._commit(gen_set)

    def update_testcase(self, gen_set: GeneratedSet, testcase: Dict[str, Any]) -> GeneratedSet:
        """tc_id が一致する要素だけを置き換える"""
        replaced = False
        updated: List[Dict[str, Any]] = []
        for existing in gen_set.testcases:
            if not replaced and existing.get("tc_id") == testcase["tc_id"]:
                updated.append(dict(testcase))
                replaced = True
            else:
                updated.append(existing)
        if not replaced:
            raise DatabaseException(
                f"Testcase {testcase['tc_id']} is not part of generated set {gen_set.id}",
                details={"genId": gen_set.id, "tcId": testcase["tc_id"]}
            )
        gen_set.testcases = updated
        gen_set.updated_at = utc_now()
        return self._commit(gen_set)

    def set_jira_id(self, gen_set: GeneratedSet, jira_id: str) -> GeneratedSet:
        gen_set.jira_id = jira_id
        gen_set.updated_at = utc_now()
        return self._commit(gen_set)
