from typing import Any, Callable, Dict, List, Optional

from complitest.config import config
from complitest.exceptions import NotFoundException, ValidationException
from complitest.logging_config import logger
from complitest.models import GeneratedSet
from complitest.services.jira.client import JiraClient, text_to_adf
from complitest.services.teststore import TestcaseStore


def _bullets(items: List[str]) -> str:
    return "\n".join(f"- {item}" for item in items) if items else "(none)"


def render_parent_description(gen_set: GeneratedSet) -> str:
    titles = [f"{tc.get('tc_id')}: {tc.get('title')}" for tc in gen_set.testcases]
    return "\n".join([
        f"Requirement: {gen_set.requirement_id} {gen_set.requirement_title or ''}".rstrip(),
        f"Standards: {', '.join(gen_set.selected_standards) or '(none)'}",
        "",
        "Test cases:",
        _bullets(titles),
    ])


def render_subtask_description(testcase: Dict[str, Any]) -> str:
    return "\n".join([
        "Preconditions:",
        _bullets(testcase.get("preconditions") or []),
        "",
        "Steps:",
        _bullets(testcase.get("steps") or []),
        "",
        f"Expected: {testcase.get('expected') or ''}",
        "",
        "Compliance:",
        _bullets(testcase.get("compliance") or []),
        "",
        f"Automatable: {testcase.get('automatable')} ({testcase.get('suggested_tool')})",
        f"Confidence: {testcase.get('confidence')}",
    ])


class JiraBridge:
    """
    生成セットとテストケースをJiraに反映する

    親課題のキーは作成直後に保存するため、サブタスク作成が失敗しても再実行で親が重複しない。
    既にキーを持つテストケースは再作成せずそのキーを返す。
    """

    def __init__(self, store: TestcaseStore, client_factory: Callable[[], JiraClient] = JiraClient.from_config):
        self.store = store
        self.client_factory = client_factory

    async def mirror_testcase(self, gen_set: GeneratedSet, tc_id: str, project_key: Optional[str] = None) -> Dict[str, str]:
        """
        テストケースをサブタスクとして作成する（親課題が無ければ先に作る）

        Returns:
            {"parent": 親課題キー, "subtask": サブタスクキー}
        """
        testcase = next((tc for tc in gen_set.testcases if tc.get("tc_id") == tc_id), None)
        if testcase is None:
            raise NotFoundException(f"Testcase not found: {tc_id}", details={"genId": gen_set.id, "tcId": tc_id})

        project_key = project_key or config.get(config.jira.PROJECT_KEY)
        if not project_key:
            raise ValidationException("projectKey is required (set JIRA_PROJECT_KEY or pass projectKey)")

        client = self.client_factory()

        if not gen_set.jira_id:
            parent = await client.create_issue(
                project_key,
                config.get(config.jira.PARENT_ISSUE_TYPE),
                f"[{gen_set.requirement_id}] {gen_set.requirement_title or 'Generated test cases'}",
                text_to_adf(render_parent_description(gen_set)),
                labels=["complitest"],
            )
            gen_set = self.store.set_jira_id(gen_set, parent["key"])
            logger.info(f"Linked generated set {gen_set.id} to Jira parent {gen_set.jira_id}")

        if testcase.get("jira_id"):
            return {"parent": gen_set.jira_id, "subtask": testcase["jira_id"]}

        subtask = await client.create_issue(
            project_key,
            config.get(config.jira.SUBTASK_ISSUE_TYPE),
            f"{tc_id}: {testcase.get('title')}",
            text_to_adf(render_subtask_description(testcase)),
            parent_key=gen_set.jira_id,
            labels=["complitest", "testcase"],
        )
        self.store.update_testcase(gen_set, {**testcase, "jira_id": subtask["key"]})
        return {"parent": gen_set.jira_id, "subtask": subtask["key"]}
