"""
Jira REST API v3 クライアント

生成セットを親課題、テストケースをサブタスクとして作成するために使用します。
"""

from typing import Any, Dict, List, Optional

import httpx

from complitest.config import config
from complitest.exceptions import ConfigurationException, IntegrationException
from complitest.logging_config import logger
from complitest.utils.timeout import get_timeout_config


class JiraClientError(IntegrationException):
    """Jira APIの呼び出しに失敗した"""


def text_to_adf(text: str) -> Dict[str, Any]:
    """
    プレーンテキストをADF（Atlassian Document Format）に変換する

    "- " または "* " で始まる連続行は箇条書きにまとめ、それ以外の行は段落にする。
    """
    content: List[Dict[str, Any]] = []
    bullets: List[Dict[str, Any]] = []

    def flush_bullets() -> None:
        if bullets:
            content.append({"type": "bulletList", "content": list(bullets)})
            bullets.clear()

    for line in (text or "").splitlines():
        line = line.strip()
        if not line:
            flush_bullets()
            continue
        if line.startswith(("- ", "* ")):
            bullets.append({
                "type": "listItem",
                "content": [{"type": "paragraph", "content": [{"type": "text", "text": line[2:].strip() or line}]}],
            })
        else:
            flush_bullets()
            content.append({"type": "paragraph", "content": [{"type": "text", "text": line}]})
    flush_bullets()

    return {"type": "doc", "version": 1, "content": content}


class JiraClient:
    """Jira課題を作成するクライアント"""

    def __init__(
        self,
        base_url: str,
        username: str,
        api_token: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Jiraインスタンスの URL（例: https://yourcompany.atlassian.net）
            username: 認証に使うユーザーのメールアドレス
            api_token: APIトークン
        """
        missing = [name for name, value in (
            ("JIRA_BASE_URL", base_url), ("JIRA_USERNAME", username), ("JIRA_API_TOKEN", api_token)
        ) if not value]
        if missing:
            raise ConfigurationException("Jiraの認証情報が設定されていません", details={"missing": missing})

        self.jira_url = base_url.rstrip("/")
        self.auth = httpx.BasicAuth(username, api_token)
        self._transport = transport

    @classmethod
    def from_config(cls) -> "JiraClient":
        return cls(
            config.get(config.jira.BASE_URL),
            config.get(config.jira.USERNAME),
            config.get(config.jira.API_TOKEN),
        )

    async def _make_request(self, endpoint: str, method: str = "GET", data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.jira_url}{endpoint}"
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        try:
            async with httpx.AsyncClient(
                auth=self.auth, timeout=get_timeout_config("HTTP_REQUEST"), transport=self._transport
            ) as client:
                response = await client.request(method, url, headers=headers, json=data)
        except httpx.HTTPError as e:
            raise JiraClientError(f"Jira API request failed: {e}", details={"endpoint": endpoint})

        if response.is_error:
            raise JiraClientError(
                f"Jira API request failed: {self._describe_error(response)}",
                details={"endpoint": endpoint, "status": response.status_code, "upstream": self._error_body(response)}
            )
        if not response.content:
            return {}
        return response.json()

    @staticmethod
    def _error_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    def _describe_error(self, response: httpx.Response) -> str:
        body = self._error_body(response)
        if isinstance(body, dict):
            if body.get("errorMessages"):
                return "; ".join(body["errorMessages"])
            if body.get("errors"):
                return "; ".join(f"{k}: {v}" for k, v in body["errors"].items())
        return f"HTTP {response.status_code}"

    async def create_issue(
        self,
        project_key: str,
        issue_type: str,
        summary: str,
        description_adf: Dict[str, Any],
        parent_key: Optional[str] = None,
        labels: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        課題を作成する

        Args:
            project_key: プロジェクトキー
            issue_type: 課題タイプ名（Task, Subtask など）
            summary: 件名
            description_adf: ADF形式の説明
            parent_key: サブタスクの場合の親課題キー
            labels: ラベル

        Returns:
            Jiraの応答（key, id, self を含む）
        """
        fields: Dict[str, Any] = {
            "project": {"key": project_key},
            "issuetype": {"name": issue_type},
            "summary": summary[:255],
            "description": description_adf,
        }
        if parent_key:
            fields["parent"] = {"key": parent_key}
        if labels:
            fields["labels"] = labels

        result = await self._make_request("/rest/api/3/issue", method="POST", data={"fields": fields})
        logger.info(f"Created Jira {issue_type} {result.get('key')}")
        return result
