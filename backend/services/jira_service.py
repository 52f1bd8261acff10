"""
Jira Cloud Integration Service
Handles OAuth 2.0 (3LO) flow and the REST API v3 operations the sync engine needs.
"""
import httpx
import os
import secrets
from typing import Optional, List, Dict, Any, AsyncIterator
from urllib.parse import urlencode
import logging

from services.retry_service import retry_async
from services.sync_models import IssueType, RemoteIssue, IssueSearchPage

logger = logging.getLogger(__name__)

ATLASSIAN_API_URL = "https://api.atlassian.com"

# Fields the sync engine reads from every issue
ISSUE_FIELDS = ["summary", "description", "issuetype", "parent"]


class JiraAPIError(Exception):
    """Base exception for Jira API errors"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientJiraError(JiraAPIError):
    """Timeouts, connection failures and 5xx responses - safe to retry"""
    pass


class RateLimitError(TransientJiraError):
    """Raised when API rate limit is exceeded"""
    def __init__(self, message: str, retry_after: int = 60):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class AuthenticationError(JiraAPIError):
    """Raised when OAuth token is invalid, expired or missing"""
    pass


class JiraNotFoundError(JiraAPIError):
    """Raised when an issue or project does not exist (or is not visible)"""
    pass


# ============================================
# Atlassian Document Format helpers
# ============================================

def text_to_adf(text: Optional[str]) -> Dict[str, Any]:
    """Wrap plain text in a single-paragraph ADF document"""
    return {
        "type": "doc",
        "version": 1,
        "content": [
            {
                "type": "paragraph",
                "content": [
                    {
                        "type": "text",
                        "text": text or ""
                    }
                ]
            }
        ]
    }


def adf_to_text(document: Any) -> str:
    """
    Extract plain text from an ADF document.
    Text nodes of each top-level paragraph are concatenated, paragraphs are
    separated by a blank line, and the result is trimmed.
    """
    if isinstance(document, str):
        return document.strip()
    if not isinstance(document, dict) or document.get("type") != "doc":
        return ""

    paragraphs = []
    for node in document.get("content") or []:
        if node.get("type") == "paragraph" and node.get("content"):
            paragraphs.append("".join(child.get("text") or "" for child in node["content"]))

    return "\n\n".join(paragraphs).strip()


# ============================================
# OAuth
# ============================================

class JiraOAuthService:
    """Handles Jira Cloud OAuth 2.0 (3LO) flow"""

    def __init__(self):
        self.client_id = os.environ.get("JIRA_OAUTH_CLIENT_ID", "")
        self.client_secret = os.environ.get("JIRA_OAUTH_CLIENT_SECRET", "")
        self.redirect_uri = os.environ.get("JIRA_OAUTH_REDIRECT_URI", "")
        self.authorize_url = "https://auth.atlassian.com/authorize"
        self.token_url = "https://auth.atlassian.com/oauth/token"
        self.accessible_resources_url = f"{ATLASSIAN_API_URL}/oauth/token/accessible-resources"

    def is_configured(self) -> bool:
        """Check if OAuth credentials are configured"""
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    def generate_authorization_url(self, state: Optional[str] = None) -> str:
        """Generate the Jira OAuth authorization URL"""
        if not state:
            state = secrets.token_urlsafe(32)

        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": "read:jira-work write:jira-work read:jira-user offline_access",
            "state": state,
            "audience": "api.atlassian.com",
            "prompt": "consent"
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    async def _token_request(self, body: Dict[str, Any], action: str) -> Dict[str, Any]:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                self.token_url,
                json={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    **body
                },
                headers={"Content-Type": "application/json"},
                timeout=30.0
            )

            if response.status_code != 200:
                logger.error(f"Jira {action} failed: {response.text}")
                raise AuthenticationError(f"Failed to {action}: {response.text}", status_code=response.status_code)

            return response.json()

    async def exchange_code_for_tokens(self, code: str) -> Dict[str, Any]:
        """Exchange authorization code for access and refresh tokens"""
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri
            },
            "exchange code for tokens"
        )

    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        """Refresh the access token using the refresh token"""
        return await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token
            },
            "refresh token"
        )

    async def get_accessible_resources(self, access_token: str) -> List[Dict[str, Any]]:
        """Get list of accessible Jira sites (cloud IDs)"""
        async with httpx.AsyncClient() as client:
            response = await client.get(
                self.accessible_resources_url,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json"
                },
                timeout=30.0
            )

            if response.status_code == 401:
                raise AuthenticationError("Jira authentication failed. Please reconnect.", status_code=401)

            if response.status_code != 200:
                logger.error(f"Failed to get accessible resources: {response.text}")
                raise JiraAPIError(f"Failed to get accessible resources: {response.text}", status_code=response.status_code)

            return [
                {"id": r.get("id"), "name": r.get("name"), "url": r.get("url"), "scopes": r.get("scopes", [])}
                for r in response.json()
            ]


# ============================================
# REST API v3
# ============================================

class JiraRESTService:
    """Handles Jira Cloud REST API v3 operations for one site (cloud id)"""

    def __init__(self, access_token: str, cloud_id: str, max_retries: Optional[int] = None, retry_delay: float = 1.0):
        self.access_token = access_token
        self.cloud_id = cloud_id
        self.base_url = f"{ATLASSIAN_API_URL}/ex/jira/{cloud_id}/rest/api/3"
        self.headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
            "Content-Type": "application/json"
        }
        if max_retries is None:
            max_retries = int(os.environ.get("JIRA_MAX_RETRIES", "3"))
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    async def _send(
        self,
        method: str,
        endpoint: str,
        **kwargs
    ) -> Any:
        """Make one authenticated request to Jira REST API"""
        async with httpx.AsyncClient() as client:
            try:
                response = await client.request(
                    method,
                    f"{self.base_url}{endpoint}",
                    headers=self.headers,
                    timeout=30.0,
                    **kwargs
                )
            except httpx.TimeoutException:
                logger.error("Timeout connecting to Jira API")
                raise TransientJiraError("Jira API request timed out")
            except httpx.TransportError as e:
                logger.error(f"Connection error talking to Jira API: {e}")
                raise TransientJiraError(f"Jira API connection error: {e}")

        if response.status_code == 429:
            retry_after = int(response.headers.get("Retry-After", "60"))
            logger.warning(f"Jira rate limit exceeded. Retry after {retry_after}s")
            raise RateLimitError(
                "Jira API rate limit exceeded. Please try again later.",
                retry_after=retry_after
            )

        if response.status_code == 401:
            raise AuthenticationError("Jira authentication failed. Please reconnect.", status_code=401)

        if response.status_code == 404:
            raise JiraNotFoundError(f"Jira resource not found: {endpoint}", status_code=404)

        if response.status_code >= 500:
            logger.error(f"Jira server error: {response.status_code} - {response.text}")
            raise TransientJiraError(f"Jira API error {response.status_code}: {response.text}", status_code=response.status_code)

        if response.status_code >= 400:
            logger.error(f"Jira API error: {response.status_code} - {response.text}")
            raise JiraAPIError(f"Jira API error {response.status_code}: {response.text}", status_code=response.status_code)

        if response.content:
            return response.json()
        return {}

    async def _request(self, method: str, endpoint: str, **kwargs) -> Any:
        """Authenticated request with backoff on rate limits and transient failures"""
        return await retry_async(
            self._send,
            method,
            endpoint,
            max_retries=self.max_retries,
            initial_delay=self.retry_delay,
            retryable_exceptions=(TransientJiraError,),
            retry_on_message=False,
            **kwargs
        )

    async def get_projects(self) -> List[Dict[str, Any]]:
        """Fetch all projects accessible to the user"""
        projects: List[Dict[str, Any]] = []
        start_at = 0
        while True:
            result = await self._request("GET", "/project/search", params={"startAt": start_at, "maxResults": 50})
            values = result.get("values", [])
            projects.extend(
                {"id": p.get("id"), "key": p.get("key"), "name": p.get("name")}
                for p in values
            )
            if result.get("isLast", True) or not values:
                return projects
            start_at += len(values)

    async def get_issue_types_for_project(self, project_id_or_key: str) -> List[IssueType]:
        """Get issue types available for a project"""
        result = await self._request(
            "GET",
            f"/issue/createmeta/{project_id_or_key}/issuetypes"
        )
        return [IssueType.from_api(it) for it in result.get("values", [])]

    async def create_issue(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Create a new issue in Jira. Returns {"id", "key", "self"}"""
        return await self._request(
            "POST",
            "/issue",
            json={"fields": fields}
        )

    async def update_issue(
        self,
        issue_key: str,
        fields: Dict[str, Any]
    ) -> None:
        """Update an existing issue (only the given fields)"""
        await self._request(
            "PUT",
            f"/issue/{issue_key}",
            json={"fields": fields}
        )

    async def get_issue(self, issue_key: str) -> RemoteIssue:
        """Get issue details. Raises JiraNotFoundError when the issue is gone"""
        data = await self._request(
            "GET",
            f"/issue/{issue_key}",
            params={"fields": ",".join(ISSUE_FIELDS)}
        )
        return RemoteIssue.from_api(data)

    async def search_issues_page(
        self,
        jql: str,
        max_results: int = 100,
        next_page_token: Optional[str] = None
    ) -> IssueSearchPage:
        """Fetch one page of a JQL search (token based pagination)"""
        body: Dict[str, Any] = {
            "jql": jql,
            "maxResults": max_results,
            "fields": ISSUE_FIELDS
        }
        if next_page_token:
            body["nextPageToken"] = next_page_token

        result = await self._request("POST", "/search/jql", json=body)

        token = result.get("nextPageToken")
        if result.get("isLast"):
            token = None

        return IssueSearchPage(
            issues=[RemoteIssue.from_api(issue) for issue in result.get("issues", [])],
            next_page_token=token
        )

    async def iter_issues(self, jql: str, page_size: Optional[int] = None) -> AsyncIterator[RemoteIssue]:
        """Yield every issue matching the JQL, following continuation tokens until exhausted"""
        if page_size is None:
            page_size = int(os.environ.get("JIRA_SEARCH_PAGE_SIZE", "100"))

        seen_tokens = set()
        token: Optional[str] = None
        while True:
            page = await self.search_issues_page(jql, page_size, token)
            for issue in page.issues:
                yield issue

            token = page.next_page_token
            if not token:
                return
            if token in seen_tokens:
                raise JiraAPIError(f"Jira returned a repeated page token while searching: {jql}")
            seen_tokens.add(token)


def project_jql(project_key: str) -> str:
    escaped = project_key.replace("\\", "\\\\").replace('"', '\\"')
    return f'project = "{escaped}"'
