"""Bitbucket Cloud REST client for pull-request review."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ..resilience.breakers import BITBUCKET, get_breaker_registry
from ..resilience.circuit_breaker import CircuitBreaker
from ..resilience.retry import with_retry

logger = logging.getLogger(__name__)


class BitbucketApiError(Exception):
    """Non-2xx response from the Bitbucket API."""

    def __init__(self, status_code: int, endpoint: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


def should_retry(error: BaseException) -> bool:
    """Retry rate limits, server errors and network failures; never auth or not-found errors."""
    if isinstance(error, BitbucketApiError):
        return error.status_code == 429 or error.status_code >= 500
    return isinstance(error, httpx.TransportError)


@dataclass
class PRDetails:
    """Pull-request metadata."""

    id: int
    title: str
    description: str
    author: str
    source_branch: str
    target_branch: str
    state: str
    source_workspace: Optional[str] = None
    source_repo_slug: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "author": self.author,
            "sourceBranch": self.source_branch,
            "targetBranch": self.target_branch,
            "state": self.state,
        }


class BitbucketClient:
    """Wraps the v2 endpoints the review pipeline needs."""

    def __init__(
        self,
        base_url: str = "https://api.bitbucket.org/2.0",
        breaker: Optional[CircuitBreaker] = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.breaker = breaker or get_breaker_registry().get(BITBUCKET)
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None
        self._client_loop_id: Optional[int] = None

    def _get_client(self) -> httpx.AsyncClient:
        loop_id = id(asyncio.get_running_loop())
        if self._client is None or self._client_loop_id != loop_id:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._client_loop_id = loop_id
        return self._client

    async def _send(
        self,
        method: str,
        endpoint: str,
        token: str,
        accept: str = "application/json",
        json_body: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        async def request() -> httpx.Response:
            response = await self._get_client().request(
                method,
                f"{self.base_url}{endpoint}",
                headers={"Authorization": f"Bearer {token}", "Accept": accept},
                json=json_body,
            )
            # Only service-side failures count against the breaker
            if response.status_code == 429 or response.status_code >= 500:
                self._raise_for_status(response, endpoint)
            return response

        async def attempt() -> httpx.Response:
            response = await self.breaker.call(request)
            self._raise_for_status(response, endpoint)
            return response

        return await with_retry(attempt, retry_on=should_retry)

    def _raise_for_status(self, response: httpx.Response, endpoint: str) -> None:
        status = response.status_code
        if status < 400:
            return
        detail = response.text[:500]
        if status == 401:
            logger.warning(f"Bitbucket authentication failed for {endpoint}")
            raise BitbucketApiError(status, endpoint, f"Authentication failed for {endpoint}: {detail}")
        if status == 404:
            logger.warning(f"Bitbucket resource not found: {endpoint}")
            raise BitbucketApiError(status, endpoint, f"Resource not found: {endpoint}")
        if status == 429:
            logger.warning(f"Bitbucket rate limit exceeded for {endpoint}")
            raise BitbucketApiError(status, endpoint, f"Rate limit exceeded for {endpoint}")
        logger.error(f"Bitbucket API error {status} for {endpoint}: {detail}")
        raise BitbucketApiError(status, endpoint, f"Bitbucket API error {status} for {endpoint}: {detail}")

    @staticmethod
    def _pr_endpoint(workspace: str, repo_slug: str, pr_id: int) -> str:
        return f"/repositories/{workspace}/{repo_slug}/pullrequests/{pr_id}"

    async def get_pr_details(self, workspace: str, repo_slug: str, pr_id: int, token: str) -> PRDetails:
        """Fetch pull-request metadata."""
        response = await self._send("GET", self._pr_endpoint(workspace, repo_slug, pr_id), token)
        raw = response.json()

        source = raw.get("source") or {}
        source_repo = source.get("repository") or {}
        workspace_slug = (source_repo.get("workspace") or {}).get("slug")
        repo_slug_value = source_repo.get("slug")
        full_name = source_repo.get("full_name") or ""
        if (not workspace_slug or not repo_slug_value) and "/" in full_name:
            ws, slug = full_name.split("/", 1)
            workspace_slug = workspace_slug or ws
            repo_slug_value = repo_slug_value or slug

        return PRDetails(
            id=raw.get("id", pr_id),
            title=raw.get("title") or "",
            description=raw.get("description") or "",
            author=(raw.get("author") or {}).get("display_name") or "",
            source_branch=(source.get("branch") or {}).get("name") or "",
            target_branch=((raw.get("destination") or {}).get("branch") or {}).get("name") or "",
            state=raw.get("state") or "",
            source_workspace=workspace_slug or None,
            source_repo_slug=repo_slug_value or None,
        )

    async def get_pr_diff(self, workspace: str, repo_slug: str, pr_id: int, token: str) -> str:
        """Fetch the unified diff of a pull request."""
        endpoint = self._pr_endpoint(workspace, repo_slug, pr_id) + "/diff"
        response = await self._send("GET", endpoint, token, accept="text/plain")
        return response.text

    async def post_inline_comment(
        self,
        workspace: str,
        repo_slug: str,
        pr_id: int,
        token: str,
        file_path: str,
        line: int,
        content: str,
    ) -> str:
        """Post a comment on one line of the new file.

        Returns:
            Id of the created comment
        """
        endpoint = self._pr_endpoint(workspace, repo_slug, pr_id) + "/comments"
        body = {"content": {"raw": content}, "inline": {"path": file_path, "to": line}}
        response = await self._send("POST", endpoint, token, json_body=body)
        return str(response.json().get("id"))

    async def post_summary_comment(
        self, workspace: str, repo_slug: str, pr_id: int, token: str, content: str
    ) -> str:
        """Post a top-level comment on the pull request."""
        endpoint = self._pr_endpoint(workspace, repo_slug, pr_id) + "/comments"
        response = await self._send("POST", endpoint, token, json_body={"content": {"raw": content}})
        return str(response.json().get("id"))

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
