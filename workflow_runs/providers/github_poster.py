"""
GitHub issue comment poster.

Posts Issue Bot responses through the GitHub REST API using httpx. Rate
limits, 5xx responses and transport errors are retried with exponential
backoff. Everything else maps to a typed failure whose ``reason_type`` the
issue-triage workflow classifies (``authentication`` and ``forbidden`` become
``auth_error``, the rest ``provider_error``).

Reason Types:
    authentication, forbidden, not_found, invalid_request, retry_exhausted,
    transport, unexpected_status

Example:
    >>> poster = GitHubIssuePoster.from_config(settings.github)
    >>> result = await poster.post({"repo_full_name": "acme/widgets", "issue_number": 42, "body": "Thanks!"})
    >>> result.value["comment_url"]
    'https://github.com/acme/widgets/issues/42#issuecomment-9001'
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog

from workflow_runs.config.settings import GitHubConfig
from workflow_runs.models.results import OperationResult, TypedFailure
from workflow_runs.models.types import PostRequest
from workflow_runs.providers.base import IssuePoster
from workflow_runs.utils.normalize import optional_iso8601, optional_positive_int, optional_string, reject_none

log = structlog.get_logger(__name__)

DEFAULT_API_URL = "https://api.github.com"
RETRIABLE_STATUSES = frozenset({408, 409, 425, 429, 500, 502, 503, 504})
POST_OPERATION = "post_github_issue_comment"
AUTH_REMEDIATION = "Verify the GitHub token used for Issue Bot posting has issue comment access, then retry posting."
PROVIDER_REMEDIATION = "Retry posting after GitHub availability recovers."


class GitHubIssuePoster(IssuePoster):
    """Issue poster backed by the GitHub REST API."""

    def __init__(
        self,
        token: str | None,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 10.0,
        max_retries: int = 2,
        retry_base_delay: float = 0.2,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the poster.

        Args:
            token: GitHub token with permission to comment on issues
            api_url: GitHub API base URL (for GitHub Enterprise)
            timeout: Request timeout in seconds
            max_retries: Retries after the first attempt for retriable failures
            retry_base_delay: Delay before the first retry; doubled per retry
            transport: Custom httpx transport
        """
        self.token = token.strip() if token else None
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.transport = transport

    @classmethod
    def from_config(cls, config: GitHubConfig, transport: httpx.AsyncBaseTransport | None = None) -> GitHubIssuePoster:
        return cls(
            token=config.token.get_secret_value() if config.token else None,
            api_url=config.api_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
            retry_base_delay=config.retry_base_delay,
            transport=transport,
        )

    async def post(self, request: PostRequest) -> OperationResult[dict[str, Any]]:
        repo_full_name = optional_string(request.get("repo_full_name"))
        issue_number = optional_positive_int(request.get("issue_number"))
        body = optional_string(request.get("body"))
        owner, _, repo = (repo_full_name or "").partition("/")

        if not owner or not repo or "/" in repo or issue_number is None or body is None:
            return self._failure(
                "github_issue_comment_invalid_request",
                "invalid_request",
                "GitHub issue comment post request is invalid.",
                "Provide valid repository, issue number, and response body artifacts before posting.",
                path=None,
            )

        path = f"/repos/{owner}/{repo}/issues/{issue_number}/comments"
        if not self.token:
            return self._failure(
                "github_issue_comment_authentication_failed",
                "authentication",
                "GitHub issue comment token is missing for Issue Bot response posting.",
                AUTH_REMEDIATION,
                path=path,
            )

        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "Authorization": f"Bearer {self.token}",
        }
        async with httpx.AsyncClient(
            base_url=self.api_url, headers=headers, timeout=self.timeout, transport=self.transport
        ) as client:
            result = await self._post_with_retries(client, path, body)

        if result.ok:
            log.info("github_comment_posted", repo=repo_full_name, issue_number=issue_number)
        else:
            log.error(
                "github_comment_post_failed",
                repo=repo_full_name,
                issue_number=issue_number,
                reason_type=result.failure.reason_type,
                status=result.failure.extra.get("status"),
            )
        return result

    async def _post_with_retries(
        self, client: httpx.AsyncClient, path: str, body: str
    ) -> OperationResult[dict[str, Any]]:
        attempt = 1
        while True:
            try:
                response = await client.post(path, json={"body": body})
            except httpx.TransportError as e:
                if attempt <= self.max_retries:
                    await self._backoff(attempt, path, reason=type(e).__name__)
                    attempt += 1
                    continue
                return self._transport_failure(e, path, attempt)

            if _retriable(response) and attempt <= self.max_retries:
                await self._backoff(attempt, path, reason=f"status {response.status_code}")
                attempt += 1
                continue
            return self._handle_response(response, path, attempt)

    async def _backoff(self, attempt: int, path: str, reason: str) -> None:
        delay = self.retry_base_delay * 2 ** (attempt - 1)
        log.warning("github_comment_retry", path=path, attempt=attempt, max_retries=self.max_retries, reason=reason)
        await asyncio.sleep(delay)

    def _handle_response(self, response: httpx.Response, path: str, attempt: int) -> OperationResult[dict[str, Any]]:
        status = response.status_code
        payload = _json_body(response)

        if 200 <= status < 300:
            return OperationResult.success(
                reject_none(
                    {
                        "provider": "github",
                        "status": "posted",
                        "comment_url": optional_string(payload.get("html_url")),
                        "comment_api_url": optional_string(payload.get("url")),
                        "comment_id": optional_positive_int(payload.get("id")),
                        "comment_node_id": optional_string(payload.get("node_id")),
                        "posted_at": optional_iso8601(payload.get("created_at")),
                    }
                )
            )

        def failure(error_type: str, reason_type: str, default_detail: str, remediation: str) -> OperationResult:
            detail = _response_detail(payload, default_detail)
            return self._failure(error_type, reason_type, detail, remediation, path, status, attempt)

        if status == 401:
            return failure(
                "github_issue_comment_authentication_failed",
                "authentication",
                "GitHub rejected issue comment credentials (401 Unauthorized).",
                AUTH_REMEDIATION,
            )
        if status == 403 and not _rate_limited(response):
            return failure(
                "github_issue_comment_forbidden",
                "forbidden",
                "GitHub denied issue comment posting access (403 Forbidden).",
                AUTH_REMEDIATION,
            )
        if status == 404:
            return failure(
                "github_issue_comment_not_found",
                "not_found",
                "GitHub issue resource was not found for comment posting.",
                "Verify repository and issue identifiers in run artifacts, then retry posting.",
            )
        if status in (400, 422):
            return failure(
                "github_issue_comment_invalid_request",
                "invalid_request",
                "GitHub rejected issue comment request payload.",
                "Ensure proposed response text and issue identifiers are valid, then retry posting.",
            )
        if _retriable(response):
            return failure(
                "github_issue_comment_retry_exhausted",
                "retry_exhausted",
                f"GitHub issue comment post exhausted retries (last status {status}).",
                PROVIDER_REMEDIATION,
            )
        return failure(
            "github_issue_comment_unexpected_status",
            "unexpected_status",
            f"GitHub returned unexpected status {status} when posting issue comment.",
            PROVIDER_REMEDIATION,
        )

    def _transport_failure(self, error: httpx.TransportError, path: str, attempt: int) -> OperationResult:
        reason = str(error) or type(error).__name__
        if self.max_retries > 0:
            return self._failure(
                "github_issue_comment_retry_exhausted",
                "retry_exhausted",
                f"GitHub issue comment post exhausted retries after transport failure ({reason}).",
                PROVIDER_REMEDIATION,
                path,
                attempt=attempt,
            )
        return self._failure(
            "github_issue_comment_transport_error",
            "transport",
            f"GitHub issue comment post failed due to transport error ({reason}).",
            PROVIDER_REMEDIATION,
            path,
            attempt=attempt,
        )

    def _failure(
        self,
        error_type: str,
        reason_type: str,
        detail: str,
        remediation: str,
        path: str | None,
        status: int | None = None,
        attempt: int = 1,
    ) -> OperationResult[dict[str, Any]]:
        return OperationResult.failed(
            TypedFailure(
                error_type=error_type,
                operation=POST_OPERATION,
                reason_type=reason_type,
                detail=detail,
                remediation=remediation,
                extra={
                    "method": "POST",
                    "path": path,
                    "status": status,
                    "attempt_count": attempt,
                    "max_retries": self.max_retries,
                },
            )
        )


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _rate_limited(response: httpx.Response) -> bool:
    return response.status_code == 403 and response.headers.get("x-ratelimit-remaining") == "0"


def _retriable(response: httpx.Response) -> bool:
    return response.status_code in RETRIABLE_STATUSES or _rate_limited(response)


def _response_detail(payload: dict[str, Any], default: str) -> str:
    message = optional_string(payload.get("message"))
    return f"{default} GitHub said: {message}" if message else default
