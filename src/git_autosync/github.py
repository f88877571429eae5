import datetime
import logging
import re
from urllib.parse import quote

import httpx

from .constants import (
    API_TIMEOUT,
    APP_NAME,
    CREATE_TIMEOUT,
    GITHUB_API_URL,
    GITHUB_HOST,
    MAX_REPO_NAME_LENGTH,
    USER_AGENT,
)

logger = logging.getLogger(APP_NAME)


class GitHubError(Exception):
    """A GitHub API call failed (transport error, timeout or unexpected status)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GitHubAuthError(GitHubError):
    """The access token was rejected."""


class GitHubRateLimitError(GitHubError):
    """The API refused the call because the rate limit is exhausted."""


def sanitize_repo_name(name: str) -> str:
    """Turns a folder name into a valid GitHub repository name.

    Lowercases, collapses whitespace runs into a single hyphen, drops every
    character outside ``[a-z0-9-_.]``, trims leading and trailing ``-``, ``_``
    and ``.`` and truncates to 100 characters.

    Args:
        name (str): The project folder name.

    Returns:
        str: The repository name (may be empty for names with no valid characters).
    """
    slug = name.lower()
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"[^a-z0-9\-_.]", "", slug)
    slug = re.sub(r"^[-_.]+|[-_.]+$", "", slug)
    slug = slug[:MAX_REPO_NAME_LENGTH]
    # Truncation can expose a separator at the new end.
    return slug.rstrip("-_.")


def build_remote_url(username: str, token: str, repo_name: str) -> str:
    """Builds the authenticated HTTPS remote URL for a repository.

    This is the only place credentials are embedded into a URL.

    Args:
        username (str): The repository owner.
        token (str): The access token.
        repo_name (str): The sanitized repository name.

    Returns:
        str: ``https://<token>@github.com/<user>/<repo>.git``.
    """
    return f"https://{token}@{GITHUB_HOST}/{username}/{quote(repo_name, safe='')}.git"


def redact(text: str, token: str) -> str:
    """Hides a token inside log or error text."""
    if not token:
        return text
    return text.replace(token, "***")


def repo_web_url(username: str, project_name: str) -> str:
    """Returns the browser URL of the repository a project syncs to."""
    repo_name = quote(sanitize_repo_name(project_name), safe="")
    return f"https://{GITHUB_HOST}/{username}/{repo_name}"


class GitHubClient:
    """A minimal asynchronous client for the repository endpoints of the GitHub API.

    Attributes:
        username (str): The account that owns the repositories.
        token (str): The personal access token.
    """

    def __init__(
        self,
        username: str,
        token: str,
        base_url: str = GITHUB_API_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.username = username
        self.token = token
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"token {token}",
                "Accept": "application/vnd.github.v3+json",
                "User-Agent": USER_AGENT,
            },
            timeout=API_TIMEOUT,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_repository(self, repo_name: str) -> bool:
        """Checks whether the account already owns a repository.

        Args:
            repo_name (str): The sanitized repository name.

        Returns:
            bool: True if it exists, False on 404.

        Raises:
            GitHubAuthError: If the token is invalid.
            GitHubRateLimitError: If the rate limit is exhausted.
            GitHubError: On any other failure, including timeouts.
        """
        url = f"/repos/{quote(self.username, safe='')}/{quote(repo_name, safe='')}"
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            raise GitHubError(f"GitHub API error: {e!r}") from e

        if response.status_code == 200:
            return True
        if response.status_code == 404:
            return False
        raise self._error_for(response, "GitHub API error")

    async def create_repository(self, repo_name: str) -> bool:
        """Creates a private repository for the authenticated user.

        A 422 response means the repository already exists and is treated as
        success.

        Args:
            repo_name (str): The sanitized repository name.

        Returns:
            bool: True if the repository was created, False if it already existed.

        Raises:
            GitHubAuthError: If the token is invalid.
            GitHubRateLimitError: If the rate limit is exhausted.
            GitHubError: On any other failure, including timeouts.
        """
        today = datetime.date.today().isoformat()
        payload = {
            "name": repo_name,
            "private": True,
            "description": f"Auto-synced project - {today}",
            "auto_init": False,
            "has_issues": False,
            "has_projects": False,
            "has_wiki": False,
        }
        try:
            response = await self._client.post(
                "/user/repos", json=payload, timeout=CREATE_TIMEOUT
            )
        except httpx.HTTPError as e:
            raise GitHubError(f"Repository creation error: {e!r}") from e

        if response.status_code == 201:
            return True
        if response.status_code == 422:
            logger.info(f"Repository {repo_name} already exists on GitHub.")
            return False
        raise self._error_for(response, "Repository creation error")

    @staticmethod
    def _error_for(response: httpx.Response, prefix: str) -> GitHubError:
        status = response.status_code
        if status == 401:
            return GitHubAuthError(
                "GitHub token is invalid. Make sure it has the 'repo' scope.", status
            )
        if status in (403, 429):
            return GitHubRateLimitError("GitHub API rate limit exceeded.", status)
        return GitHubError(f"{prefix}: {status} {_message(response)}".strip(), status)


def _message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict):
        return str(data.get("message", ""))
    return ""
