"""GitHub-backed source host and release host, over the REST API.

Both classes share one ``requests.Session`` per instance. Every request
carries an explicit timeout: the configured per-request limit, capped by
whatever the caller has left of the pipeline deadline.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from datetime import datetime
from urllib.parse import quote, urlparse

import requests

from novahub.errors import PipelineTimeoutError, StageExecutionError

logger = logging.getLogger(__name__)

_API_VERSION = "2022-11-28"


def repo_slug(repo_url: str) -> str:
    """``https://github.com/<owner>/<repo>[/]`` -> ``<owner>/<repo>``."""
    parsed = urlparse(repo_url)
    parts = [p for p in parsed.path.split("/") if p]
    if parsed.netloc != "github.com" or len(parts) != 2:
        raise ValueError(f"not a GitHub repository URL: {repo_url!r}")
    owner, name = parts
    if name.endswith(".git"):
        name = name[: -len(".git")]
    return f"{owner}/{name}"


def _api_session(token: str) -> requests.Session:
    session = requests.Session()
    session.headers.update({
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": _API_VERSION,
        "User-Agent": "novahub",
    })
    if token:
        session.headers["Authorization"] = f"Bearer {token}"
    return session


class GitHubSource:
    """Commit metadata lookups and the public-reachability check.

    Parameters
    ----------
    api_url:
        Base URL of the GitHub REST API.
    token:
        Optional token; raises the anonymous rate limit.
    timeout:
        Per-request timeout in seconds; a smaller ``timeout`` passed to a
        lookup takes precedence.
    session:
        Injected for tests.
    """

    def __init__(
        self,
        *,
        api_url: str = "https://api.github.com",
        token: str = "",
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._session = session or _api_session(token)

    def _cap(self, timeout: float | None) -> float:
        return self._timeout if timeout is None else min(self._timeout, timeout)

    def _commit(self, repo: str, ref: str, timeout: float | None) -> dict:
        url = f"{self._api_url}/repos/{repo_slug(repo)}/commits/{quote(ref, safe='')}"
        response = self._session.get(url, timeout=self._cap(timeout))
        response.raise_for_status()
        return response.json()

    def resolve_branch(
        self, repo: str, branch: str, *, timeout: float | None = None
    ) -> str:
        sha = self._commit(repo, branch, timeout).get("sha", "")
        logger.debug("Head of %s %s is %s", repo, branch, sha)
        return sha

    def commit_timestamp(
        self, repo: str, commit: str, *, timeout: float | None = None
    ) -> int:
        payload = self._commit(repo, commit, timeout)
        date = payload["commit"]["author"]["date"]
        return int(datetime.fromisoformat(date.replace("Z", "+00:00")).timestamp())

    def is_reachable(self, url: str, *, timeout: float | None = None) -> bool:
        """True only for a direct 200; redirects and errors count as unreachable."""
        try:
            response = self._session.get(
                url, allow_redirects=False, timeout=self._cap(timeout)
            )
        except requests.RequestException as exc:
            logger.warning("Reachability check for %s failed: %s", url, exc)
            return False
        if response.status_code != 200:
            logger.info("Reachability check for %s returned %d", url, response.status_code)
            return False
        return True


class GitHubReleaseHost:
    """Creates GitHub releases with the artifact files attached.

    Creation is idempotent: an existing release for the tag is reused and
    only assets it is missing are uploaded.

    Parameters
    ----------
    release_repo:
        ``<owner>/<repo>`` that holds the releases.
    token:
        Token with ``contents:write`` on ``release_repo``.
    timeout:
        Per-request timeout in seconds.
    clock:
        Monotonic clock used to spread a ``create_release`` budget over
        its requests.
    """

    def __init__(
        self,
        release_repo: str,
        *,
        token: str,
        api_url: str = "https://api.github.com",
        timeout: float = 60.0,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._repo = release_repo.strip("/")
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._session = session or _api_session(token)
        self._clock = clock

    def create_release(
        self,
        tag: str,
        files: Mapping[str, bytes],
        *,
        body: str = "",
        timeout: float | None = None,
    ) -> str:
        """Find or create release ``tag`` and upload the assets it lacks.

        ``timeout`` bounds the lookup, the creation and every upload
        together; ``PipelineTimeoutError`` is raised once it is spent.
        """
        expires_at = None if timeout is None else self._clock() + timeout
        try:
            release = self._find_release(tag, expires_at) or self._post_release(
                tag, body, expires_at
            )
            existing = {asset["name"] for asset in release.get("assets", [])}
            for name, data in files.items():
                if name in existing:
                    continue
                self._upload_asset(release, name, data, expires_at)
        except requests.RequestException as exc:
            raise StageExecutionError(
                f"GitHub release {tag} in {self._repo} failed: {exc}",
                category="release",
                diagnostics=_response_text(exc),
            ) from exc
        return release.get("html_url", f"https://github.com/{self._repo}/releases/tag/{tag}")

    # ------------------------------------------------------------------
    # API calls
    # ------------------------------------------------------------------

    def _request_timeout(self, expires_at: float | None, action: str) -> float:
        if expires_at is None:
            return self._timeout
        left = expires_at - self._clock()
        if left <= 0:
            raise PipelineTimeoutError(
                f"Pipeline deadline reached before {action} in {self._repo}"
            )
        return min(self._timeout, left)

    def _find_release(self, tag: str, expires_at: float | None) -> dict | None:
        url = f"{self._api_url}/repos/{self._repo}/releases/tags/{quote(tag, safe='')}"
        response = self._session.get(
            url, timeout=self._request_timeout(expires_at, f"looking up release {tag}")
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        logger.info("Release %s already exists in %s", tag, self._repo)
        return response.json()

    def _post_release(self, tag: str, body: str, expires_at: float | None) -> dict:
        response = self._session.post(
            f"{self._api_url}/repos/{self._repo}/releases",
            json={"tag_name": tag, "name": tag, "body": body},
            timeout=self._request_timeout(expires_at, f"creating release {tag}"),
        )
        response.raise_for_status()
        logger.info("Created release %s in %s", tag, self._repo)
        return response.json()

    def _upload_asset(
        self, release: dict, name: str, data: bytes, expires_at: float | None
    ) -> None:
        upload_url = release["upload_url"].split("{", 1)[0]
        response = self._session.post(
            upload_url,
            params={"name": name},
            data=data,
            headers={"Content-Type": "application/octet-stream"},
            timeout=self._request_timeout(expires_at, f"uploading {name}"),
        )
        response.raise_for_status()
        logger.debug("Uploaded %s (%d bytes)", name, len(data))


def _response_text(exc: requests.RequestException) -> str:
    response = getattr(exc, "response", None)
    return response.text if response is not None else ""
