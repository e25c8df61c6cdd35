"""Tests for the GitHub source host and release host against a mocked session."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from novahub.collaborators.github import GitHubReleaseHost, GitHubSource, repo_slug
from novahub.errors import PipelineTimeoutError, StageExecutionError

from tests.fakes import StepClock

REPO = "https://github.com/org/demo"
SHA = "0123456789abcdef0123456789abcdef01234567"


def _response(status: int = 200, payload: dict | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload or {}
    response.text = ""
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(
            f"{status} error", response=response
        )
    return response


class TestRepoSlug:
    @pytest.mark.parametrize("url, slug", [
        ("https://github.com/org/demo", "org/demo"),
        ("https://github.com/org/demo/", "org/demo"),
        ("https://github.com/org/demo.git", "org/demo"),
    ])
    def test_valid(self, url, slug):
        assert repo_slug(url) == slug

    @pytest.mark.parametrize("url", ["https://gitlab.com/org/demo", "https://github.com/org"])
    def test_invalid(self, url):
        with pytest.raises(ValueError):
            repo_slug(url)


class TestGitHubSource:
    def test_resolve_branch(self):
        session = MagicMock()
        session.get.return_value = _response(payload={"sha": SHA})
        source = GitHubSource(api_url="https://api.example.com/", session=session, timeout=3)
        assert source.resolve_branch(REPO, "release/1.x") == SHA
        session.get.assert_called_once_with(
            "https://api.example.com/repos/org/demo/commits/release%2F1.x", timeout=3
        )

    @pytest.mark.parametrize("budget, sent", [(2.5, 2.5), (30, 10)])
    def test_lookup_timeout_capped_by_budget(self, budget, sent):
        session = MagicMock()
        session.get.return_value = _response(payload={"sha": SHA})
        GitHubSource(session=session, timeout=10).resolve_branch(REPO, "main", timeout=budget)
        assert session.get.call_args.kwargs["timeout"] == sent

    def test_reachability_timeout_capped_by_budget(self):
        session = MagicMock()
        session.get.return_value = _response(200)
        GitHubSource(session=session, timeout=10).is_reachable(REPO, timeout=1.5)
        assert session.get.call_args.kwargs["timeout"] == 1.5

    def test_commit_timestamp_is_author_time(self):
        session = MagicMock()
        session.get.return_value = _response(payload={
            "sha": SHA,
            "commit": {
                "author": {"date": "2023-11-14T22:13:20Z"},
                "committer": {"date": "2024-01-01T00:00:00Z"},
            },
        })
        assert GitHubSource(session=session).commit_timestamp(REPO, SHA) == 1700000000

    def test_lookup_error_propagates(self):
        session = MagicMock()
        session.get.return_value = _response(404)
        with pytest.raises(requests.HTTPError):
            GitHubSource(session=session).resolve_branch(REPO, "gone")

    def test_reachable_on_200(self):
        session = MagicMock()
        session.get.return_value = _response(200)
        assert GitHubSource(session=session).is_reachable(REPO) is True
        _, kwargs = session.get.call_args
        assert kwargs["allow_redirects"] is False

    @pytest.mark.parametrize("status", [301, 302, 404, 500])
    def test_redirect_or_error_is_unreachable(self, status):
        session = MagicMock()
        session.get.return_value = _response(status)
        assert GitHubSource(session=session).is_reachable(REPO) is False

    def test_network_error_is_unreachable(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("dns failure")
        assert GitHubSource(session=session).is_reachable(REPO) is False


class TestGitHubReleaseHost:
    FILES = {"enclave.eif": b"EIF", "pcr.json": b"{}", "metadata.json": b"{}"}

    def test_creates_release_and_uploads_assets(self):
        session = MagicMock()
        session.get.return_value = _response(404)
        session.post.side_effect = [
            _response(201, {
                "html_url": "https://github.com/org/releases/releases/tag/demo-v1.0.0",
                "upload_url": "https://uploads.github.com/repos/org/releases/releases/1/assets{?name,label}",
                "assets": [],
            }),
            _response(201), _response(201), _response(201),
        ]
        host = GitHubReleaseHost("org/releases", token="t", session=session)
        url = host.create_release("demo-v1.0.0", self.FILES, body="notes")

        assert url.endswith("/tag/demo-v1.0.0")
        create_call = session.post.call_args_list[0]
        assert create_call.kwargs["json"] == {
            "tag_name": "demo-v1.0.0", "name": "demo-v1.0.0", "body": "notes",
        }
        uploads = session.post.call_args_list[1:]
        assert [c.kwargs["params"]["name"] for c in uploads] == list(self.FILES)
        assert uploads[0].args[0] == "https://uploads.github.com/repos/org/releases/releases/1/assets"

    def test_existing_release_only_missing_assets_uploaded(self):
        session = MagicMock()
        session.get.return_value = _response(200, {
            "html_url": "https://github.com/org/releases/releases/tag/demo-v1.0.0",
            "upload_url": "https://uploads.github.com/assets{?name,label}",
            "assets": [{"name": "enclave.eif"}, {"name": "pcr.json"}],
        })
        session.post.return_value = _response(201)
        GitHubReleaseHost("org/releases", token="t", session=session).create_release(
            "demo-v1.0.0", self.FILES
        )
        assert session.post.call_count == 1
        assert session.post.call_args.kwargs["params"] == {"name": "metadata.json"}

    def test_api_failure_is_release_error(self):
        session = MagicMock()
        session.get.return_value = _response(404)
        session.post.return_value = _response(422)
        with pytest.raises(StageExecutionError) as exc_info:
            GitHubReleaseHost("org/releases", token="t", session=session).create_release(
                "demo-v1.0.0", self.FILES
            )
        assert exc_info.value.category == "release"

    def test_budget_spread_over_requests(self):
        session = MagicMock()
        session.get.return_value = _response(404)
        session.post.return_value = _response(201, {
            "html_url": "https://github.com/org/releases/releases/tag/demo-v1.0.0",
            "upload_url": "https://uploads.github.com/assets{?name,label}",
            "assets": [],
        })
        host = GitHubReleaseHost(
            "org/releases", token="t", session=session, timeout=60, clock=StepClock(step=2.0)
        )
        # Expires at t=7: lookup at t=4, creation at t=6, first upload at t=8
        with pytest.raises(PipelineTimeoutError, match="uploading enclave.eif"):
            host.create_release("demo-v1.0.0", self.FILES, timeout=5)

        assert session.get.call_args.kwargs["timeout"] == 3
        assert session.post.call_count == 1
        assert session.post.call_args.kwargs["timeout"] == 1

    def test_without_budget_uses_request_timeout(self):
        session = MagicMock()
        session.get.return_value = _response(200, {
            "upload_url": "https://uploads.github.com/assets{?name,label}",
            "assets": [{"name": name} for name in self.FILES],
        })
        GitHubReleaseHost("org/releases", token="t", session=session, timeout=60).create_release(
            "demo-v1.0.0", self.FILES
        )
        assert session.get.call_args.kwargs["timeout"] == 60
        session.post.assert_not_called()
