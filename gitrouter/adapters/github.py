"""GitHub API adapter."""

import logging
from typing import Any, Dict, List

import requests

from gitrouter.adapters.base import PullRequestInfo, VCSError, VCSProvider

LOG = logging.getLogger("gitrouter.adapters.github")

# GitHub caps pull request files at 3000 (30 pages of 100)
FILES_PER_PAGE = 100
MAX_FILE_PAGES = 30


def _pr_from_api(data: Dict[str, Any]) -> PullRequestInfo:
    user = data.get("user") or {}
    head = data.get("head") or {}
    base = data.get("base") or {}
    reviewers = [r["login"] for r in (data.get("requested_reviewers") or []) if isinstance(r, dict) and "login" in r]
    return PullRequestInfo(
        number=data["number"],
        provider_id=data.get("id") or 0,
        title=data.get("title") or "",
        author=user.get("login", ""),
        state=data.get("state", "open"),
        draft=bool(data.get("draft")),
        merged=bool(data.get("merged")),
        html_url=data.get("html_url"),
        head_branch=head.get("ref", ""),
        base_branch=base.get("ref", ""),
        requested_reviewers=reviewers,
    )


class GitHubAdapter(VCSProvider):
    """GitHub REST API implementation."""

    def __init__(self, token: str, api_url: str = "https://api.github.com") -> None:
        self._api_url = api_url.rstrip("/")
        self._session = requests.Session()
        self._session.headers["Authorization"] = f"token {token}"
        self._session.headers["Accept"] = "application/vnd.github.v3+json"

    def _request(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] | None = None,
        json: Dict[str, Any] | None = None,
    ) -> requests.Response:
        url = f"{self._api_url}{path}" if path.startswith("/") else f"{self._api_url}/{path}"
        try:
            resp = self._session.request(method, url, params=params, json=json, timeout=30)
        except requests.RequestException as e:
            raise VCSError(f"{method} {path} failed: {e}") from e
        if resp.status_code >= 400:
            msg = resp.text or resp.reason or str(resp.status_code)
            try:
                msg = resp.json().get("message", msg)
            except (ValueError, AttributeError):
                pass
            raise VCSError(f"{resp.status_code}: {msg}")
        return resp

    def list_changed_files(self, repo: str, number: int) -> List[str]:
        files: List[str] = []
        for page in range(1, MAX_FILE_PAGES + 1):
            resp = self._request(
                "GET",
                f"/repos/{repo}/pulls/{number}/files",
                params={"per_page": FILES_PER_PAGE, "page": page},
            )
            data = resp.json() or []
            files.extend(d["filename"] for d in data if isinstance(d, dict) and "filename" in d)
            if len(data) < FILES_PER_PAGE:
                break
        LOG.debug("PR %s#%s changed %d files", repo, number, len(files))
        return files

    def request_reviewers(self, repo: str, number: int, usernames: List[str]) -> None:
        if not usernames:
            return
        self._request(
            "POST",
            f"/repos/{repo}/pulls/{number}/requested_reviewers",
            json={"reviewers": list(usernames)},
        )
        LOG.info("Requested review on %s#%s from %s", repo, number, ", ".join(usernames))

    def get_pull_request(self, repo: str, number: int) -> PullRequestInfo:
        resp = self._request("GET", f"/repos/{repo}/pulls/{number}")
        return _pr_from_api(resp.json())
