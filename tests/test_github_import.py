"""
Tests for GitHub repository import, with a mocked requests session.
"""
import base64
from unittest.mock import MagicMock

import pytest

from devflow.github_import import (
    GitHubImportError,
    GitHubImporter,
    is_text_file,
    language_for,
    parse_github_url,
    save_as_snippets,
)


def _resp(payload=None, status=200, reason="OK"):
    r = MagicMock()
    r.ok = status < 400
    r.status_code = status
    r.reason = reason
    r.json.return_value = payload
    return r


def _file(path, size=10):
    return {"type": "file", "name": path.rsplit("/", 1)[-1], "path": path, "size": size}


def _dir(path):
    return {"type": "dir", "name": path.rsplit("/", 1)[-1], "path": path}


def _blob(text):
    return {"content": base64.b64encode(text.encode()).decode(), "encoding": "base64"}


class FakeGitHub:
    """Routes session.get() by URL path to canned responses."""

    def __init__(self, routes):
        self.routes = routes
        self.requested = []

    def get(self, url, headers=None, params=None, timeout=None):
        path = url.replace("https://api.github.com", "")
        self.requested.append((path, headers, params))
        route = self.routes.get(path)
        if route is None:
            return _resp(status=404, reason="Not Found")
        return route


def _repo_routes():
    base = "/repos/octo/demo"
    return {
        base: _resp({"full_name": "octo/demo", "default_branch": "main"}),
        f"{base}/contents/": _resp([
            _file("README.md"),
            _file("logo.png"),
            _file("big.json", size=1_000_000),
            _dir("src"),
            _dir(".github"),
            _dir("node_modules"),
        ]),
        f"{base}/contents/README.md": _resp(_blob("# Demo")),
        f"{base}/contents/src": _resp([_file("src/app.py"), _file("src/broken.py")]),
        f"{base}/contents/src/app.py": _resp(_blob("print('hi')\n")),
        f"{base}/contents/src/broken.py": _resp(status=500, reason="Server Error"),
        f"{base}/issues": _resp([{"number": 1, "title": "Bug"}]),
    }


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_parse_github_url():
    assert parse_github_url("https://github.com/octo/demo") == ("octo", "demo")
    assert parse_github_url("git@github.com/octo/demo.git") == ("octo", "demo")
    assert parse_github_url("https://github.com/octo/demo/tree/main/src") == ("octo", "demo")
    with pytest.raises(GitHubImportError, match="Invalid GitHub URL"):
        parse_github_url("https://gitlab.com/octo/demo")


def test_text_file_and_language():
    assert is_text_file("App.TSX")
    assert is_text_file(".gitignore")
    assert not is_text_file("logo.png")
    assert language_for("main.rs") == "rust"
    assert language_for("notes.txt") == "text"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Import
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_import_repo_walks_text_files():
    gh = FakeGitHub(_repo_routes())
    importer = GitHubImporter(token="ghp_x", session=gh)
    result = importer.import_repo("https://github.com/octo/demo")

    assert result["metadata"]["full_name"] == "octo/demo"
    assert [f["path"] for f in result["files"]] == ["README.md", "src/app.py"]
    assert result["files"][1]["content"] == "print('hi')\n"
    assert result["files"][1]["language"] == "python"
    assert result["issues"] == [{"number": 1, "title": "Bug"}]

    paths = [p for p, _, _ in gh.requested]
    assert not any("node_modules" in p or ".github" in p for p in paths)
    assert "/repos/octo/demo/contents/big.json" not in paths
    assert "/repos/octo/demo/contents/logo.png" not in paths

    _, headers, _ = gh.requested[0]
    assert headers["Authorization"] == "token ghp_x"
    assert headers["User-Agent"] == "DevFlow-App"
    _, _, params = gh.requested[-1]
    assert params == {"state": "all", "per_page": 100}


def test_issue_failure_yields_empty_list():
    routes = _repo_routes()
    routes["/repos/octo/demo/issues"] = _resp(status=410, reason="Gone")
    result = GitHubImporter(session=FakeGitHub(routes)).import_repo("https://github.com/octo/demo")
    assert result["issues"] == []
    assert len(result["files"]) == 2


def test_no_token_no_auth_header():
    gh = FakeGitHub(_repo_routes())
    GitHubImporter(session=gh).import_repo("https://github.com/octo/demo")
    assert "Authorization" not in gh.requested[0][1]


@pytest.mark.parametrize("status,message", [
    (401, "GitHub token is invalid or expired"),
    (403, "API rate limit exceeded or access denied"),
    (404, "Repository not found or is private"),
    (502, "GitHub API error: Bad Gateway"),
])
def test_metadata_errors(status, message):
    routes = {"/repos/octo/demo": _resp(status=status, reason="Bad Gateway")}
    importer = GitHubImporter(session=FakeGitHub(routes))
    with pytest.raises(GitHubImportError) as exc:
        importer.import_repo("https://github.com/octo/demo")
    assert str(exc.value) == message
    assert exc.value.status == status


def test_save_as_snippets(store):
    files = [
        {"path": "src/app.py", "content": "print('hi')"},
        {"path": "README.md", "content": "# Demo"},
    ]
    saved = save_as_snippets(store, files, user_id="u1", task_id="t1")
    assert len(saved) == 2
    stored = store.list_snippets(user_id="u1")
    assert {s.file_path for s in stored} == {"src/app.py", "README.md"}
    assert all(s.task_id == "t1" and s.commit_sha is None for s in stored)
