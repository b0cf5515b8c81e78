"""
GitHub repository import.

Walks a repository through the contents API, pulling text files under the
size cutoff, then fetches open+closed issues and the repo metadata. Result
is a plain dict {files, issues, metadata}; save_as_snippets() turns the
files into Snippet records.
"""
import base64
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

import requests

from .schema import Snippet

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = (
    ".js", ".ts", ".jsx", ".tsx", ".py", ".java", ".cpp", ".c", ".cs",
    ".php", ".rb", ".go", ".rs", ".swift", ".kt", ".scala", ".sh",
    ".html", ".css", ".scss", ".sass", ".less", ".sql", ".json",
    ".xml", ".yaml", ".yml", ".md", ".txt", ".env", ".config",
    ".dockerfile", ".gitignore", ".gitattributes",
)

# Lowercase language ids used for syntax highlighting of imported files
IMPORT_LANGUAGES = {
    "js": "javascript", "jsx": "javascript", "ts": "typescript", "tsx": "typescript",
    "py": "python", "java": "java", "cpp": "cpp", "c": "c", "cs": "csharp",
    "php": "php", "rb": "ruby", "go": "go", "rs": "rust", "swift": "swift",
    "kt": "kotlin", "scala": "scala", "sh": "bash", "sql": "sql",
    "html": "html", "css": "css", "scss": "scss", "json": "json",
    "xml": "xml", "yaml": "yaml", "yml": "yaml", "md": "markdown",
}

MAX_FILE_BYTES = 1_000_000
SKIPPED_DIRS = {"node_modules"}

_REPO_URL = re.compile(r"github\.com/([^/]+)/([^/]+)")


class GitHubImportError(Exception):
    """GitHub refused or failed a request; `status` is the HTTP status if any."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


def parse_github_url(url: str) -> Tuple[str, str]:
    """(owner, repo) from any github.com/<owner>/<repo>[...] URL."""
    match = _REPO_URL.search(url or "")
    if not match:
        raise GitHubImportError("Invalid GitHub URL")
    owner = match.group(1)
    repo = re.sub(r"\.git$", "", match.group(2))
    return owner, repo


def is_text_file(name: str) -> bool:
    return name.lower().endswith(TEXT_EXTENSIONS)


def language_for(filename: str) -> str:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return IMPORT_LANGUAGES.get(ext, "text")


class GitHubImporter:
    """Fetches a repository's text files, issues and metadata."""

    def __init__(
        self,
        token: Optional[str] = None,
        api_url: str = "https://api.github.com",
        timeout: float = 15.0,
        max_file_bytes: int = MAX_FILE_BYTES,
        session: Optional[requests.Session] = None,
    ):
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.max_file_bytes = max_file_bytes
        self.session = session or requests.Session()

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None):
        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": "DevFlow-App",
        }
        if self.token:
            headers["Authorization"] = f"token {self.token}"

        try:
            r = self.session.get(f"{self.api_url}{path}", headers=headers, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise GitHubImportError(f"GitHub request failed: {e}") from e

        if not r.ok:
            if r.status_code == 401:
                raise GitHubImportError("GitHub token is invalid or expired", 401)
            if r.status_code == 403:
                raise GitHubImportError("API rate limit exceeded or access denied", 403)
            if r.status_code == 404:
                raise GitHubImportError("Repository not found or is private", 404)
            raise GitHubImportError(f"GitHub API error: {r.reason}", r.status_code)
        return r.json()

    def fetch_metadata(self, owner: str, repo: str) -> Dict[str, Any]:
        return self._get(f"/repos/{owner}/{repo}")

    def fetch_contents(self, owner: str, repo: str, path: str = "") -> List[Dict[str, Any]]:
        return self._get(f"/repos/{owner}/{repo}/contents/{path}")

    def fetch_file(self, owner: str, repo: str, path: str) -> Optional[str]:
        data = self._get(f"/repos/{owner}/{repo}/contents/{path}")
        if data.get("content") and data.get("encoding") == "base64":
            return base64.b64decode(data["content"]).decode("utf-8", errors="replace")
        return None

    def fetch_issues(self, owner: str, repo: str) -> List[Dict[str, Any]]:
        return self._get(f"/repos/{owner}/{repo}/issues", params={"state": "all", "per_page": 100})

    def collect_files(self, owner: str, repo: str, path: str = "") -> List[Dict[str, Any]]:
        """Depth-first walk; skips hidden dirs, node_modules, binaries, big files."""
        files: List[Dict[str, Any]] = []
        for item in self.fetch_contents(owner, repo, path):
            name = item.get("name", "")
            if item.get("type") == "file":
                if not is_text_file(name) or item.get("size", 0) >= self.max_file_bytes:
                    continue
                try:
                    content = self.fetch_file(owner, repo, item["path"])
                except GitHubImportError as e:
                    logger.warning(f"Failed to fetch content for {item['path']}: {e}")
                    continue
                if content:
                    entry = dict(item)
                    entry["content"] = content
                    entry["language"] = language_for(name)
                    files.append(entry)
            elif item.get("type") == "dir" and not name.startswith(".") and name not in SKIPPED_DIRS:
                files.extend(self.collect_files(owner, repo, item["path"]))
        return files

    def import_repo(self, repo_url: str) -> Dict[str, Any]:
        owner, repo = parse_github_url(repo_url)
        logger.info(f"Importing {owner}/{repo}")

        metadata = self.fetch_metadata(owner, repo)
        files = self.collect_files(owner, repo)
        logger.info(f"Found {len(files)} source files in {metadata.get('full_name', f'{owner}/{repo}')}")

        try:
            issues = self.fetch_issues(owner, repo)
        except GitHubImportError as e:
            logger.warning(f"Could not fetch issues: {e}")
            issues = []

        return {"files": files, "issues": issues, "metadata": metadata}


def save_as_snippets(store, files: List[Dict[str, Any]], user_id: str = "", task_id: Optional[str] = None) -> List[Snippet]:
    """Persist imported files as snippets; returns the ones that were saved."""
    saved = []
    for f in files:
        snippet = Snippet(
            file_path=f["path"],
            code_text=f["content"],
            task_id=task_id,
            user_id=user_id,
        )
        if store.save_snippet(snippet):
            saved.append(snippet)
    return saved
