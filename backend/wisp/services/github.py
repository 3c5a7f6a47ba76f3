"""GitHub repository provisioning through the REST API."""
import asyncio
import base64
import fnmatch
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import httpx

from wisp.constants import DEFAULT_IGNORE_PATTERNS
from wisp.utils.exceptions import ExternalServiceError, ValidationError, response_json
from wisp.utils.logger import logger

SYSTEM = "vcs"


@dataclass
class RepositoryFile:
    """A file in a repository, always carried as full content."""
    path: str
    content: str


@dataclass
class RepositoryContent:
    """Directory listing plus file contents, used as code-generation context."""
    tree: str
    files: List[RepositoryFile] = field(default_factory=list)

    def render(self) -> str:
        body = "\n".join(f"\n--- {f.path} ---\n{f.content}" for f in self.files)
        return f"Directory structure:\n{self.tree}\n\nFiles:\n{body}"


def should_ignore(path: str, patterns: Sequence[str]) -> bool:
    """True when the path, or any directory on it, matches an ignore pattern."""
    parts = path.split("/")
    for pattern in patterns:
        if fnmatch.fnmatch(path, pattern):
            return True
        if any(fnmatch.fnmatch(part, pattern) for part in parts):
            return True
    return False


def render_tree(root_name: str, paths: Sequence[str]) -> str:
    """Render file paths as a box-drawing tree; directories first, then files, by name."""
    root: Dict[str, dict] = {}
    for path in paths:
        node = root
        for part in path.split("/"):
            node = node.setdefault(part, {})

    def walk(node: Dict[str, dict], prefix: str) -> List[str]:
        entries = sorted(node.items(), key=lambda item: (not item[1], item[0]))
        lines = []
        for index, (name, children) in enumerate(entries):
            is_last = index == len(entries) - 1
            lines.append(f"{prefix}{'└── ' if is_last else '├── '}{name}")
            if children:
                lines.extend(walk(children, prefix + ("    " if is_last else "│   ")))
        return lines

    return "\n".join([f"└── {root_name}/"] + walk(root, "    ")) + "\n"


class GitHubClient:
    """Version-control capability backed by the GitHub REST API."""

    API_URL = "https://api.github.com"
    MAX_CONCURRENT_FETCHES = 8

    def __init__(
        self,
        token: Optional[str],
        owner: str,
        template_owner: str,
        template_repo: str,
        ignore_patterns: Optional[Sequence[str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not token:
            raise ValueError("GitHub token must be configured. Set GITHUB_TOKEN environment variable.")
        self.token = token
        self.owner = owner
        self.template_owner = template_owner
        self.template_repo = template_repo
        self.ignore_patterns = list(ignore_patterns or DEFAULT_IGNORE_PATTERNS)
        self._transport = transport

    def _client(self, timeout: float = 30.0) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.API_URL,
            headers={
                "Authorization": f"Bearer {self.token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=timeout,
            transport=self._transport,
        )

    async def _request(
        self,
        client: httpx.AsyncClient,
        method: str,
        path: str,
        operation: str,
        allow_not_found: bool = False,
        **kwargs,
    ) -> Optional[httpx.Response]:
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ExternalServiceError(
                SYSTEM,
                f"GitHub request failed during {operation}: {e}",
                operation=operation,
                details={"path": path},
                cause=e,
            )

        if allow_not_found and response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.error(f"[GITHUB] {operation} failed: {response.status_code} - {response.text}")
            raise ExternalServiceError(
                SYSTEM,
                f"GitHub {operation} failed: {response.status_code} - {response.text}",
                operation=operation,
                details={"path": path, "status_code": response.status_code},
            )
        return response

    def repo_url(self, name: str) -> str:
        return f"https://github.com/{self.owner}/{name}"

    @staticmethod
    def parse_repo_url(repo_url: str) -> Tuple[str, str]:
        """Split ``https://github.com/{owner}/{repo}`` into owner and repo."""
        parts = repo_url.replace("https://github.com/", "").strip("/").split("/")
        if len(parts) < 2 or not parts[0] or not parts[1]:
            raise ValidationError(
                f"Not a GitHub repository URL: {repo_url}",
                operation="parse_repo_url",
                details={"repo_url": repo_url},
            )
        return parts[0], parts[1]

    async def repository_exists(self, name: str) -> bool:
        async with self._client() as client:
            response = await self._request(
                client, "GET", f"/repos/{self.owner}/{name}", "get_repository", allow_not_found=True
            )
            return response is not None

    async def create_from_template(
        self,
        new_name: str,
        private: bool = False,
        template_ref: Optional[str] = None,
    ) -> str:
        """
        Instantiate a new repository from the template.

        Not idempotent: a second call for the same name fails once the first
        one created the repository.

        Args:
            new_name: Name of the repository to create
            private: Repository visibility, passed through verbatim
            template_ref: Optional ``owner/repo`` overriding the configured template

        Returns:
            The new repository URL
        """
        template_owner, template_repo = self.template_owner, self.template_repo
        if template_ref:
            template_owner, template_repo = template_ref.split("/", 1)

        async with self._client() as client:
            await self._request(
                client,
                "POST",
                f"/repos/{template_owner}/{template_repo}/generate",
                "create_from_template",
                json={
                    "owner": self.owner,
                    "name": new_name,
                    "private": private,
                    "include_all_branches": False,
                },
            )

        logger.info(f"[GITHUB] Created {self.owner}/{new_name} from {template_owner}/{template_repo}")
        return self.repo_url(new_name)

    async def fetch_content(self, repo_url: str, branch: str = "main") -> RepositoryContent:
        """
        Walk the repository and return its tree plus full file contents.

        Paths matching the ignore patterns (build output, lockfiles, media) are
        skipped; files that are not UTF-8 text are left out of ``files``.
        """
        owner, repo = self.parse_repo_url(repo_url)

        async with self._client(timeout=60.0) as client:
            response = await self._request(
                client,
                "GET",
                f"/repos/{owner}/{repo}/git/trees/{branch}",
                "get_tree",
                params={"recursive": "1"},
            )
            entries = [
                entry
                for entry in response_json(response, SYSTEM, "get_tree").get("tree", [])
                if entry.get("type") == "blob" and not should_ignore(entry["path"], self.ignore_patterns)
            ]

            semaphore = asyncio.Semaphore(self.MAX_CONCURRENT_FETCHES)

            async def fetch_blob(entry: dict) -> Optional[RepositoryFile]:
                async with semaphore:
                    blob = await self._request(
                        client, "GET", f"/repos/{owner}/{repo}/git/blobs/{entry['sha']}", "get_blob"
                    )
                data = response_json(blob, SYSTEM, "get_blob")
                if data.get("encoding") == "base64":
                    raw = base64.b64decode(data.get("content", ""))
                else:
                    raw = data.get("content", "").encode()
                try:
                    return RepositoryFile(path=entry["path"], content=raw.decode("utf-8"))
                except UnicodeDecodeError:
                    logger.debug(f"[GITHUB] Skipping binary file {entry['path']}")
                    return None

            fetched = await asyncio.gather(*(fetch_blob(entry) for entry in entries))

        files = sorted((f for f in fetched if f is not None), key=lambda f: f.path)
        tree = render_tree(repo, [entry["path"] for entry in entries])
        logger.info(f"[GITHUB] Fetched {len(files)} files from {owner}/{repo}")
        return RepositoryContent(tree=tree, files=files)

    async def commit_files(
        self,
        repo_url: str,
        branch: str,
        files: Sequence[RepositoryFile],
        message: str,
    ) -> str:
        """
        Create one commit replacing the full content of every listed file.

        The branch ref moves only after the blobs, tree and commit exist, so
        either the whole change set lands or nothing does.

        Returns:
            SHA of the new commit
        """
        if not files:
            raise ValidationError(
                "A commit needs at least one file",
                operation="commit_files",
                details={"repo_url": repo_url, "branch": branch},
            )
        owner, repo = self.parse_repo_url(repo_url)
        base = f"/repos/{owner}/{repo}/git"

        async with self._client(timeout=60.0) as client:
            ref = await self._request(client, "GET", f"{base}/ref/heads/{branch}", "get_ref")
            parent_sha = response_json(ref, SYSTEM, "get_ref")["object"]["sha"]

            commit = await self._request(client, "GET", f"{base}/commits/{parent_sha}", "get_commit")
            base_tree_sha = response_json(commit, SYSTEM, "get_commit")["tree"]["sha"]

            blobs = await asyncio.gather(
                *(
                    self._request(
                        client,
                        "POST",
                        f"{base}/blobs",
                        "create_blob",
                        json={"content": f.content, "encoding": "utf-8"},
                    )
                    for f in files
                )
            )

            blob_shas = [response_json(blob, SYSTEM, "create_blob")["sha"] for blob in blobs]
            tree = await self._request(
                client,
                "POST",
                f"{base}/trees",
                "create_tree",
                json={
                    "base_tree": base_tree_sha,
                    "tree": [
                        {"path": f.path, "mode": "100644", "type": "blob", "sha": sha}
                        for f, sha in zip(files, blob_shas)
                    ],
                },
            )
            tree_sha = response_json(tree, SYSTEM, "create_tree")["sha"]

            new_commit = await self._request(
                client,
                "POST",
                f"{base}/commits",
                "create_commit",
                json={"message": message, "tree": tree_sha, "parents": [parent_sha]},
            )
            commit_sha = response_json(new_commit, SYSTEM, "create_commit")["sha"]

            await self._request(
                client,
                "PATCH",
                f"{base}/refs/heads/{branch}",
                "update_ref",
                json={"sha": commit_sha},
            )

        logger.info(f"[GITHUB] Committed {len(files)} files to {owner}/{repo}@{branch}: {commit_sha}")
        return commit_sha

    async def delete_repository(self, owner: str, repo: str) -> None:
        """Delete a repository; an already-deleted repository counts as success."""
        async with self._client() as client:
            response = await self._request(
                client, "DELETE", f"/repos/{owner}/{repo}", "delete_repository", allow_not_found=True
            )
        if response is None:
            logger.info(f"[GITHUB] Repository {owner}/{repo} already deleted")
        else:
            logger.info(f"[GITHUB] Deleted repository {owner}/{repo}")
