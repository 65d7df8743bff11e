"""Git source-control adapter.

Runs git as an async subprocess against per-work-item checkouts under the
configured work directory. Each issue (or pull request) gets its own
checkout keyed by a work key, reused across phases so that a resumed
implementation continues on the same branch.

Authentication uses the GitHub token embedded in the HTTPS remote URL;
interactive prompts are disabled so a bad credential fails fast instead
of hanging the job.
"""

import asyncio
import logging
import os
import re
from pathlib import Path
from typing import Optional, Tuple, Union

logger = logging.getLogger(__name__)

GITHUB_SLUG_PATTERN = re.compile(r"github\.com[/:]([^/]+)/([^/]+?)(?:\.git)?/?$")
SSH_URL_PATTERN = re.compile(r"^git@([^:]+):(.+)$")
UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class GitCommandError(Exception):
    """Raised when a git command exits non-zero or cannot be started.

    Attributes:
        command: The git subcommand and arguments (credentials redacted).
        returncode: Process exit code (-1 if git could not be started).
        stderr: Captured standard error (credentials redacted).
    """

    def __init__(self, command: str, returncode: int, stderr: str):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"git {command} failed ({returncode}): {stderr}")


def parse_remote_slug(url: str) -> Tuple[str, str]:
    """Extract ``(owner, repo)`` from a GitHub HTTPS or SSH remote URL.

    Raises:
        ValueError: If the URL does not point at a GitHub repository.
    """
    match = GITHUB_SLUG_PATTERN.search(url.strip())
    if not match:
        raise ValueError(f"Not a GitHub repository URL: {url}")
    return match.group(1), match.group(2)


def to_https_url(url: str) -> str:
    """Rewrite ``git@host:owner/repo.git`` remotes to HTTPS."""
    match = SSH_URL_PATTERN.match(url.strip())
    if match:
        return f"https://{match.group(1)}/{match.group(2)}"
    return url.strip()


class GitRepository:
    """Per-work-item git checkouts of a GitHub repository.

    Attributes:
        work_dir: Directory holding one checkout per work key.
        repo_url: Default remote for checkouts (HTTPS or SSH form).
        token: GitHub token used for clone, fetch and push.
        author_name: Commit author name.
        author_email: Commit author email.
    """

    def __init__(
        self,
        work_dir: Union[str, Path],
        repo_url: str,
        token: str,
        author_name: str,
        author_email: str,
    ):
        self.work_dir = Path(work_dir)
        self.repo_url = repo_url
        self.token = token
        self.author_name = author_name
        self.author_email = author_email

    def _authenticated_url(self, url: str) -> str:
        https_url = to_https_url(url)
        if not https_url.startswith("https://") or not self.token:
            return https_url
        return https_url.replace("https://", f"https://x-access-token:{self.token}@", 1)

    def _redact(self, text: str) -> str:
        return text.replace(self.token, "***") if self.token else text

    def checkout_path(self, work_key: str) -> Path:
        return self.work_dir / UNSAFE_KEY_CHARS.sub("-", work_key)

    async def _run(self, *args: str, cwd: Optional[Path] = None) -> Tuple[int, str, str]:
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        try:
            process = await asyncio.create_subprocess_exec(
                "git",
                *args,
                cwd=str(cwd) if cwd is not None else None,
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await process.communicate()
        except OSError as exc:
            raise GitCommandError(
                self._redact(" ".join(args)), -1, f"Failed to execute git: {exc}"
            ) from exc

        return (
            process.returncode if process.returncode is not None else -1,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    async def _git(self, *args: str, cwd: Optional[Path] = None) -> str:
        returncode, stdout, stderr = await self._run(*args, cwd=cwd)
        if returncode != 0:
            raise GitCommandError(
                self._redact(" ".join(args)),
                returncode,
                self._redact(stderr.strip()),
            )
        return stdout

    async def ensure_checkout(self, work_key: str, remote_url: Optional[str] = None) -> Path:
        """Return a checkout for ``work_key``, cloning it on first use.

        An existing checkout has its remote URL refreshed (tokens rotate)
        and is pulled best-effort.

        Raises:
            GitCommandError: If the clone fails.
        """
        path = self.checkout_path(work_key)
        url = self._authenticated_url(remote_url or self.repo_url)

        if (path / ".git").is_dir():
            await self._git("remote", "set-url", "origin", url, cwd=path)
            await self.pull(path)
            logger.info(
                "Reusing existing checkout",
                extra={"work_key": work_key, "path": str(path)},
            )
            return path

        self.work_dir.mkdir(parents=True, exist_ok=True)
        await self._git("clone", url, str(path))
        logger.info(
            "Cloned repository",
            extra={"work_key": work_key, "path": str(path)},
        )
        return path

    async def pull(self, path: Path) -> bool:
        """Fast-forward the current branch from its upstream.

        Non-fatal: a branch without an upstream or a diverged history is
        logged and left as is.

        Returns:
            True if the pull succeeded.
        """
        returncode, _, stderr = await self._run("pull", "--ff-only", cwd=path)
        if returncode != 0:
            logger.warning(
                "git pull failed, continuing with local state",
                extra={"path": str(path), "stderr": self._redact(stderr.strip())[:500]},
            )
            return False
        return True

    async def _local_branch_exists(self, path: Path, name: str) -> bool:
        returncode, _, _ = await self._run(
            "rev-parse", "--verify", "--quiet", f"refs/heads/{name}", cwd=path
        )
        return returncode == 0

    async def _remote_branch_exists(self, path: Path, name: str) -> bool:
        output = await self._git("ls-remote", "--heads", "origin", name, cwd=path)
        return bool(output.strip())

    async def switch_or_create_branch(self, path: Path, name: str) -> bool:
        """Check out ``name``, reusing a local or remote branch if one exists.

        Returns:
            True if the branch was newly created.
        """
        if await self._local_branch_exists(path, name):
            await self._git("checkout", name, cwd=path)
            logger.info("Switched to existing local branch", extra={"branch": name})
            return False

        if await self._remote_branch_exists(path, name):
            await self._git("fetch", "origin", name, cwd=path)
            await self._git("checkout", "-b", name, "--track", f"origin/{name}", cwd=path)
            logger.info("Checked out existing remote branch", extra={"branch": name})
            return False

        await self._git("checkout", "-b", name, cwd=path)
        logger.info("Created branch", extra={"branch": name})
        return True

    async def commit_and_push(self, path: Path, message: str) -> bool:
        """Stage everything, commit and push the current branch.

        Returns:
            False when there was nothing to commit (nothing is pushed).
        """
        await self._git("add", "-A", cwd=path)

        returncode, _, _ = await self._run("diff", "--cached", "--quiet", cwd=path)
        if returncode == 0:
            logger.info("Nothing to commit", extra={"path": str(path)})
            return False

        await self._git(
            "-c",
            f"user.name={self.author_name}",
            "-c",
            f"user.email={self.author_email}",
            "commit",
            "-m",
            message,
            cwd=path,
        )
        await self._git("push", "--set-upstream", "origin", "HEAD", cwd=path)
        logger.info(
            "Committed and pushed",
            extra={"path": str(path), "commit_message": message.splitlines()[0][:100]},
        )
        return True

    async def head_sha(self, path: Path) -> str:
        return (await self._git("rev-parse", "HEAD", cwd=path)).strip()

    async def default_branch(self, path: Path) -> str:
        """Name of the remote's default branch, ``main`` if it cannot be read."""
        returncode, stdout, _ = await self._run("remote", "show", "origin", cwd=path)
        if returncode == 0:
            for line in stdout.splitlines():
                line = line.strip()
                if line.startswith("HEAD branch:"):
                    branch = line.split(":", 1)[1].strip()
                    if branch and branch != "(unknown)":
                        return branch
        return "main"

    async def diff_against_base(self, path: Path, base: Optional[str] = None) -> str:
        """Diff of the current branch against the merge base with ``base``."""
        base = base or await self.default_branch(path)
        await self._run("fetch", "origin", base, cwd=path)
        return await self._git("diff", f"origin/{base}...HEAD", cwd=path)

    def remote_slug(self, remote_url: Optional[str] = None) -> Tuple[str, str]:
        return parse_remote_slug(remote_url or self.repo_url)

    def branch_web_url(self, branch: str, remote_url: Optional[str] = None) -> str:
        owner, repo = self.remote_slug(remote_url)
        return f"https://github.com/{owner}/{repo}/tree/{branch}"


def repository_remote_url(owner: str, repo: str) -> str:
    return f"https://github.com/{owner}/{repo}.git"
