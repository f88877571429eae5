import asyncio
import logging
import os
from pathlib import Path

from .constants import APP_NAME, DEFAULT_BRANCH, REMOTE_NAME

logger = logging.getLogger(APP_NAME)


class GitError(RuntimeError):
    """Raised when a git command exits with a non-zero status.

    Attributes:
        stderr (str): The captured standard error of the failed command.
    """

    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr

    @property
    def mentions_upstream(self) -> bool:
        """True when git complained about a missing upstream branch."""
        return "upstream" in str(self).lower()


class GitRepo:
    """An asynchronous wrapper around the Git command-line interface.

    Every command runs as a subprocess on the event loop, so callers suspend
    instead of blocking while git works. Unlike a plain repository handle the
    path does not need to be a repository yet: ``is_repo`` and ``init`` are
    how a project folder becomes one.

    Attributes:
        path (Path): The project folder the commands run in.
        timeout (float): Seconds before a command is abandoned as failed.
    """

    def __init__(self, path: Path, timeout: float = 120.0):
        self.path = path
        self.timeout = timeout

    async def _run(self, args: list[str], env: dict | None = None) -> str:
        """Executes a Git command within the project folder.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            env (dict | None, optional): Environment variables for the
                                         subprocess. Defaults to None.

        Returns:
            str: The stripped stdout of the command.

        Raises:
            GitError: If git exits non-zero, cannot be started or times out.
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                "git",
                *args,
                cwd=self.path,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            raise GitError(f"Git error: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise GitError(
                f"Git error: '{args[0]}' timed out after {self.timeout:.0f}s"
            ) from e

        out = stdout.decode(errors="replace").strip()
        err = stderr.decode(errors="replace").strip()
        if proc.returncode != 0:
            raise GitError(f"Git error: {err or out or proc.returncode}", stderr=err)
        return out

    async def is_repo(self) -> bool:
        """Checks whether the folder is inside a git work tree.

        Returns:
            bool: True if git recognises the folder, False otherwise.
        """
        if not (self.path / ".git").exists():
            return False
        try:
            return await self._run(["rev-parse", "--is-inside-work-tree"]) == "true"
        except GitError as e:
            logger.debug(f"rev-parse failed in {self.path}: {e}")
            return False

    async def init(self) -> None:
        """Creates an empty repository in the folder."""
        await self._run(["init"])

    async def add_config(self, key: str, value: str) -> None:
        """Sets a repository-local configuration value.

        Args:
            key (str): The config key (e.g. ``user.name``).
            value (str): The value to store.
        """
        await self._run(["config", key, value])

    async def add_all(self) -> None:
        """
        Stages all changes (modified, deleted, and untracked files)
        in the working directory.
        """
        await self._run(["add", "."])

    async def commit(self, message: str) -> None:
        """Creates a new commit with the provided message.

        Args:
            message (str): The commit message.
        """
        await self._run(["commit", "-m", message])

    async def rename_branch(self, name: str = DEFAULT_BRANCH) -> None:
        """Renames (or creates) the current branch, overwriting an existing one.

        Args:
            name (str, optional): The new branch name. Defaults to ``main``.
        """
        await self._run(["branch", "-M", name])

    async def add_remote(self, url: str, name: str = REMOTE_NAME) -> None:
        """Registers a remote.

        Args:
            url (str): The remote URL.
            name (str, optional): The remote name. Defaults to ``origin``.
        """
        await self._run(["remote", "add", name, url])

    async def remove_remote(self, name: str = REMOTE_NAME) -> bool:
        """Removes a remote, tolerating its absence.

        Args:
            name (str, optional): The remote name. Defaults to ``origin``.

        Returns:
            bool: True if a remote was removed, False if none existed.
        """
        try:
            await self._run(["remote", "remove", name])
            return True
        except GitError as e:
            logger.debug(f"No remote '{name}' to remove in {self.path.name}: {e}")
            return False

    async def status_porcelain(self) -> list[str]:
        """Returns the porcelain (machine-readable) status of the repository.

        Returns:
            list[str]: One entry per changed, deleted or untracked file.
        """
        output = await self._run(["status", "--porcelain"])
        return output.splitlines() if output else []

    async def push(
        self,
        branch: str = DEFAULT_BRANCH,
        remote: str = REMOTE_NAME,
        set_upstream: bool = False,
    ) -> None:
        """Pushes a branch to a remote.

        Args:
            branch (str, optional): The branch to push. Defaults to ``main``.
            remote (str, optional): The remote to push to. Defaults to ``origin``.
            set_upstream (bool, optional): Whether to pass ``-u`` so the branch
                                           starts tracking the remote one.
        """
        cmd = ["push"]
        if set_upstream:
            cmd.append("-u")
        cmd.extend([remote, branch])
        # Never prompt for credentials from a background process.
        await self._run(cmd, env=_non_interactive_env())


def _non_interactive_env() -> dict[str, str]:
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    env["GIT_SSH_COMMAND"] = "ssh -o BatchMode=yes"
    return env
