"""The per-project sync workflow.

One run takes a project folder through the ordered steps below and reports a
``ProgressEvent`` at each of them:

1. precondition check (folder exists, network reachable)
2. remote existence check
3. remote creation
4. local repository bootstrap
5. remote URL (re)configuration
6. change detection and commit
7. push
"""

import asyncio
import datetime
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .config import Config
from .constants import APP_NAME, DEFAULT_BRANCH
from .git_wrapper import GitError, GitRepo
from .github import (
    GitHubClient,
    GitHubError,
    GitHubRateLimitError,
    build_remote_url,
    redact,
    sanitize_repo_name,
)
from .network import NetworkStatus
from .status import SUCCESS, TransferStats

logger = logging.getLogger(APP_NAME)


@dataclass
class ProgressEvent:
    """One step of a project's workflow.

    Attributes:
        path (Path): The project being synced.
        operation (str): Label of the step.
        percent (float): Progress within the project, 0-100.
    """

    path: Path
    operation: str
    percent: float


class ProgressListener(Protocol):
    def on_progress(self, event: ProgressEvent) -> None: ...

    def on_error(self, path: Path, message: str) -> None: ...


class ProjectSyncWorkflow:
    """Brings one project's folder in sync with its GitHub repository.

    Attributes:
        config (Config): Account, credentials and ignore patterns.
        github (GitHubClient): The remote hosting API.
        network (NetworkStatus): Reachability flag checked before any call.
        transfer (TransferStats): Running counters updated by commits.
        settle_delay (float): Pause after creating a repository so the API
                              is ready for the first push.
    """

    def __init__(
        self,
        config: Config,
        github: GitHubClient,
        network: NetworkStatus,
        transfer: TransferStats,
        settle_delay: float = 1.0,
    ):
        self.config = config
        self.github = github
        self.network = network
        self.transfer = transfer
        self.settle_delay = settle_delay

    def repo_for(self, path: Path) -> GitRepo:
        return GitRepo(path)

    def remote_url(self, repo_name: str) -> str:
        return build_remote_url(self.config.username, self.config.token, repo_name)

    async def run(self, path: Path, listener: ProgressListener) -> bool:
        """Syncs a project folder to GitHub.

        Args:
            path (Path): The project folder.
            listener (ProgressListener): Receives a ``ProgressEvent`` per step.

        Returns:
            bool: True if the project ended up pushed, False on any fatal error.
        """
        name = path.name

        def report(operation: str, percent: float) -> None:
            listener.on_progress(ProgressEvent(path, operation, percent))

        def fail(operation: str, message: str) -> bool:
            report(operation, 0)
            listener.on_error(path, redact(message, self.config.token))
            return False

        try:
            return await self._run(path, name, report, fail)
        except Exception as e:
            message = redact(str(e), self.config.token)
            logger.exception(f"CRITICAL {name}: {message}")
            report("Unexpected error", 0)
            listener.on_error(path, message)
            return False

    async def _run(self, path: Path, name: str, report, fail) -> bool:
        # 1. Preconditions.
        report("Checking folder...", 5.0)
        if not await asyncio.to_thread(path.is_dir):
            logger.error(f"MISSING {name}: Project folder not found: {path}")
            return fail("Folder not found", "Project folder not found")

        self.transfer.current_file = name
        repo_name = sanitize_repo_name(name)
        if not repo_name:
            logger.error(
                f"SKIPPED {name}: Folder name has no valid repository characters."
            )
            return fail(
                "Invalid repository name",
                "Folder name has no valid repository characters",
            )

        report("Checking GitHub repository...", 15.0)
        if not self.network.is_online:
            logger.error(f"OFFLINE {repo_name}: No network connection.")
            return fail("No network connection", "No network connection")

        # 2. Remote existence.
        try:
            exists = await self.github.get_repository(repo_name)
        except GitHubError as e:
            logger.error(f"GITHUB ERROR {repo_name}: {e}")
            return fail(_github_failure(e, "GitHub connection error"), str(e))

        # 3. Remote creation.
        if not exists:
            report("Creating GitHub repository...", 25.0)
            logger.info(f"CREATE {repo_name}: Creating repository...")
            try:
                created = await self.github.create_repository(repo_name)
            except GitHubError as e:
                logger.error(f"CREATE ERROR {repo_name}: {e}")
                return fail(_github_failure(e, "Repository creation error"), str(e))
            if created:
                logger.info(f"CREATED {repo_name}: Repository created.", extra=SUCCESS)
                if self.settle_delay:
                    await asyncio.sleep(self.settle_delay)
            report("Repository created", 35.0)
        else:
            report("Repository exists", 35.0)

        # 4. Local bootstrap.
        report("Checking local repository...", 45.0)
        repo = self.repo_for(path)
        if not await repo.is_repo():
            report("Initializing local repository...", 55.0)
            logger.info(f"INIT {repo_name}: Initializing git repository...")
            try:
                await self.bootstrap_repo(repo, repo_name)
            except (GitError, OSError) as e:
                logger.error(
                    f"INIT ERROR {repo_name}: {redact(str(e), self.config.token)}"
                )
                return fail("Git initialization error", str(e))
            report("Local repository initialized", 65.0)
        else:
            report("Local repository exists", 65.0)

        # 5. Remote URL.
        report("Updating remote URL...", 70.0)
        try:
            await repo.remove_remote()
            await repo.add_remote(self.remote_url(repo_name))
            report("Remote URL updated", 75.0)
        except GitError as e:
            logger.warning(
                f"REMOTE WARNING {repo_name}: Could not update remote URL. "
                f"{redact(str(e), self.config.token)}"
            )
            report("Remote URL warning", 75.0)

        # 6. Commit.
        report("Checking for changes...", 80.0)
        try:
            changed = await repo.status_porcelain()
            if changed:
                count = len(changed)
                self.transfer.total_files += count
                report(f"Committing {count} files...", 85.0)
                logger.info(f"COMMIT {repo_name}: Committing {count} changed files.")
                await repo.add_all()
                timestamp = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
                await repo.commit(f"Auto sync - {timestamp}")
                report("Changes committed", 90.0)
            else:
                report("No changes found", 85.0)
        except GitError as e:
            logger.error(f"COMMIT ERROR {repo_name}: {e}")
            return fail("Commit error", str(e))

        # 7. Push.
        report("Pushing to GitHub...", 95.0)
        try:
            await repo.push(DEFAULT_BRANCH)
        except GitError as e:
            if not e.mentions_upstream:
                logger.error(
                    f"PUSH ERROR {repo_name}: {redact(str(e), self.config.token)}"
                )
                return fail("Upload error", str(e))
            report("Initial upload...", 98.0)
            try:
                await repo.push(DEFAULT_BRANCH, set_upstream=True)
            except GitError as upstream_error:
                logger.error(
                    f"PUSH ERROR {repo_name}: "
                    f"{redact(str(upstream_error), self.config.token)}"
                )
                return fail("Upload error", str(upstream_error))
            logger.info(f"SUCCESS {repo_name}: Initial push complete.", extra=SUCCESS)
            report("Initial upload complete", 100.0)
            return True

        if changed:
            logger.info(
                f"SUCCESS {repo_name}: Synced ({len(changed)} files uploaded).",
                extra=SUCCESS,
            )
            report("Completed successfully", 100.0)
        else:
            logger.info(f"UP TO DATE {repo_name}: No changes.")
            report("No changes - up to date", 100.0)
        return True

    async def bootstrap_repo(self, repo: GitRepo, repo_name: str) -> None:
        """Turns a plain folder into a repository with one commit on ``main``.

        Args:
            repo (GitRepo): The folder to initialize.
            repo_name (str): The sanitized remote repository name.

        Raises:
            GitError: If any git step fails.
            OSError: If the ignore file cannot be written.
        """
        username = self.config.username
        await repo.init()
        await repo.add_config("user.name", username)
        await repo.add_config("user.email", f"{username}@users.noreply.github.com")

        gitignore = repo.path / ".gitignore"
        content = "\n".join(self.config.ignored_patterns) + "\n"
        await asyncio.to_thread(gitignore.write_text, content, encoding="utf-8")

        await repo.add_all()
        await repo.commit("Initial commit - Auto sync setup")
        await repo.rename_branch(DEFAULT_BRANCH)
        await repo.add_remote(self.remote_url(repo_name))


def _github_failure(error: GitHubError, default: str) -> str:
    if isinstance(error, GitHubRateLimitError):
        return "GitHub rate limit exceeded"
    return default
