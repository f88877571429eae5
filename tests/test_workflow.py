import logging
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from git_autosync.config import Config
from git_autosync.constants import APP_NAME
from git_autosync.git_wrapper import GitError
from git_autosync.github import GitHubAuthError, GitHubClient, GitHubRateLimitError
from git_autosync.network import NetworkStatus
from git_autosync.registry import ProjectStatus, Registry
from git_autosync.scanner import DiscoveryScanner
from git_autosync.scheduler import Scheduler, SyncQueue
from git_autosync.status import StatusBoard, TransferStats
from git_autosync.system import Notifier
from git_autosync.workflow import ProgressEvent, ProjectSyncWorkflow

TOKEN = "ghp_secret"


class FakeRepo:
    """Records the git operations a workflow performs."""

    def __init__(
        self,
        path: Path,
        is_repo: bool = True,
        changes: list[str] | None = None,
        push_errors: list[GitError] | None = None,
    ):
        self.path = path
        self._is_repo = is_repo
        self.changes = changes or []
        self.push_errors = push_errors or []
        self.calls: list[tuple] = []

    async def is_repo(self) -> bool:
        return self._is_repo

    async def init(self) -> None:
        self.calls.append(("init",))

    async def add_config(self, key: str, value: str) -> None:
        self.calls.append(("config", key, value))

    async def add_all(self) -> None:
        self.calls.append(("add",))

    async def commit(self, message: str) -> None:
        self.calls.append(("commit", message))

    async def rename_branch(self, name: str = "main") -> None:
        self.calls.append(("branch", name))

    async def add_remote(self, url: str, name: str = "origin") -> None:
        self.calls.append(("add_remote", name, url))

    async def remove_remote(self, name: str = "origin") -> bool:
        self.calls.append(("remove_remote", name))
        return True

    async def status_porcelain(self) -> list[str]:
        return self.changes

    async def push(self, branch: str = "main", remote: str = "origin", set_upstream: bool = False) -> None:
        self.calls.append(("push", remote, branch, set_upstream))
        if self.push_errors:
            raise self.push_errors.pop(0)


class RecordingListener:
    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []
        self.errors: list[str] = []

    def on_progress(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def on_error(self, path: Path, message: str) -> None:
        self.errors.append(message)

    @property
    def percents(self) -> list[float]:
        return [e.percent for e in self.events]

    @property
    def last(self) -> ProgressEvent:
        return self.events[-1]


@pytest.fixture
def github() -> MagicMock:
    client = MagicMock(spec=GitHubClient)
    client.get_repository = AsyncMock(return_value=True)
    client.create_repository = AsyncMock(return_value=True)
    return client


@pytest.fixture
def network() -> NetworkStatus:
    return NetworkStatus(is_online=True)


@pytest.fixture
def workflow(github: MagicMock, network: NetworkStatus) -> ProjectSyncWorkflow:
    config = Config(username="octocat", token=TOKEN, watch_paths=["/unused"])
    return ProjectSyncWorkflow(config, github, network, TransferStats(), settle_delay=0)


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    path = tmp_path / "My Project"
    path.mkdir()
    return path


@pytest.mark.asyncio
async def test_new_folder_gets_repository_and_first_push(
    mocker: MagicMock,
    workflow: ProjectSyncWorkflow,
    github: MagicMock,
    project_dir: Path,
) -> None:
    """Verifies the full path for a folder that has never been synced.

    The remote is created, the folder is initialized with an ignore file and a
    first commit on ``main``, and the branch is pushed.

    Args:
        mocker (MagicMock): Pytest fixture for mocking.
        workflow (ProjectSyncWorkflow): The workflow under test.
        github (MagicMock): The stubbed API client.
        project_dir (Path): A plain folder.
    """
    github.get_repository.return_value = False
    repo = FakeRepo(project_dir, is_repo=False)
    mocker.patch.object(workflow, "repo_for", return_value=repo)
    listener = RecordingListener()

    assert await workflow.run(project_dir, listener) is True

    github.get_repository.assert_awaited_once_with("my-project")
    github.create_repository.assert_awaited_once_with("my-project")

    remote = f"https://{TOKEN}@github.com/octocat/my-project.git"
    assert repo.calls[:7] == [
        ("init",),
        ("config", "user.name", "octocat"),
        ("config", "user.email", "octocat@users.noreply.github.com"),
        ("add",),
        ("commit", "Initial commit - Auto sync setup"),
        ("branch", "main"),
        ("add_remote", "origin", remote),
    ]
    assert repo.calls[7:] == [
        ("remove_remote", "origin"),
        ("add_remote", "origin", remote),
        ("push", "origin", "main", False),
    ]

    gitignore = (project_dir / ".gitignore").read_text().splitlines()
    assert "**/node_modules/**" in gitignore
    assert len(gitignore) == 20

    assert listener.percents == [5, 15, 25, 35, 45, 55, 65, 70, 75, 80, 85, 95, 100]
    assert listener.last.operation == "No changes - up to date"
    assert listener.percents == sorted(listener.percents)


@pytest.mark.asyncio
async def test_existing_repository_commits_changes(
    mocker: MagicMock,
    workflow: ProjectSyncWorkflow,
    github: MagicMock,
    project_dir: Path,
) -> None:
    repo = FakeRepo(project_dir, changes=[" M main.py", "?? notes.md"])
    mocker.patch.object(workflow, "repo_for", return_value=repo)
    listener = RecordingListener()

    assert await workflow.run(project_dir, listener) is True

    github.create_repository.assert_not_awaited()
    commits = [call for call in repo.calls if call[0] == "commit"]
    assert len(commits) == 1
    assert commits[0][1].startswith("Auto sync - ")
    assert workflow.transfer.total_files == 2
    assert "Committing 2 files..." in [e.operation for e in listener.events]
    assert listener.last.operation == "Completed successfully"


@pytest.mark.asyncio
async def test_second_run_without_changes_makes_no_commit(
    mocker: MagicMock,
    workflow: ProjectSyncWorkflow,
    project_dir: Path,
) -> None:
    """Verifies that re-syncing an unchanged project creates no commit."""
    repo = FakeRepo(project_dir)
    mocker.patch.object(workflow, "repo_for", return_value=repo)

    assert await workflow.run(project_dir, RecordingListener()) is True
    assert await workflow.run(project_dir, RecordingListener()) is True

    assert not [call for call in repo.calls if call[0] == "commit"]
    assert [call for call in repo.calls if call[0] == "push"] == [
        ("push", "origin", "main", False)
    ] * 2


@pytest.mark.asyncio
async def test_offline_fails_before_any_remote_call(
    workflow: ProjectSyncWorkflow,
    github: MagicMock,
    network: NetworkStatus,
    project_dir: Path,
) -> None:
    network.is_online = False
    listener = RecordingListener()

    assert await workflow.run(project_dir, listener) is False

    github.get_repository.assert_not_awaited()
    assert listener.last.operation == "No network connection"
    assert listener.last.percent == 0


@pytest.mark.asyncio
async def test_missing_upstream_is_retried_with_tracking(
    mocker: MagicMock,
    workflow: ProjectSyncWorkflow,
    project_dir: Path,
) -> None:
    """Verifies that a push rejected for lack of upstream is retried with -u."""
    error = GitError("Git error: fatal: The current branch main has no upstream branch.")
    repo = FakeRepo(project_dir, push_errors=[error])
    mocker.patch.object(workflow, "repo_for", return_value=repo)
    listener = RecordingListener()

    assert await workflow.run(project_dir, listener) is True

    pushes = [call for call in repo.calls if call[0] == "push"]
    assert pushes == [("push", "origin", "main", False), ("push", "origin", "main", True)]
    assert listener.percents[-2:] == [98, 100]
    assert listener.last.operation == "Initial upload complete"


@pytest.mark.asyncio
async def test_push_failure_is_reported_without_token(
    mocker: MagicMock,
    workflow: ProjectSyncWorkflow,
    project_dir: Path,
    caplog: pytest.LogCaptureFixture,
) -> None:
    error = GitError(
        f"Git error: unable to access 'https://{TOKEN}@github.com/octocat/my-project.git/'"
    )
    repo = FakeRepo(project_dir, push_errors=[error])
    mocker.patch.object(workflow, "repo_for", return_value=repo)
    listener = RecordingListener()

    with caplog.at_level(logging.ERROR, logger=APP_NAME):
        assert await workflow.run(project_dir, listener) is False

    assert listener.last.operation == "Upload error"
    assert "PUSH ERROR my-project" in caplog.text
    assert TOKEN not in caplog.text
    assert listener.errors and TOKEN not in listener.errors[0]


@pytest.mark.asyncio
async def test_invalid_token_aborts(
    workflow: ProjectSyncWorkflow,
    github: MagicMock,
    project_dir: Path,
) -> None:
    github.get_repository.side_effect = GitHubAuthError("GitHub token is invalid.", 401)
    listener = RecordingListener()

    assert await workflow.run(project_dir, listener) is False
    assert listener.last.operation == "GitHub connection error"


@pytest.mark.asyncio
async def test_creation_failure_aborts(
    workflow: ProjectSyncWorkflow,
    github: MagicMock,
    project_dir: Path,
) -> None:
    github.get_repository.return_value = False
    github.create_repository.side_effect = GitHubAuthError("bad", 401)
    listener = RecordingListener()

    assert await workflow.run(project_dir, listener) is False
    assert listener.last.operation == "Repository creation error"
    assert listener.errors == ["bad"]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [403, 429])
async def test_rate_limited_creation_fails_project(
    workflow: ProjectSyncWorkflow,
    github: MagicMock,
    project_dir: Path,
    status: int,
) -> None:
    """Verifies that an exhausted rate limit is reported apart from a bad token.

    Args:
        workflow (ProjectSyncWorkflow): The workflow under test.
        github (MagicMock): GitHub client stand-in.
        project_dir (Path): The project folder.
        status (int): The HTTP status returned by the API.
    """
    github.get_repository.return_value = False
    github.create_repository.side_effect = GitHubRateLimitError(
        "GitHub API rate limit exceeded.", status
    )
    listener = RecordingListener()

    assert await workflow.run(project_dir, listener) is False
    assert listener.last.operation == "GitHub rate limit exceeded"
    assert listener.last.percent == 0
    assert listener.errors == ["GitHub API rate limit exceeded."]


@pytest.mark.asyncio
async def test_remote_update_failure_is_not_fatal(
    mocker: MagicMock,
    workflow: ProjectSyncWorkflow,
    project_dir: Path,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Verifies that a failed remote reconfiguration only warns and the push proceeds."""
    repo = FakeRepo(project_dir)
    repo.remove_remote = AsyncMock(side_effect=GitError("Git error: no such remote"))
    repo.add_remote = AsyncMock(side_effect=GitError("Git error: remote exists"))
    mocker.patch.object(workflow, "repo_for", return_value=repo)
    listener = RecordingListener()

    with caplog.at_level(logging.WARNING, logger=APP_NAME):
        assert await workflow.run(project_dir, listener) is True

    assert "REMOTE WARNING my-project" in caplog.text
    assert "Remote URL warning" in [e.operation for e in listener.events]
    assert ("push", "origin", "main", False) in repo.calls
    assert listener.errors == []


@pytest.mark.asyncio
async def test_repository_name_taken_continues(
    mocker: MagicMock,
    workflow: ProjectSyncWorkflow,
    github: MagicMock,
    project_dir: Path,
) -> None:
    """Verifies that an 'already exists' answer still leads to a push."""
    github.get_repository.return_value = False
    github.create_repository.return_value = False
    repo = FakeRepo(project_dir)
    mocker.patch.object(workflow, "repo_for", return_value=repo)

    assert await workflow.run(project_dir, RecordingListener()) is True
    assert ("push", "origin", "main", False) in repo.calls


@pytest.mark.asyncio
async def test_missing_folder(workflow: ProjectSyncWorkflow, tmp_path: Path) -> None:
    listener = RecordingListener()
    assert await workflow.run(tmp_path / "gone", listener) is False
    assert listener.last.operation == "Folder not found"


@pytest.mark.asyncio
async def test_folder_name_without_valid_characters(
    workflow: ProjectSyncWorkflow, github: MagicMock, tmp_path: Path
) -> None:
    path = tmp_path / "!!!"
    path.mkdir()
    assert await workflow.run(path, RecordingListener()) is False
    github.get_repository.assert_not_awaited()


@pytest.mark.asyncio
async def test_unexpected_error_is_contained(
    mocker: MagicMock,
    workflow: ProjectSyncWorkflow,
    project_dir: Path,
) -> None:
    repo = FakeRepo(project_dir)
    repo.status_porcelain = AsyncMock(side_effect=KeyError("surprise"))
    mocker.patch.object(workflow, "repo_for", return_value=repo)
    listener = RecordingListener()

    assert await workflow.run(project_dir, listener) is False
    assert listener.last.operation == "Unexpected error"
    assert listener.errors and "surprise" in listener.errors[0]


@pytest.mark.asyncio
async def test_discovered_plain_folder_ends_synced(
    mocker: MagicMock,
    workflow: ProjectSyncWorkflow,
    github: MagicMock,
    registry: Registry,
    queue: SyncQueue,
    board: StatusBoard,
    notifier: Notifier,
    tmp_path: Path,
) -> None:
    """Verifies a new folder going from discovery to a pushed repository."""
    root = tmp_path / "Projects"
    app = root / "MyApp"
    app.mkdir(parents=True)
    github.get_repository.return_value = False
    repo = FakeRepo(app, is_repo=False)
    mocker.patch.object(workflow, "repo_for", return_value=repo)

    scanner = DiscoveryScanner(registry, queue, board, notifier, [str(root)])
    scheduler = Scheduler(registry, queue, workflow, board, notifier, pause=0)

    await scanner.scan(full=True)
    assert registry.get(app).status == ProjectStatus.NEEDS_REPO
    assert app in queue

    await scheduler.tick()

    project = registry.get(app)
    assert project.status == ProjectStatus.SYNCED
    assert project.has_git_repo
    github.create_repository.assert_awaited_once_with("myapp")
    assert ("init",) in repo.calls


@pytest.mark.asyncio
async def test_offline_project_stays_registered_with_error(
    workflow: ProjectSyncWorkflow,
    network: NetworkStatus,
    registry: Registry,
    queue: SyncQueue,
    board: StatusBoard,
    notifier: Notifier,
    project_dir: Path,
    make_project,
) -> None:
    network.is_online = False
    registry.add(make_project(project_dir))
    queue.add(project_dir)
    scheduler = Scheduler(registry, queue, workflow, board, notifier, pause=0)

    await scheduler.tick()

    project = registry.get(project_dir)
    assert project is not None
    assert project.status == ProjectStatus.ERROR
    assert project.message == "Sync error"
    assert project.error == "No network connection"
