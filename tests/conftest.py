"""
Pytest configuration for the wisp test suite.

Configures:
- pytest-asyncio for async test support
- an in-memory SQLite project store
- capability fakes for GitHub, hosting and code generation
"""
import uuid
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from wisp.constants import DeploymentState
from wisp.database import Base
from wisp.models import User
from wisp.schemas.codegen import FileChange
from wisp.services.codegen import CodeGenerator
from wisp.services.github import GitHubClient, RepositoryContent, RepositoryFile
from wisp.services.hosting import HostingProvisioner
from wisp.services.orchestrator import PipelineConfig
from wisp.services.project_store import ProjectStore
from wisp.services.vercel import DeploymentCheck

pytest_plugins = ["pytest_asyncio"]


class SleepRecorder:
    """Stands in for asyncio.sleep and remembers every requested delay."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class RecordingStore(ProjectStore):
    """ProjectStore that keeps the sequence of status writes."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.history = []

    def update_status(self, project_id, status, message, error=None, deployed_at=None):
        project = super().update_status(project_id, status, message, error=error, deployed_at=deployed_at)
        self.history.append((status, message))
        return project

    def statuses(self):
        """Status sequence with consecutive repeats collapsed."""
        collapsed = []
        for status, _ in self.history:
            if not collapsed or collapsed[-1] != status:
                collapsed.append(status)
        return collapsed


def make_change(path="src/App.tsx", content="export default function App() {}", description="Render the app shell"):
    return FileChange(path=path, content=content, description=description)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return RecordingStore(session_factory)


def add_user(session_factory, email=None) -> User:
    db = session_factory()
    try:
        user = User(
            id=uuid.uuid4(),
            email=email or f"{uuid.uuid4().hex[:8]}@example.com",
            full_name="Test User",
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    finally:
        db.close()


@pytest.fixture
def user(session_factory):
    return add_user(session_factory)


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def github():
    client = MagicMock(spec=GitHubClient)
    client.owner = "productstudioinc"
    client.repo_url.side_effect = lambda name: f"https://github.com/productstudioinc/{name}"
    client.create_from_template.side_effect = (
        lambda name, private=False, template_ref=None: f"https://github.com/productstudioinc/{name}"
    )
    client.repository_exists.return_value = False
    client.fetch_content.return_value = RepositoryContent(
        tree="└── repo/\n    └── src\n        └── App.tsx\n",
        files=[RepositoryFile(path="src/App.tsx", content="export default function App() {}")],
    )
    client.commit_files.return_value = "c0ffee"
    client.delete_repository.return_value = None
    return client


@pytest.fixture
def hosting():
    provisioner = MagicMock(spec=HostingProvisioner)
    provisioner.create_hosting_project.return_value = "prj_123"
    provisioner.bind_domain.side_effect = lambda hosting_project_id, prefix: f"{prefix}.usewisp.app"
    provisioner.create_dns_record.return_value = "rec_456"
    provisioner.find_hosting_project.return_value = None
    provisioner.find_dns_record.return_value = None
    provisioner.verify_domain.return_value = True
    provisioner.get_deployment_state.return_value = DeploymentCheck(state=DeploymentState.READY, deployment_id="dpl_1")
    provisioner.delete_hosting_project.return_value = None
    provisioner.delete_dns_record.return_value = None
    return provisioner


@pytest.fixture
def codegen():
    generator = MagicMock(spec=CodeGenerator)
    generator.generate_changes.return_value = [make_change()]
    generator.generate_fix.return_value = [
        make_change(path="package.json", content="{}", description="Add the missing dependency")
    ]
    return generator


@pytest.fixture
def pipeline_config():
    return PipelineConfig(
        stage_max_attempts=3,
        stage_initial_delay=0.5,
        template_settle_seconds=0,
        domain_verify_attempts=10,
        domain_verify_interval=2.0,
        deployment_poll_attempts=20,
        deployment_poll_interval=5.0,
        max_fix_attempts=3,
        redeploy_wait_seconds=5.0,
    )
