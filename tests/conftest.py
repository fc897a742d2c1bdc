import os
import sys
from pathlib import Path

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

TEST_DATABASE_URL = "sqlite://"
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)

import sync_store.models  # noqa: E402,F401
from sync_store.database import Base, create_engine_for_url, get_db  # noqa: E402
from sync_store.main import app  # noqa: E402
from sync_store.schemas import SyncConfigDocument  # noqa: E402


def _create_test_sessionmaker(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture(scope="session")
def engine():
    engine = create_engine_for_url(TEST_DATABASE_URL)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(engine) -> Generator[Session, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    connection = engine.connect()

    TestingSessionLocal = _create_test_sessionmaker(connection)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        connection.close()


class PrefixedTestClient(TestClient):
    api_prefix = "/api"

    def request(self, method: str, url: str, *args, **kwargs):  # type: ignore[override]
        if url.startswith("/") and not url.startswith("/health"):
            url = f"{self.api_prefix}{url}"
        return super().request(method, url, *args, **kwargs)


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    client = PrefixedTestClient(app)
    try:
        yield client
    finally:
        app.dependency_overrides.pop(get_db, None)


def build_config_payload() -> dict:
    """A document exercising every section of the format, in its camelCase wire shape."""
    return {
        "version": 1,
        "id": "platform-sync",
        "name": "Platform sync",
        "fileLists": [
            {
                "id": "shared",
                "name": "Shared files",
                "description": "Files every service carries",
                "files": [
                    {"src": "templates/LICENSE", "dest": "LICENSE", "delete": False},
                    {"src": "", "dest": "OLD_NOTICE.md", "delete": True},
                ],
            }
        ],
        "directoryLists": [
            {
                "id": "ci",
                "name": "CI workflows",
                "description": "",
                "directories": [
                    {
                        "src": "ci/workflows",
                        "dest": ".github/workflows",
                        "exclude": ["*.bak"],
                        "includeOnly": ["*.yml"],
                        "preserveStructure": True,
                        "includeHidden": None,
                        "delete": False,
                        "module": None,
                        "transform": {"repoName": True, "variables": {}},
                    }
                ],
            }
        ],
        "groups": [
            {
                "id": "A",
                "name": "Base",
                "description": "Foundation files",
                "priority": 10,
                "enabled": True,
                "dependsOn": [],
                "source": {
                    "repo": "acme/templates",
                    "branch": "main",
                    "blobSizeLimit": "10m",
                    "securityEmail": "security@example.com",
                    "supportEmail": "",
                },
                "global": {
                    "prLabels": ["sync"],
                    "prAssignees": [],
                    "prReviewers": ["octocat"],
                    "prTeamReviewers": [],
                },
                "defaults": {
                    "branchPrefix": "chore/sync",
                    "prLabels": [],
                    "prAssignees": [],
                    "prReviewers": [],
                    "prTeamReviewers": ["acme/platform"],
                },
                "targets": [
                    {
                        "repo": "acme/service-one",
                        "branch": "",
                        "blobSizeLimit": "",
                        "securityEmail": "",
                        "supportEmail": "help@example.com",
                        "prLabels": [],
                        "prAssignees": ["octocat"],
                        "prReviewers": [],
                        "prTeamReviewers": [],
                        "files": [
                            {"src": "README.tmpl", "dest": "README.md", "delete": False}
                        ],
                        "directories": [
                            {
                                "src": "modules/shared",
                                "dest": "vendor/shared",
                                "exclude": [],
                                "includeOnly": [],
                                "preserveStructure": None,
                                "includeHidden": False,
                                "delete": False,
                                "module": {
                                    "type": "go",
                                    "version": "v1.2.0",
                                    "checkTags": True,
                                    "updateRefs": False,
                                },
                                "transform": {
                                    "repoName": False,
                                    "variables": {"SERVICE": "one"},
                                },
                            }
                        ],
                        "fileListRefs": ["shared"],
                        "directoryListRefs": ["ci"],
                        "transform": {"repoName": True, "variables": {"TEAM": "platform"}},
                    }
                ],
            },
            {
                "id": "B",
                "name": "Docs",
                "description": "",
                "priority": 5,
                "enabled": None,
                "dependsOn": ["A"],
                "source": {
                    "repo": "acme/templates",
                    "branch": "docs",
                    "blobSizeLimit": "",
                    "securityEmail": "",
                    "supportEmail": "",
                },
                "targets": [
                    {
                        "repo": "acme/service-two",
                        "branch": "develop",
                        "files": [{"src": "docs/CONTRIBUTING.md", "dest": "CONTRIBUTING.md"}],
                        "fileListRefs": ["shared"],
                    }
                ],
            },
            {
                "id": "C",
                "name": "Release",
                "description": "",
                "priority": 0,
                "enabled": False,
                "dependsOn": ["A", "B"],
                "source": {"repo": "acme/templates", "branch": "release"},
                "targets": [],
            },
        ],
    }


@pytest.fixture()
def config_payload() -> dict:
    return build_config_payload()


@pytest.fixture()
def config_document(config_payload: dict) -> SyncConfigDocument:
    return SyncConfigDocument.model_validate(config_payload)
