import pytest
from fastapi.testclient import TestClient

from boardsync.api.deps import get_board_sync_service, get_scope
from boardsync.main import app
from boardsync.schemas.common import Platform
from boardsync.schemas.sync import SyncScope
from boardsync.services.board_sync import BoardSyncService
from boardsync.storage.memory import MemoryStorage
from tests.fakes import FakeConnector

SCOPE = SyncScope(user_id=1, task_project_id="BOARD", issue_project_id="ARD", actor="tester@example.com")


@pytest.fixture
def scope() -> SyncScope:
    return SCOPE


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def board() -> FakeConnector:
    return FakeConnector(Platform.ASANA, SCOPE.task_project_id)


@pytest.fixture
def tracker() -> FakeConnector:
    return FakeConnector(Platform.YOUTRACK, SCOPE.issue_project_id)


@pytest.fixture
def service(storage, board, tracker) -> BoardSyncService:
    return BoardSyncService(storage, board, tracker)


@pytest.fixture
def client(service, scope) -> TestClient:
    # Override dependencies: in-memory storage and fake connectors, no lifespan
    app.dependency_overrides[get_board_sync_service] = lambda: service
    app.dependency_overrides[get_scope] = lambda: scope
    yield TestClient(app)
    app.dependency_overrides.clear()
