"""
测试配置和 fixtures

- 远端：真实服务层 + 内存存储（不需要 PostgreSQL）
- 设备端：内存 SQLite 副本
"""

import pytest
from fastapi.testclient import TestClient

from domains.core import get_service_registry, reset_service_registry
from domains.note_hub.core.identity import StaticTokenIdentityProvider
from domains.sync_hub import (
    NotesRepository,
    ReplicaStore,
    StaticConnectivity,
    SyncOrchestrator,
)

from tests.fakes import FakeServer, InProcessRemote

OWNER = "alice"
TOKENS = {"token-alice": "alice", "token-bob": "bob"}


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def replica():
    store = ReplicaStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def remote(server):
    return InProcessRemote(server, OWNER)


@pytest.fixture
def connectivity():
    return StaticConnectivity(online=True)


@pytest.fixture
def offline_repo(replica):
    """不带远端的仓库：只写本地"""
    return NotesRepository(replica)


@pytest.fixture
def repo(replica, remote, connectivity):
    return NotesRepository(replica, remote, connectivity)


@pytest.fixture
def orchestrator(replica, remote, connectivity):
    return SyncOrchestrator(replica, remote, connectivity)


@pytest.fixture
def api_client(server):
    """注入内存服务的 FastAPI 客户端（不触发 lifespan，不连接数据库）"""
    from app.main import app

    reset_service_registry()
    registry = get_service_registry()
    registry.set("note_store", server.note_store)
    registry.set("label_store", server.label_store)
    registry.set("note_service", server.notes)
    registry.set("label_service", server.labels)
    registry.set("change_feed", server.feed)
    registry.set("identity_provider", StaticTokenIdentityProvider(TOKENS))

    client = TestClient(app)
    yield client
    client.close()
    reset_service_registry()


@pytest.fixture
def auth_headers():
    return {"Authorization": "Bearer token-alice"}
