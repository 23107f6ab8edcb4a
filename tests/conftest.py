import importlib
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import markpress.models  # noqa: E402,F401 - registers tables
import markpress.storage as storage  # noqa: E402

BASE_URL = "http://cdn.test"
BUCKET = "files"
ADMIN = {"x-admin-password": "test-admin"}


class FlakyStore(storage.LocalBlobStore):
    """LocalBlobStore that fails chosen operations on demand."""

    def __init__(self, root, **kwargs):
        super().__init__(root, **kwargs)
        self.fail_copy = set()
        self.fail_delete = set()
        self.fail_list = False
        self.calls = []

    def copy(self, src, dst):
        self.calls.append(("copy", src, dst))
        if src in self.fail_copy:
            raise storage.BlobStoreError("copy", src, "injected copy failure")
        super().copy(src, dst)

    def delete(self, paths):
        self.calls.append(("delete", tuple(paths)))
        for path in paths:
            if path in self.fail_delete:
                raise storage.BlobStoreError("delete", path, "injected delete failure")
        super().delete(paths)

    def list(self, prefix):
        self.calls.append(("list", prefix))
        if self.fail_list:
            raise storage.BlobStoreError("list", prefix, "injected list failure")
        return super().list(prefix)


@pytest.fixture
def store(tmp_path):
    return FlakyStore(tmp_path / "storage", base_url=BASE_URL, bucket=BUCKET)


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'unit.db'}", connect_args={"check_same_thread": False})
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


def url(path: str) -> str:
    return storage.public_url(path, BASE_URL, BUCKET)


def put_image(store, path: str, data: bytes = b"\x89PNG") -> str:
    store.put(path, data)
    return path


def _prepare_client(tmp_path, monkeypatch, store, *, rate_limit="50", max_size=str(1024 * 1024), strict="false", lock_step="60"):
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("DB_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("ENABLE_CLEANER", "false")
    monkeypatch.setenv("RATE_LIMIT_PER_MINUTE", rate_limit)
    monkeypatch.setenv("MAX_FILE_SIZE_BYTES", max_size)
    monkeypatch.setenv("CACHE_MAX_AGE_SECONDS", "120")
    monkeypatch.setenv("ADMIN_PASSWORD", "test-admin")
    monkeypatch.setenv("ADMIN_LOCK_STEP_SECONDS", lock_step)
    monkeypatch.setenv("STRICT_PROMOTION", strict)
    monkeypatch.setenv("REDIS_URL", "")

    # Reload modules so configuration changes take effect cleanly.
    module_order = [
        "markpress.config",
        "markpress.core.metrics",
        "markpress.db",
        "markpress.services.posts",
        "markpress.api.deps",
        "markpress.api.routes",
        "markpress.api.posts",
        "markpress.main",
    ]

    for module_name in module_order:
        module = importlib.import_module(module_name)
        importlib.reload(module)

    main = sys.modules["markpress.main"]
    deps = sys.modules["markpress.api.deps"]
    main.app.dependency_overrides[deps.get_blob_store] = lambda: store

    test_client = TestClient(main.app)
    test_client.store = store  # type: ignore[attr-defined]
    return test_client


@pytest.fixture
def prepare_client(tmp_path, monkeypatch, store):
    def _factory(**kwargs):
        return _prepare_client(tmp_path, monkeypatch, store, **kwargs)

    return _factory


@pytest.fixture
def client(prepare_client):
    with prepare_client() as c:
        yield c
