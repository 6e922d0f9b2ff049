import logging

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from upload_service import logger as log
from upload_service.config import Settings
from upload_service.database import VideoStore
from upload_service.main import create_app
from upload_service.storage import build_reference, parse_reference


class FakeStorage:
    """In-memory object store with signed-looking download URLs"""

    def __init__(self, bucket="videos"):
        self.bucket = bucket
        self.objects = {}
        self.put_error = None
        self.presign_error = None
        self._signatures = 0

    def put_object(self, key, body, size, content_type=None):
        if self.put_error is not None:
            raise self.put_error
        self.objects[key] = {"body": body.read(), "size": size, "content_type": content_type}

    def reference_for(self, key):
        return build_reference(self.bucket, key)

    def resolve_url(self, reference):
        bucket, key = parse_reference(reference)
        if self.presign_error is not None:
            raise self.presign_error
        self._signatures += 1
        return (
            f"http://minio.test:9000/{bucket}/{key}"
            f"?X-Amz-Expires=3600&X-Amz-Signature={self._signatures:064x}"
        )


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def client_error(code="InternalError", operation="PutObject", message="boom"):
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


@pytest.fixture
def settings():
    return Settings(log_format="json", log_level="debug", crash_delay_seconds=2.0)


@pytest.fixture
def store():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    video_store = VideoStore(engine)
    video_store.create_schema()
    yield video_store
    engine.dispose()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def app(settings, storage, store):
    return create_app(settings, storage=storage, videos=store)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def log_records(app):
    handler = ListHandler()
    target = logging.getLogger(log.LOGGER_NAME)
    target.addHandler(handler)
    yield handler.records
    target.removeHandler(handler)


@pytest.fixture
def exit_calls(monkeypatch):
    calls = []
    monkeypatch.setattr(log, "_exit", calls.append)
    return calls
