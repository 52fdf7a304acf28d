import os
import tempfile
import asyncio
import pytest
from pathlib import Path
from moto import mock_aws
from fastapi.testclient import TestClient

# Set test environment variables BEFORE importing app modules
os.environ["TESTING"] = "true"

# Dummy AWS credentials for moto
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["AWS_SECURITY_TOKEN"] = "testing"
os.environ["AWS_SESSION_TOKEN"] = "testing"
os.environ["AWS_REGION"] = "us-east-1"
os.environ["SESSIONS_TABLE"] = "CaptionSessions"
os.environ["JOBS_TABLE"] = "CaptionJobs"
# Clear the AWS_ENDPOINT_URL so moto mocks are used instead of localstack
os.environ.pop("AWS_ENDPOINT_URL", None)

# Keep the lifespan's default session store out of the working tree
_default_store = tempfile.mkdtemp(prefix="caption-service-")
os.environ["UPLOADS_DIR"] = os.path.join(_default_store, "uploads")
os.environ["RESULTS_DIR"] = os.path.join(_default_store, "results")

from caption_service.main import app
from caption_service.storage.dynamodb import DynamoDBService
from caption_service.storage.filesystem import SessionStorage
from caption_service.dependencies import get_storage, get_captioner_factory


class FakeCaptioner:
    """Stands in for the OpenAI captioner; records how many calls overlap."""

    def __init__(self, fail_on=(), delay: float = 0.0):
        self.fail_on = set(fail_on)
        self.delay = delay
        self.calls = []
        self.events = []
        self.active = 0
        self.max_active = 0
        self.closed = False

    async def caption(self, image_path: Path, max_tokens: int) -> str:
        self.calls.append((image_path.name, max_tokens))
        self.events.append(("start", image_path.name))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            if image_path.name in self.fail_on:
                raise RuntimeError(f"model refused {image_path.name}")
            return f"  photo, {image_path.stem}  "
        finally:
            self.active -= 1
            self.events.append(("end", image_path.name))

    async def close(self):
        self.closed = True


@pytest.fixture(scope="function")
def aws_credentials():
    """Mocked AWS Credentials for moto."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"


@pytest.fixture(scope="function")
def storage(tmp_path):
    return SessionStorage(tmp_path / "uploads", tmp_path / "results")


@pytest.fixture(scope="function")
def db(aws_credentials):
    with mock_aws():
        yield DynamoDBService()


@pytest.fixture(scope="function")
def fake_captioner():
    return FakeCaptioner()


@pytest.fixture(scope="function")
def test_client(aws_credentials, storage, fake_captioner):
    with mock_aws():
        # Tables are created by DynamoDBService inside the lifespan, within the moto context
        app.dependency_overrides[get_storage] = lambda: storage
        app.dependency_overrides[get_captioner_factory] = lambda: (lambda api_key: fake_captioner)
        try:
            with TestClient(app) as client:
                yield client
        finally:
            app.dependency_overrides.clear()
