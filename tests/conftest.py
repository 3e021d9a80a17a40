"""Pytest configuration and fixtures for the pin_upload tests."""

import hashlib
import re
import threading
from collections.abc import Callable, Generator
from pathlib import Path

import httpx
import pytest

from pin_upload import config
from pin_upload.services import log_service
from pin_upload.services.log_service import LogService

_ENV_VARS = [
    config.ENV_PROJECT_ID,
    config.ENV_PROJECT_SECRET,
    config.ENV_API_URL,
    config.ENV_PIN,
    config.ENV_URL_PREFIX,
    config.ENV_OUTPUT_DIR,
    config.ENV_MAX_CONCURRENT_JOBS,
    config.ENV_REQUEST_TIMEOUT,
]


@pytest.fixture(autouse=True)
def isolated_settings(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Generator[Path, None, None]:
    """Point settings and logs at tmp_path and drop cached singletons."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    log_dir = tmp_path / "logs"
    monkeypatch.setenv(config.ENV_SETTINGS_FILE, str(tmp_path / "settings.json"))
    monkeypatch.setenv(config.ENV_LOG_DIRECTORY, str(log_dir))

    config.Settings._instance = None
    log_service.reset_log_service()

    yield log_dir

    config.Settings._instance = None
    log_service.reset_log_service()


@pytest.fixture
def log_dir(isolated_settings: Path) -> Path:
    return isolated_settings


@pytest.fixture
def logs(log_dir: Path) -> LogService:
    """Log service writing under the test's tmp_path."""
    return LogService(log_dir)


@pytest.fixture
def upload_dir(tmp_path: Path) -> Path:
    """Directory with 1.png, 2.png, notanumber.png and a sub-directory."""
    directory = tmp_path / "images"
    directory.mkdir()
    (directory / "1.png").write_bytes(b"\x89PNG first")
    (directory / "2.png").write_bytes(b"\x89PNG second")
    (directory / "notanumber.png").write_bytes(b"\x89PNG skipped")
    (directory / "sub").mkdir()
    (directory / "sub" / "3.png").write_bytes(b"\x89PNG nested")
    return directory


@pytest.fixture
def numbered_dir(tmp_path: Path) -> Callable[[int], Path]:
    """Factory for a directory holding 1.bin .. n.bin."""

    def make(count: int) -> Path:
        directory = tmp_path / f"numbered-{count}"
        directory.mkdir()
        for i in range(1, count + 1):
            (directory / f"{i}.bin").write_bytes(f"payload {i}".encode())
        return directory

    return make


def fake_cid(filename: str) -> str:
    """Deterministic stand-in for a CID derived from the uploaded file name."""
    return "Qm" + hashlib.sha256(filename.encode()).hexdigest()[:44]


class FakeGateway:
    """httpx MockTransport handler imitating the /api/v0/add endpoint."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.fail_names: set[str] = set()
        self._lock = threading.Lock()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
        match = re.search(rb'filename="([^"]+)"', request.content)
        name = match.group(1).decode() if match else ""
        if name in self.fail_names:
            return httpx.Response(
                500, json={"Message": f"cannot add {name}", "Code": 0, "Type": "error"}
            )
        body = f'{{"Name":"{name}","Hash":"{fake_cid(name)}","Size":"42"}}\n'
        return httpx.Response(200, text=body)


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def gateway_client(fake_gateway: FakeGateway) -> Generator[httpx.Client, None, None]:
    """Gateway client backed by the fake gateway."""
    from pin_upload.services.gateway_service import create_gateway_client

    client = create_gateway_client(
        "https://ipfs.example.test:5001",
        "project",
        "secret",
        transport=httpx.MockTransport(fake_gateway),
    )
    yield client
    client.close()
