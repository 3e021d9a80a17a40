"""Gateway service for adding and pinning files through the IPFS HTTP API."""

import base64
import json
import os
import threading
from pathlib import Path
from typing import Any, BinaryIO
from urllib.parse import urlparse

import httpx

from pin_upload.config import DEFAULT_API_URL
from pin_upload.services.task_pool import CancellationToken

ADD_ENDPOINT = "/api/v0/add"
DEFAULT_TIMEOUT = 300.0
# How often a waiting upload re-checks the cancellation token
CANCEL_POLL_INTERVAL = 0.05

__all__ = [
    "ADD_ENDPOINT",
    "DEFAULT_API_URL",
    "CancellableReader",
    "GatewayError",
    "UploadCancelledError",
    "add_file",
    "basic_auth",
    "create_gateway_client",
]


class GatewayError(Exception):
    """The gateway call failed or returned something unusable."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UploadCancelledError(GatewayError):
    """The upload was aborted because the run was cancelled."""


def basic_auth(project_id: str, project_secret: str) -> str:
    """Encode credentials for an ``Authorization: Basic`` header."""
    raw = f"{project_id}:{project_secret}".encode()
    return base64.b64encode(raw).decode("ascii")


def create_gateway_client(
    api_url: str,
    project_id: str,
    project_secret: str,
    timeout: float = DEFAULT_TIMEOUT,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    """Create an HTTP client for the gateway API.

    Args:
        api_url: Base URL of the API, e.g. https://ipfs.infura.io:5001
        project_id: Credential identifier
        project_secret: Credential secret
        timeout: Read/write timeout in seconds
        transport: Optional transport override (used by tests)

    Returns:
        Configured httpx.Client

    Raises:
        GatewayError: If the URL is not a usable http(s) URL
    """
    parsed = urlparse(api_url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise GatewayError(f"invalid gateway URL: {api_url!r}")

    headers = {"Authorization": f"Basic {basic_auth(project_id, project_secret)}"}
    try:
        return httpx.Client(
            base_url=api_url.strip().rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=30.0),
            transport=transport,
        )
    except (TypeError, ValueError) as e:
        raise GatewayError(f"cannot create gateway client: {e}") from e


class CancellableReader:
    """File wrapper that stops the request body as soon as the token is cancelled.

    httpx pulls the multipart body through ``read()`` one chunk at a time,
    so an in-flight upload aborts at the next chunk boundary.
    """

    def __init__(self, fileobj: BinaryIO, token: CancellationToken) -> None:
        self._file = fileobj
        self._token = token

    def read(self, size: int = -1) -> bytes:
        if self._token.cancelled:
            raise UploadCancelledError("upload cancelled")
        return self._file.read(size)

    def fileno(self) -> int:
        return self._file.fileno()

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        return self._file.seek(offset, whence)

    def tell(self) -> int:
        return self._file.tell()


def _parse_add_response(text: str) -> str:
    """Return the CID from an add response (newline-delimited JSON objects)."""
    cid = ""
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            entry: Any = json.loads(line)
        except json.JSONDecodeError as e:
            raise GatewayError(f"malformed gateway response: {line[:200]}") from e
        if isinstance(entry, dict) and entry.get("Hash"):
            cid = str(entry["Hash"])
    if not cid:
        raise GatewayError("gateway response did not contain a content identifier")
    return cid


def _raise_for_status(response: httpx.Response) -> None:
    if response.status_code < 400:
        return

    message = response.text.strip()
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("Message"):
        message = str(payload["Message"])

    raise GatewayError(
        f"gateway returned {response.status_code}: {message or response.reason_phrase}",
        status_code=response.status_code,
    )


def _post_cancellable(
    client: httpx.Client, token: CancellationToken, url: str, **kwargs: Any
) -> httpx.Response:
    """POST on a helper thread and stop waiting as soon as the token is cancelled.

    An abandoned request keeps running on its daemon thread until it finishes
    or times out. A response that arrives after cancellation is closed.

    Raises:
        UploadCancelledError: If the token is cancelled before the response arrives
    """
    done = threading.Event()
    outcome: dict[str, Any] = {}

    def send() -> None:
        try:
            response = client.post(url, **kwargs)
        except Exception as e:
            outcome["error"] = e
        else:
            if token.cancelled:
                response.close()
            outcome["response"] = response
        finally:
            done.set()

    threading.Thread(target=send, name="gateway-request", daemon=True).start()
    while not done.wait(CANCEL_POLL_INTERVAL):
        if token.cancelled:
            raise UploadCancelledError("upload cancelled")

    if "error" in outcome:
        raise outcome["error"]
    return outcome["response"]


def add_file(
    client: httpx.Client,
    path: str | Path,
    *,
    pin: bool = True,
    token: CancellationToken,
) -> str:
    """Add a file to the storage network and optionally pin it.

    The file is streamed from disk; it is never read into memory whole.

    Args:
        client: Client from create_gateway_client()
        path: Local file to upload
        pin: Whether the gateway should pin the content
        token: Run cancellation token

    Returns:
        The content identifier (CID) string

    Raises:
        UploadCancelledError: If the token was cancelled before the gateway answered
        GatewayError: On HTTP, transport or response-format errors
        OSError: If the file cannot be opened
    """
    if token.cancelled:
        raise UploadCancelledError("upload cancelled")

    path = Path(path)
    params = {"pin": "true" if pin else "false"}

    with open(path, "rb") as fh:
        reader = CancellableReader(fh, token)
        files = {"file": (path.name, reader, "application/octet-stream")}
        try:
            response = _post_cancellable(
                client, token, ADD_ENDPOINT, params=params, files=files
            )
        except UploadCancelledError:
            raise
        except httpx.HTTPError as e:
            if token.cancelled:
                raise UploadCancelledError("upload cancelled") from e
            raise GatewayError(f"gateway request failed: {e}") from e

    if token.cancelled:
        raise UploadCancelledError("upload cancelled")

    _raise_for_status(response)
    return _parse_add_response(response.text)
