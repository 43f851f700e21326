from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from googleapiclient.errors import HttpError

from app.services.drive_client import GoogleDriveClient, RemoteError


class DriveResponse(dict):
    """Minimal stand-in for the HTTP response HttpError wraps."""

    def __init__(self, status: int, reason: str):
        super().__init__(status=str(status))
        self.status = status
        self.reason = reason


def http_error(status: int, reason: str = "error") -> HttpError:
    return HttpError(DriveResponse(status, reason), b"")


def drive_settings(**overrides):
    values = dict(
        GOOGLE_SERVICE_ACCOUNT_PATH="",
        GOOGLE_OAUTH_REFRESH_TOKEN="",
        GOOGLE_OAUTH_CLIENT_ID="client-id",
        GOOGLE_OAUTH_CLIENT_SECRET="client-secret",
        GOOGLE_DRIVE_FOLDER_ID="folder-1",
        DRIVE_MAX_RETRIES=2,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def service():
    return MagicMock()


@pytest.fixture
def client(service):
    return GoogleDriveClient(service, folder_id="folder-1", max_retries=2, retry_base_delay=0)


@pytest.fixture
def local_file(tmp_path):
    path = tmp_path / "report.txt"
    path.write_bytes(b"hello")
    return path


@pytest.fixture(autouse=True)
def fake_media():
    with patch("app.services.drive_client.MediaFileUpload") as media:
        yield media


def test_requires_service_or_credentials():
    with pytest.raises(ValueError):
        GoogleDriveClient()


@pytest.mark.asyncio
async def test_upload_new(client, service, local_file):
    service.files.return_value.create.return_value.execute.return_value = {"id": "drive-1"}

    remote_id = await client.upload_new(local_file, "text/plain", "report.txt")

    assert remote_id == "drive-1"
    kwargs = service.files.return_value.create.call_args.kwargs
    assert kwargs["body"] == {"name": "report.txt", "parents": ["folder-1"]}
    assert kwargs["fields"] == "id"


@pytest.mark.asyncio
async def test_upload_missing_local_file(client, tmp_path):
    with pytest.raises(RemoteError, match="does not exist"):
        await client.upload_new(tmp_path / "nope.txt", "text/plain", "nope.txt")


@pytest.mark.asyncio
async def test_update_existing_keeps_id(client, service, local_file):
    service.files.return_value.update.return_value.execute.return_value = {}

    remote_id = await client.update_existing("drive-1", local_file, "text/plain", "v2.txt")

    assert remote_id == "drive-1"
    kwargs = service.files.return_value.update.call_args.kwargs
    assert kwargs["fileId"] == "drive-1"
    assert kwargs["body"] == {"name": "v2.txt"}


@pytest.mark.asyncio
async def test_retries_transient_errors(client, service, local_file):
    execute = service.files.return_value.update.return_value.execute
    execute.side_effect = [http_error(503), ConnectionError("reset"), {"id": "drive-1"}]

    assert await client.update_existing("drive-1", local_file, "text/plain") == "drive-1"
    assert execute.call_count == 3


@pytest.mark.asyncio
async def test_gives_up_after_max_retries(client, service, local_file):
    execute = service.files.return_value.update.return_value.execute
    execute.side_effect = http_error(503)

    with pytest.raises(RemoteError) as exc:
        await client.update_existing("drive-1", local_file, "text/plain")
    assert exc.value.status == 503
    assert execute.call_count == 3


@pytest.mark.asyncio
async def test_create_retries_rate_limit(client, service, local_file):
    execute = service.files.return_value.create.return_value.execute
    execute.side_effect = [http_error(429), {"id": "drive-2"}]

    assert await client.upload_new(local_file, "text/plain", "report.txt") == "drive-2"
    assert execute.call_count == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [http_error(503), TimeoutError("read timed out"), ConnectionError("reset")])
async def test_create_is_not_retried_when_outcome_unknown(client, service, local_file, error):
    execute = service.files.return_value.create.return_value.execute
    execute.side_effect = error

    with pytest.raises(RemoteError):
        await client.upload_new(local_file, "text/plain", "report.txt")
    assert execute.call_count == 1

@pytest.mark.asyncio
async def test_permanent_error_is_not_retried(client, service):
    execute = service.files.return_value.delete.return_value.execute
    execute.side_effect = http_error(403, "Forbidden")

    with pytest.raises(RemoteError) as exc:
        await client.delete("drive-1")
    assert exc.value.status == 403
    assert exc.value.remote_id == "drive-1"
    assert str(exc.value).startswith("HTTP 403")
    assert execute.call_count == 1


@pytest.mark.asyncio
async def test_delete_of_absent_file_succeeds(client, service):
    service.files.return_value.delete.return_value.execute.side_effect = http_error(404, "Not Found")
    await client.delete("drive-1")


class FakeDownloader:
    payload = b"restored bytes"
    fail = False

    def __init__(self, fh, request):
        self.fh = fh

    def next_chunk(self):
        self.fh.write(self.payload)
        if self.fail:
            raise http_error(400)
        return None, True


@pytest.mark.asyncio
async def test_download_to_local(client, tmp_path):
    destination = tmp_path / "blobs" / "abc.txt"
    with patch("app.services.drive_client.MediaIoBaseDownload", FakeDownloader):
        await client.download_to_local("drive-1", destination)

    assert destination.read_bytes() == b"restored bytes"
    assert not (tmp_path / "blobs" / "abc.txt.part").exists()


@pytest.mark.asyncio
async def test_failed_download_leaves_nothing_behind(client, tmp_path):
    destination = tmp_path / "abc.txt"

    class Failing(FakeDownloader):
        fail = True

    with patch("app.services.drive_client.MediaIoBaseDownload", Failing):
        with pytest.raises(RemoteError):
            await client.download_to_local("drive-1", destination)

    assert not destination.exists()
    assert not (tmp_path / "abc.txt.part").exists()


def test_from_settings_without_credentials():
    with pytest.raises(ValueError, match="credentials not set"):
        GoogleDriveClient.from_settings(drive_settings())


def test_from_settings_with_refresh_token():
    client = GoogleDriveClient.from_settings(drive_settings(GOOGLE_OAUTH_REFRESH_TOKEN="refresh"))
    assert client.folder_id == "folder-1"
    assert client.max_retries == 2
    assert client._credentials.refresh_token == "refresh"


def test_from_settings_missing_service_account(tmp_path):
    with pytest.raises(FileNotFoundError):
        GoogleDriveClient.from_settings(
            drive_settings(GOOGLE_SERVICE_ACCOUNT_PATH=str(tmp_path / "missing.json")),
        )


@pytest.mark.asyncio
async def test_get_file_meta(client, service):
    meta = {"id": "drive-1", "name": "report.txt", "trashed": False}
    service.files.return_value.get.return_value.execute.return_value = meta

    assert await client.get_file_meta("drive-1") == meta
    kwargs = service.files.return_value.get.call_args.kwargs
    assert kwargs["fileId"] == "drive-1"
    assert "modifiedTime" in kwargs["fields"]


@pytest.mark.asyncio
async def test_get_file_meta_not_found(client, service):
    service.files.return_value.get.return_value.execute.side_effect = http_error(404, "Not Found")

    with pytest.raises(RemoteError) as exc:
        await client.get_file_meta("drive-missing")
    assert exc.value.status == 404
    assert exc.value.remote_id == "drive-missing"
