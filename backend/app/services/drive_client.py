"""Remote storage client: abstract capability plus the Google Drive v3 backend.

google-api-python-client is sync, so every Drive call is wrapped with
asyncio.to_thread and retried with exponential backoff on transient errors.
"""
import asyncio
import io
import logging
import os
import random
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload, MediaIoBaseDownload

logger = logging.getLogger(__name__)

DRIVE_SCOPES = ["https://www.googleapis.com/auth/drive"]
DRIVE_TOKEN_URI = "https://oauth2.googleapis.com/token"

# HTTP statuses worth retrying (rate limit + server side)
RETRYABLE_STATUSES = {429, 500, 502, 503, 504}

# Statuses that prove the request was not applied; the only ones retried for
# non-idempotent calls (a lost create response must not become a duplicate file)
REJECTED_STATUSES = {429}


class RemoteError(Exception):
    """Remote storage backend unreachable or rejected the request."""

    def __init__(self, message: str, status: Optional[int] = None, remote_id: Optional[str] = None):
        self.message = message
        self.status = status
        self.remote_id = remote_id
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.status:
            return f"HTTP {self.status}: {self.message}"
        return self.message


class RemoteStorageClient(ABC):
    """Capability consumed by the reconciliation engine."""

    @abstractmethod
    async def upload_new(self, local_path: Path, mime_type: str, name: str) -> str:
        """Create a new remote object. Returns its remote id."""

    @abstractmethod
    async def update_existing(
        self, remote_id: str, local_path: Path, mime_type: str, name: Optional[str] = None,
    ) -> str:
        """Replace the content (and optionally the name) of a remote object."""

    @abstractmethod
    async def delete(self, remote_id: str) -> None:
        pass

    @abstractmethod
    async def download_to_local(self, remote_id: str, destination: Path) -> None:
        pass


class GoogleDriveClient(RemoteStorageClient):
    """Google Drive v3 implementation.

    Either pass a ready ``service`` (tests, custom auth) or ``credentials``;
    the discovery client is built lazily on first use.
    """

    def __init__(
        self,
        service=None,
        *,
        credentials=None,
        folder_id: Optional[str] = None,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
    ):
        if service is None and credentials is None:
            raise ValueError("Either service or credentials must be provided")
        self._service = service
        self._credentials = credentials
        self.folder_id = folder_id or None
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay

    @classmethod
    def from_settings(cls, settings) -> "GoogleDriveClient":
        """Build a client from app settings (service account wins over OAuth)."""
        if settings.GOOGLE_SERVICE_ACCOUNT_PATH:
            from google.oauth2 import service_account

            sa_path = Path(settings.GOOGLE_SERVICE_ACCOUNT_PATH)
            if not sa_path.exists():
                raise FileNotFoundError(f"Service account file not found: {sa_path}")
            credentials = service_account.Credentials.from_service_account_file(
                str(sa_path), scopes=DRIVE_SCOPES,
            )
        elif settings.GOOGLE_OAUTH_REFRESH_TOKEN:
            from google.oauth2.credentials import Credentials

            credentials = Credentials(
                token=None,
                refresh_token=settings.GOOGLE_OAUTH_REFRESH_TOKEN,
                client_id=settings.GOOGLE_OAUTH_CLIENT_ID,
                client_secret=settings.GOOGLE_OAUTH_CLIENT_SECRET,
                token_uri=DRIVE_TOKEN_URI,
                scopes=DRIVE_SCOPES,
            )
        else:
            raise ValueError("Google Drive credentials not set. Cannot sync.")
        return cls(
            credentials=credentials,
            folder_id=settings.GOOGLE_DRIVE_FOLDER_ID,
            max_retries=settings.DRIVE_MAX_RETRIES,
        )

    @property
    def service(self):
        if self._service is None:
            self._service = build("drive", "v3", credentials=self._credentials, cache_discovery=False)
        return self._service

    async def _call(
        self, sync_fn, *args, op: str, remote_id: Optional[str] = None, idempotent: bool = True,
    ):
        """Run a sync Drive call in a thread, retrying transient failures.

        Non-idempotent calls are only retried when Drive rejected the request
        outright; timeouts, dropped connections and 5xx may have been applied.
        Every failure surfaces as RemoteError.
        """
        retry_statuses = RETRYABLE_STATUSES if idempotent else REJECTED_STATUSES
        for attempt in range(self.max_retries + 1):
            try:
                return await asyncio.to_thread(sync_fn, *args)
            except HttpError as e:
                status = e.resp.status if e.resp is not None else None
                if status in retry_statuses and attempt < self.max_retries:
                    await self._backoff(op, attempt, e)
                    continue
                raise RemoteError(f"Drive {op} failed: {e.reason or e}", status=status, remote_id=remote_id) from e
            except (ConnectionError, TimeoutError) as e:
                if idempotent and attempt < self.max_retries:
                    await self._backoff(op, attempt, e)
                    continue
                raise RemoteError(f"Drive {op} failed: {e}", remote_id=remote_id) from e
            except RemoteError:
                raise
            except Exception as e:
                raise RemoteError(f"Drive {op} failed: {type(e).__name__}: {e}", remote_id=remote_id) from e

    async def _backoff(self, op: str, attempt: int, error: Exception) -> None:
        delay = self.retry_base_delay * (2 ** attempt) + random.uniform(0, self.retry_base_delay)
        logger.warning(
            "Drive %s failed (attempt %d/%d), retrying in %.1fs: %s",
            op, attempt + 1, self.max_retries + 1, delay, error,
        )
        await asyncio.sleep(delay)

    # ── Operations ───────────────────────────────────────────────

    async def upload_new(self, local_path: Path, mime_type: str, name: str) -> str:
        local_path = Path(local_path)

        def _create() -> str:
            if not local_path.exists():
                raise RemoteError(f"Local file does not exist: {local_path}")
            body = {"name": name}
            if self.folder_id:
                body["parents"] = [self.folder_id]
            media = MediaFileUpload(str(local_path), mimetype=mime_type, resumable=True)
            created = self.service.files().create(body=body, media_body=media, fields="id").execute()
            file_id = created.get("id")
            if not file_id:
                raise RemoteError("Drive create did not return a file id")
            return file_id

        return await self._call(_create, op="create", idempotent=False)

    async def update_existing(
        self, remote_id: str, local_path: Path, mime_type: str, name: Optional[str] = None,
    ) -> str:
        if not remote_id:
            raise RemoteError("remote_id is required for update")
        local_path = Path(local_path)

        def _update() -> str:
            if not local_path.exists():
                raise RemoteError(f"Local file does not exist: {local_path}", remote_id=remote_id)
            media = MediaFileUpload(str(local_path), mimetype=mime_type, resumable=True)
            updated = self.service.files().update(
                fileId=remote_id,
                body={"name": name} if name else None,
                media_body=media,
                fields="id",
            ).execute()
            return updated.get("id") or remote_id

        return await self._call(_update, op="update", remote_id=remote_id)

    async def delete(self, remote_id: str) -> None:
        if not remote_id:
            return

        def _delete() -> None:
            try:
                self.service.files().delete(fileId=remote_id).execute()
            except HttpError as e:
                # Already gone on the Drive side - nothing left to remove
                if e.resp is not None and e.resp.status == 404:
                    logger.info("Drive file %s already absent, treating delete as done", remote_id)
                    return
                raise

        await self._call(_delete, op="delete", remote_id=remote_id)

    async def download_to_local(self, remote_id: str, destination: Path) -> None:
        destination = Path(destination)
        partial = destination.with_name(destination.name + ".part")

        def _download() -> None:
            destination.parent.mkdir(parents=True, exist_ok=True)
            request = self.service.files().get_media(fileId=remote_id)
            try:
                with io.FileIO(partial, "wb") as fh:
                    downloader = MediaIoBaseDownload(fh, request)
                    done = False
                    while not done:
                        _, done = downloader.next_chunk()
                os.replace(partial, destination)
            finally:
                if partial.exists():
                    partial.unlink()

        await self._call(_download, op="download", remote_id=remote_id)

    async def get_file_meta(self, remote_id: str) -> dict:
        """Fetch Drive metadata for a file (debugging aid)."""

        def _get() -> dict:
            return self.service.files().get(
                fileId=remote_id,
                fields="id,name,mimeType,parents,modifiedTime,size,trashed",
            ).execute()

        return await self._call(_get, op="get", remote_id=remote_id)
