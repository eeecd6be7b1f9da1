"""
Document Store Gateway — uploads stage evidence to object storage.

All outbound storage calls go through this class.  The wire protocol is
the Supabase-compatible storage REST API:

    POST {base}/storage/v1/object/{bucket}/{path}          (upload)
    GET  {base}/storage/v1/object/public/{bucket}/{path}   (public URL)

  - Timeout: DOCUMENT_STORE_TIMEOUT seconds per upload (default 20)
  - Multi-file uploads run in parallel (DOCUMENT_STORE_MAX_WORKERS) and are
    joined before the caller mutates the report
  - No retry; a failure or timeout raises StoreUnavailableError

Testability: pass a fake ``session`` to DocumentStore() in tests instead of
letting it create a real requests.Session internally.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import requests
from flask import current_app

from solarops.core.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 20
_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass
class UploadedFile:
    """A file received from the request layer, not yet stored."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass
class StoredFile:
    """Result of a successful upload."""

    id: str
    url: str
    file_name: str


class DocumentStore:
    """Object-storage gateway.

    Usage:
        from solarops.integrations.document_store import document_store
        stored = document_store.upload_many(files, folder_hint="reports/ab12")
    """

    def __init__(self, session: requests.Session | None = None) -> None:
        # Inject custom session for testing; create real one lazily otherwise.
        self._session: requests.Session | None = session

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def use_session(self, session: requests.Session | None) -> None:
        self._session = session

    # ── Config ───────────────────────────────────────────────────────────────

    @staticmethod
    def _settings() -> dict:
        cfg = current_app.config
        base_url = (cfg.get("DOCUMENT_STORE_URL") or "").rstrip("/")
        if not base_url:
            raise StoreUnavailableError("Document store is not configured")
        return {
            "base_url": base_url,
            "key": cfg.get("DOCUMENT_STORE_KEY") or "",
            "bucket": cfg.get("DOCUMENT_STORE_BUCKET", "report-attachments"),
            "timeout": cfg.get("DOCUMENT_STORE_TIMEOUT", _DEFAULT_TIMEOUT),
            "max_workers": cfg.get("DOCUMENT_STORE_MAX_WORKERS", 4),
        }

    @staticmethod
    def _object_path(folder_hint: str, filename: str) -> str:
        safe = _SAFE_NAME.sub("_", filename or "file").strip("_") or "file"
        return f"{folder_hint.strip('/')}/{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}-{safe}"

    # ── Upload ───────────────────────────────────────────────────────────────

    def _upload_one(self, settings: dict, file: UploadedFile, folder_hint: str) -> StoredFile:
        path = self._object_path(folder_hint, file.filename)
        url = f"{settings['base_url']}/storage/v1/object/{settings['bucket']}/{path}"
        try:
            resp = self.session.post(
                url,
                data=file.content,
                headers={
                    "Authorization": f"Bearer {settings['key']}",
                    "Content-Type": file.content_type or "application/octet-stream",
                    "x-upsert": "false",
                },
                timeout=settings["timeout"],
            )
            resp.raise_for_status()
        except requests.Timeout as exc:
            logger.error("Document store timeout uploading %s", file.filename)
            raise StoreUnavailableError(f"Upload of {file.filename!r} timed out") from exc
        except requests.RequestException as exc:
            logger.error("Document store upload failed for %s: %s", file.filename, exc)
            raise StoreUnavailableError(f"Upload of {file.filename!r} failed") from exc

        public_url = f"{settings['base_url']}/storage/v1/object/public/{settings['bucket']}/{path}"
        return StoredFile(id=uuid.uuid4().hex, url=public_url, file_name=file.filename)

    def upload(self, file: UploadedFile, folder_hint: str) -> StoredFile:
        """Upload one file.  Raises StoreUnavailableError on failure or timeout."""
        return self._upload_one(self._settings(), file, folder_hint)

    def upload_many(self, files: list[UploadedFile], folder_hint: str) -> list[StoredFile]:
        """Upload files in parallel, preserving input order.

        All uploads are joined before returning.  If any upload fails the
        ones that succeeded are logged as orphaned and StoreUnavailableError
        is raised.
        """
        if not files:
            return []
        settings = self._settings()
        if len(files) == 1:
            return [self._upload_one(settings, files[0], folder_hint)]

        workers = max(1, min(settings["max_workers"], len(files)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(self._upload_one, settings, f, folder_hint) for f in files]

        stored, first_error = [], None
        for fut in futures:
            try:
                stored.append(fut.result())
            except StoreUnavailableError as exc:
                first_error = first_error or exc
        if first_error is not None:
            log_orphans(stored, reason="sibling upload failed")
            raise first_error
        return stored


def log_orphans(stored: list[StoredFile], reason: str, report_id: str | None = None) -> None:
    """Record uploaded objects that will never be referenced by a report."""
    for item in stored:
        logger.error(
            "Orphaned upload %s (%s): %s", item.url, item.file_name, reason,
            extra={"report_id": report_id, "event_type": "orphaned_upload"},
        )


# Module-level singleton
document_store = DocumentStore()
