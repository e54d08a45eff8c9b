"""Chunked content uploads with SHA-1 verification.

Upload Flow:
1. Hash the content once (SHA-1 and byte length)
2. Open an upload session with name, size, virtual path and hash
3. PUT the content in fixed-size chunks, each retried in place
4. Poll the session until the server has processed it
5. Complete the session; the server verifies the hash

A hash mismatch is never retried: the caller has to start over from step 1.
"""

from __future__ import annotations

import hashlib
import io
import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from tempfile import SpooledTemporaryFile
from typing import IO

from pydantic import ValidationError as PydanticValidationError

from .config import Config
from .errors import (
    APIError,
    BSNError,
    ConflictError,
    HashMismatchError,
    UploadCancelledError,
    UploadError,
    UploadTimeoutError,
    ValidationError,
)
from .models import (
    OpenSessionRequest,
    OpenSessionResponse,
    SessionStatusResponse,
    UploadResult,
    UploadSession,
    UploadStatus,
)
from .transport import RequestOptions, Transport

logger = logging.getLogger(__name__)

# Block size used while hashing and spooling
READ_BLOCK_SIZE = 1024 * 1024

# Streams larger than this are spooled to disk instead of memory
SPOOL_MAX_SIZE = 16 * 1024 * 1024

UPLOAD_SESSIONS_ENDPOINT = "/upload-sessions"

ProgressCallback = Callable[[int, int], None]


def format_bytes(size: int) -> str:
    """Format a byte count for log output, e.g. ``5.0 MB``."""
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{int(value)} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


def validate_name(name: str) -> str:
    """Check a content file name before any request is made.

    Raises:
        ValidationError: If the name is empty, contains a path separator or a
            control character, or is a relative path component.
    """
    if not name or not name.strip():
        raise ValidationError.for_field("name", name, "file name cannot be empty")
    if "/" in name or "\\" in name:
        raise ValidationError.for_field("name", name, "file name cannot contain path separators")
    if any(ord(ch) < 32 or ord(ch) == 127 for ch in name):
        raise ValidationError.for_field("name", name, "file name cannot contain control characters")
    if name in (".", ".."):
        raise ValidationError.for_field("name", name, "file name cannot be a relative path")
    return name


def normalize_virtual_path(path: str) -> str:
    """Return ``path`` as an absolute folder path ending in ``/``.

    Raises:
        ValidationError: If the path contains ``..`` segments or control characters.
    """
    path = (path or "/").replace("\\", "/")
    if any(ord(ch) < 32 for ch in path):
        raise ValidationError.for_field("path", path, "path cannot contain control characters")
    segments = [s for s in path.split("/") if s and s != "."]
    if ".." in segments:
        raise ValidationError.for_field("path", path, "path cannot contain '..'")
    if not segments:
        return "/"
    return "/" + "/".join(segments) + "/"


class ContentSource:
    """A named, re-readable byte source.

    The content is read twice, once for hashing and once for the transfer, so
    non-seekable streams are spooled first.

    Example:
        >>> source = ContentSource.from_path("video.mp4")
        >>> source = ContentSource.from_bytes("hello.txt", b"hello")
    """

    def __init__(
        self,
        name: str,
        opener: Callable[[], IO[bytes]],
        *,
        close_after_read: bool = True,
        spool: IO[bytes] | None = None,
    ) -> None:
        self.name = name
        self._opener = opener
        self._close_after_read = close_after_read
        self._spool = spool

    @classmethod
    def from_path(cls, path: str | Path, name: str | None = None) -> ContentSource:
        """Read the content from a local file.

        Raises:
            FileNotFoundError: If the file doesn't exist.
        """
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"File not found: {path}")
        return cls(name or path.name, lambda: path.open("rb"))

    @classmethod
    def from_bytes(cls, name: str, data: bytes) -> ContentSource:
        return cls(name, lambda: io.BytesIO(data))

    @classmethod
    def from_stream(cls, name: str, stream: IO[bytes]) -> ContentSource:
        """Read the content from an open binary stream.

        Seekable streams are rewound to their current position on every read
        and left open. Other streams are copied to a spool file up front.
        """
        if stream.seekable():
            start = stream.tell()

            def rewind() -> IO[bytes]:
                stream.seek(start)
                return stream

            return cls(name, rewind, close_after_read=False)

        spool: IO[bytes] = SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE)
        while block := stream.read(READ_BLOCK_SIZE):
            spool.write(block)

        def rewind_spool() -> IO[bytes]:
            spool.seek(0)
            return spool

        return cls(name, rewind_spool, close_after_read=False, spool=spool)

    @contextmanager
    def open(self) -> Iterator[IO[bytes]]:
        """Open the content positioned at its first byte."""
        handle = self._opener()
        try:
            yield handle
        finally:
            if self._close_after_read:
                handle.close()

    def close(self) -> None:
        """Release the spool file, if any."""
        if self._spool is not None:
            self._spool.close()
            self._spool = None


class UploadEngine:
    """Runs chunked uploads against the upload session API.

    Example:
        >>> engine = UploadEngine(transport, config)
        >>> result = engine.upload_file("video.mp4", "/media/")
        >>> print(result.content_id)

    Attributes:
        transport: Transport used for every request.
        config: Supplies chunk size, poll interval, wait limit and upload root.
    """

    def __init__(
        self,
        transport: Transport,
        config: Config,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.transport = transport
        self.config = config
        self._clock = clock
        self._sleep = sleep

    def _url(self, *parts: str) -> str:
        return self.config.upload_root + UPLOAD_SESSIONS_ENDPOINT + "".join(
            f"/{part}" for part in parts
        )

    def _options(self, session: UploadSession, **overrides: object) -> RequestOptions:
        return RequestOptions(scoped=True, network=session.network).merge(**overrides)

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def prepare(self, source: ContentSource, virtual_path: str = "/") -> UploadSession:
        """Hash the content and build the session state.

        The network is snapshotted here; all later steps use it.

        Raises:
            ValidationError: If the name or path is invalid.
            NetworkNotSelectedError: If no network is selected.
        """
        name = validate_name(source.name)
        path = normalize_virtual_path(virtual_path)

        network = None
        if self.transport.network is not None:
            network = self.transport.network.current_network()

        digest = hashlib.sha1()
        size = 0
        with source.open() as handle:
            while block := handle.read(READ_BLOCK_SIZE):
                digest.update(block)
                size += len(block)

        session = UploadSession(
            name=name,
            path=path,
            size=size,
            hash=digest.hexdigest(),
            chunk_size=self.config.chunk_size,
            network=network,
        )
        logger.info(
            "Prepared upload of %s%s (%s, %d chunks, sha1 %s)",
            path,
            name,
            format_bytes(size),
            session.chunk_count,
            session.hash,
        )
        return session

    def open_session(self, session: UploadSession) -> UploadSession:
        """Open the server-side session.

        Raises:
            UploadError: If a session was already opened or the response has no id.
            ValidationError: If the server rejects the request.
            ConflictError: If an upload of the same file is already in progress.
        """
        if session.session_id:
            raise UploadError("upload session already opened", session.session_id)

        body = OpenSessionRequest(
            name=session.name, size=session.size, path=session.path, hash=session.hash
        )
        response = self.transport.request(
            "POST",
            self._url(),
            json=body.model_dump(),
            options=self._options(session, retry=False),
        )

        try:
            opened = OpenSessionResponse.model_validate(response or {})
        except PydanticValidationError as e:
            raise UploadError("upload session response carried no session id") from e

        session.session_id = opened.session_id
        session.status = UploadStatus.PENDING
        logger.debug("Opened upload session %s", session.session_id)
        return session

    def transfer(
        self,
        session: UploadSession,
        source: ContentSource,
        *,
        progress: ProgressCallback | None = None,
    ) -> None:
        """Send every chunk in order.

        Each chunk is retried in place by the transport's retry policy. When a
        chunk finally fails, or the source cannot be read, the session is aborted.

        Raises:
            UploadError: If a chunk could not be sent, chained to the cause, or
                the network changed since :meth:`prepare`.
        """
        session_id = self._require_session(session)
        digest = hashlib.sha1()
        sent = 0
        offset = 0

        try:
            with source.open() as handle:
                for offset in session.expected_offsets:
                    self._check_network(session)
                    chunk = handle.read(min(session.chunk_size, session.size - offset))
                    self.transport.request(
                        "PUT",
                        self._url(session_id, "chunks", str(offset)),
                        content=chunk,
                        options=self._options(
                            session,
                            retry=True,
                            headers={"Content-Type": "application/octet-stream"},
                        ),
                    )

                    digest.update(chunk)
                    session.confirm(offset)
                    sent += len(chunk)
                    logger.debug(
                        "Sent chunk %d/%d (%s)",
                        offset // session.chunk_size + 1,
                        session.chunk_count,
                        format_bytes(len(chunk)),
                    )
                    if progress is not None:
                        progress(sent, session.size)
        except UploadError:
            raise
        except BSNError as e:
            self.abort(session)
            raise UploadError(f"chunk at offset {offset} failed: {e}", session_id) from e
        except Exception:
            self.abort(session)
            raise

        session.transmitted_hash = digest.hexdigest()

    def await_processing(
        self,
        session: UploadSession,
        *,
        cancel: threading.Event | None = None,
        max_wait: float | None = None,
    ) -> UploadStatus:
        """Poll the session until the server has finished processing it.

        Raises:
            UploadError: If the server reports a failure or an unknown status,
                or the network changed since :meth:`prepare`.
            UploadTimeoutError: If processing takes longer than ``max_wait``
                (default ``Config.max_poll_wait``). The session id is kept.
            UploadCancelledError: If ``cancel`` is set.
        """
        session_id = self._require_session(session)
        limit = self.config.max_poll_wait if max_wait is None else max_wait
        deadline = self._clock() + limit

        while True:
            if cancel is not None and cancel.is_set():
                raise UploadCancelledError("upload cancelled while processing", session_id)
            self._check_network(session)

            body = self.transport.request(
                "GET", self._url(session_id), options=self._options(session)
            )
            status_response = SessionStatusResponse.model_validate(
                body if isinstance(body, dict) else {}
            )
            status = UploadStatus.parse(status_response.status)
            if status is None:
                raise UploadError(
                    f"unknown upload status '{status_response.status}'", session_id
                )
            session.status = status

            if status is UploadStatus.COMPLETE:
                logger.debug("Upload session %s processed", session_id)
                return status
            if status is UploadStatus.FAILED:
                message = f"upload failed with status '{status_response.status}'"
                if status_response.message:
                    message += f": {status_response.message}"
                raise UploadError(message, session_id)

            remaining = deadline - self._clock()
            if remaining <= 0:
                raise UploadTimeoutError(
                    f"upload processing did not finish within {limit:g}s", session_id
                )
            self._sleep(min(self.config.poll_interval, remaining))

    def complete(self, session: UploadSession) -> UploadResult:
        """Ask the server to verify the hash and finalize the file.

        Raises:
            UploadError: If chunks are unconfirmed or the session was completed,
                or the network changed since :meth:`prepare`.
            HashMismatchError: If the transmitted bytes or the server's copy do
                not match the prepared hash.
        """
        session_id = self._require_session(session)
        if session.completed:
            raise UploadError("upload session already completed", session_id)
        if not session.all_chunks_confirmed:
            missing = len(set(session.expected_offsets) - session.confirmed_offsets)
            raise UploadError(f"cannot complete: {missing} chunks unconfirmed", session_id)

        # Content changed between hashing and transfer
        if session.transmitted_hash is not None and session.transmitted_hash != session.hash:
            raise HashMismatchError(session.hash, session.transmitted_hash, session_id)

        self._check_network(session)
        try:
            body = self.transport.request(
                "POST",
                self._url(session_id, "complete"),
                json={"hash": session.hash},
                options=self._options(session, retry=False),
            )
        except (ValidationError, ConflictError) as e:
            if _signals_hash_mismatch(e):
                raise HashMismatchError(session.hash, session_id=session_id) from e
            raise

        descriptor = body if isinstance(body, dict) else {}
        status = str(descriptor.get("status") or descriptor.get("state") or "")
        if status.strip().lower() == "corrupted":
            raise HashMismatchError(session.hash, session_id=session_id)

        try:
            result = UploadResult.model_validate(descriptor)
        except PydanticValidationError as e:
            raise UploadError("unreadable upload completion response", session_id) from e

        if result.file_hash and result.file_hash.lower() != session.hash:
            raise HashMismatchError(session.hash, result.file_hash.lower(), session_id)

        session.completed = True
        session.status = UploadStatus.COMPLETE
        return result.model_copy(
            update={
                "file_name": result.file_name or session.name,
                "file_size": result.file_size or session.size,
                "virtual_path": result.virtual_path or session.path,
                "file_hash": result.file_hash or session.hash,
                "session_id": result.session_id or session_id,
            }
        )

    def abort(self, session: UploadSession) -> None:
        """Cancel the server-side session. Failures are logged, not raised."""
        if not session.session_id:
            return
        try:
            self.transport.request(
                "DELETE",
                self._url(session.session_id),
                options=self._options(session, retry=False),
            )
        except BSNError as e:
            logger.warning("Failed to abort upload session %s: %s", session.session_id, e)
        else:
            logger.info("Aborted upload session %s", session.session_id)

    # -------------------------------------------------------------------------
    # Conveniences
    # -------------------------------------------------------------------------

    def upload(
        self,
        source: ContentSource,
        virtual_path: str = "/",
        *,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> UploadResult:
        """Run all upload steps and return the new file's descriptor.

        The caller owns ``source`` and closes it when done.
        """
        session = self.prepare(source, virtual_path)
        self.open_session(session)
        self.transfer(session, source, progress=progress)
        self.await_processing(session, cancel=cancel)
        result = self.complete(session)
        logger.info(
            "Uploaded %s%s (%s)", session.path, session.name, format_bytes(session.size)
        )
        return result

    def upload_file(
        self,
        path: str | Path,
        virtual_path: str = "/",
        *,
        name: str | None = None,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> UploadResult:
        source = ContentSource.from_path(path, name)
        try:
            return self.upload(source, virtual_path, progress=progress, cancel=cancel)
        finally:
            source.close()

    def upload_bytes(
        self,
        name: str,
        data: bytes,
        virtual_path: str = "/",
        *,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> UploadResult:
        source = ContentSource.from_bytes(name, data)
        try:
            return self.upload(source, virtual_path, progress=progress, cancel=cancel)
        finally:
            source.close()

    def upload_stream(
        self,
        name: str,
        stream: IO[bytes],
        virtual_path: str = "/",
        *,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> UploadResult:
        """Upload from an open binary stream; ``stream`` itself is left open."""
        source = ContentSource.from_stream(name, stream)
        try:
            return self.upload(source, virtual_path, progress=progress, cancel=cancel)
        finally:
            source.close()

    def _require_session(self, session: UploadSession) -> str:
        if not session.session_id:
            raise UploadError("upload session has not been opened")
        return session.session_id

    def _check_network(self, session: UploadSession) -> None:
        """Abort the session if the client switched networks since :meth:`prepare`."""
        if session.network is None or self.transport.network is None:
            return
        current = self.transport.network.snapshot()
        if current is not None and current.id == session.network.id:
            return
        self.abort(session)
        raise UploadError(
            f"network changed during upload from {session.network} to {current}",
            session.session_id,
        )


def _signals_hash_mismatch(error: APIError) -> bool:
    text = f"{error.code} {error.message}".lower()
    return "hash" in text or "corrupt" in text
