"""
Chunked Upload Engine
Resumable uploads: a file is sent as independently checksummed chunks
in any order, then assembled and verified once on completion.
"""

import logging
import secrets
from datetime import timedelta
from pathlib import Path
from typing import List, Optional
from uuid import uuid4

from pydantic import ValidationError
from sqlalchemy.orm import Session, sessionmaker

from catalog_loader.catalog.assets import AssetLinker
from catalog_loader.db.models import UploadSession, utcnow
from catalog_loader.db.session import session_scope
from catalog_loader.errors import (
    ChecksumMismatchError,
    ChunkNotFoundError,
    InvalidRequestError,
    ResourceNotFoundError,
    StorageError,
    UploadConflictError,
)
from catalog_loader.models.upload import (
    ChunkResult,
    CompletionResult,
    ResumeInfo,
    UploadInitRequest,
    UploadSessionInfo,
    UploadStatus,
)
from catalog_loader.uploads.checksum import compute_stream_checksum, verify_checksum
from catalog_loader.uploads.storage import ChunkStore
from catalog_loader.utils.locks import KeyedLock, upload_locks

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1048576  # 1MB
CHUNK_PREFIX = "chunks"
FINAL_PREFIX = "uploads"


def chunk_prefix(token: str) -> str:
    return f"{CHUNK_PREFIX}/{token}"


def chunk_key(token: str, index: int) -> str:
    return f"{CHUNK_PREFIX}/{token}/{index}"


def final_key(stored_filename: str) -> str:
    return f"{FINAL_PREFIX}/{stored_filename}"


class ChunkedUploadEngine:
    """
    Server side of the chunked upload protocol.

    Flow: initialize_upload -> accept_chunk (any order, repeatable) ->
    complete_upload. Chunk writes for different indices run in parallel;
    index bookkeeping and completion are serialized per session.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        store: ChunkStore,
        asset_linker: Optional[AssetLinker] = None,
        locks: Optional[KeyedLock] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        """
        Initialize the engine.

        Args:
            session_factory: SQLAlchemy session factory for upload_sessions
            store: Storage for chunks and assembled files
            asset_linker: Links waiting catalog records after completion
            locks: Per-session lock registry (process-wide by default)
            chunk_size: Chunk size advertised to clients
        """
        self.session_factory = session_factory
        self.store = store
        self.asset_linker = asset_linker
        self.locks = locks or upload_locks
        self.chunk_size = chunk_size

    # === PROTOCOL ===

    def initialize_upload(
        self, filename: str, total_size: int, mime_type: str, total_chunks: int
    ) -> UploadSessionInfo:
        """
        Create a pending upload session.

        Raises:
            InvalidRequestError: If the declared size, chunk count or names are invalid
        """
        try:
            request = UploadInitRequest(
                filename=filename,
                total_size=total_size,
                mime_type=mime_type,
                total_chunks=total_chunks,
            )
        except ValidationError as e:
            raise InvalidRequestError(
                "Invalid upload parameters",
                details={"errors": [f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()]},
            ) from e

        token = str(uuid4())
        extension = Path(request.filename).suffix
        stored_filename = f"{secrets.token_hex(20)}{extension}"

        with session_scope(self.session_factory) as session:
            upload = UploadSession(
                token=token,
                original_name=request.filename,
                stored_filename=stored_filename,
                size=request.total_size,
                mime_type=request.mime_type,
                chunk_size=self.chunk_size,
                total_chunks=request.total_chunks,
                uploaded_chunks=0,
                chunk_indices=[],
                status=UploadStatus.PENDING.value,
            )
            session.add(upload)
            session.flush()
            info = UploadSessionInfo.model_validate(upload)

        logger.info(
            f"Initialized upload session {token} for {request.filename} "
            f"({request.total_chunks} chunks, {request.total_size} bytes)"
        )
        return info

    def accept_chunk(self, token: str, chunk_index: int, data: bytes, checksum: str) -> ChunkResult:
        """
        Store one chunk if its checksum matches.

        Re-sending an accepted index overwrites the stored bytes but never
        counts twice. A checksum mismatch changes nothing.

        Raises:
            ResourceNotFoundError: If the session does not exist
        """
        upload = self._get_info(token)
        progress = dict(uploaded_chunks=upload.uploaded_chunks, total_chunks=upload.total_chunks)

        if UploadStatus(upload.status).is_terminal:
            return ChunkResult.failure(
                UploadConflictError(f"Upload is {upload.status}", details={"status": upload.status}),
                **progress,
            )

        if not 0 <= chunk_index < upload.total_chunks:
            return ChunkResult.failure(
                InvalidRequestError(
                    f"Invalid chunk index. Must be between 0 and {upload.total_chunks - 1}",
                    details={"chunk_index": chunk_index},
                ),
                **progress,
            )

        if not verify_checksum(data, checksum):
            logger.warning(f"Checksum mismatch for chunk {chunk_index} of session {token}")
            return ChunkResult.failure(
                ChecksumMismatchError("Checksum mismatch", details={"chunk_index": chunk_index}),
                **progress,
            )

        key = chunk_key(token, chunk_index)
        try:
            self.store.put(key, data)
        except StorageError as e:
            logger.error(f"Failed to store chunk {chunk_index} for session {token}: {e}")
            return ChunkResult.failure(e, **progress)

        with self.locks.hold(token):
            with session_scope(self.session_factory) as session:
                record = self._lock_row(session, token)

                progress = dict(uploaded_chunks=record.uploaded_chunks, total_chunks=record.total_chunks)

                if UploadStatus(record.status).is_terminal:
                    # Completion won the race; the remnant it already cleaned up must not linger
                    self._discard_quietly(key)
                    return ChunkResult.failure(
                        UploadConflictError(f"Upload is {record.status}", details={"status": record.status}),
                        **progress,
                    )

                # A failed completion may have wiped the chunk directory after our write
                try:
                    if not self.store.exists(key):
                        self.store.put(key, data)
                except StorageError as e:
                    logger.error(f"Failed to store chunk {chunk_index} for session {token}: {e}")
                    return ChunkResult.failure(e, **progress)

                indices = set(record.chunk_indices or [])
                if chunk_index not in indices:
                    indices.add(chunk_index)
                    record.chunk_indices = sorted(indices)
                    record.uploaded_chunks = len(indices)
                if record.status == UploadStatus.PENDING.value:
                    record.status = UploadStatus.UPLOADING.value

                uploaded, total = record.uploaded_chunks, record.total_chunks

        logger.info(f"Accepted chunk {chunk_index} ({len(data)} bytes) for session {token}: {uploaded}/{total}")
        return ChunkResult(
            success=True,
            accepted=True,
            uploaded_chunks=uploaded,
            total_chunks=total,
            is_complete=uploaded >= total,
        )

    def complete_upload(self, token: str, checksum: str) -> CompletionResult:
        """
        Assemble the chunks in index order and verify the final checksum.

        Effectful exactly once: a completed session is returned unchanged.
        On a final checksum mismatch the assembled file and all chunks are
        discarded and the session stays open for a fresh set of chunks.

        Raises:
            ResourceNotFoundError: If the session does not exist
        """
        with self.locks.hold(token):
            with session_scope(self.session_factory) as session:
                record = self._lock_row(session, token)

                if record.status == UploadStatus.COMPLETED.value:
                    logger.info(f"Session {token} already completed")
                    return CompletionResult(
                        success=True,
                        message="Upload already completed",
                        upload=UploadSessionInfo.model_validate(record),
                        path=record.final_path,
                        already_completed=True,
                    )

                if record.status == UploadStatus.FAILED.value:
                    return CompletionResult.failure(
                        UploadConflictError("Upload has failed", details={"status": record.status}),
                        upload=UploadSessionInfo.model_validate(record),
                    )

                missing = self._missing_indices(record)
                if missing:
                    logger.info(f"Session {token} is missing chunks: {missing[:20]}")
                    return CompletionResult.failure(
                        UploadConflictError("Not all chunks uploaded", details={"missing_chunks": missing}),
                        upload=UploadSessionInfo.model_validate(record),
                    )

                target = final_key(record.stored_filename)
                try:
                    self._assemble(record, target)
                    with self.store.open(target) as assembled:
                        calculated = compute_stream_checksum(assembled)
                except StorageError as e:
                    logger.error(f"Upload completion failed for session {token}: {e}")
                    self._discard_quietly(target)
                    record.status = UploadStatus.FAILED.value
                    record.error_message = e.message
                    return CompletionResult.failure(e, upload=UploadSessionInfo.model_validate(record))

                if calculated != checksum:
                    logger.error(
                        f"Final checksum mismatch for session {token}: "
                        f"expected {checksum}, calculated {calculated}"
                    )
                    self._discard_quietly(target)
                    try:
                        self.store.delete_all(chunk_prefix(token))
                    except StorageError as e:
                        logger.warning(f"Failed to delete chunks of session {token}: {e}")
                    record.chunk_indices = []
                    record.uploaded_chunks = 0
                    return CompletionResult.failure(
                        ChecksumMismatchError(
                            f"Final checksum mismatch. Server: {calculated}, Client: {checksum}",
                            details={"calculated": calculated, "expected": checksum},
                        ),
                        upload=UploadSessionInfo.model_validate(record),
                    )

                record.status = UploadStatus.COMPLETED.value
                record.checksum = calculated
                record.final_path = target
                record.error_message = None
                session.flush()
                info = UploadSessionInfo.model_validate(record)

            # Committed; remnants are removed regardless of what follows
            try:
                self.store.delete_all(chunk_prefix(token))
            except StorageError as e:
                logger.warning(f"Failed to clean up chunks for session {token}: {e}")

        logger.info(f"Completed upload {token}: {info.original_name} -> {target}")

        linked = 0
        if self.asset_linker is not None:
            linked = self.asset_linker.link_pending_records(info.id)

        return CompletionResult(
            success=True,
            message=f"File {info.original_name} uploaded successfully",
            upload=info,
            path=target,
            linked_records=linked,
        )

    # === READS ===

    def get_status(self, token: str) -> UploadSessionInfo:
        """
        Raises:
            ResourceNotFoundError: If the session does not exist
        """
        return self._get_info(token)

    def resume_info(self, token: str) -> ResumeInfo:
        """Accepted and missing chunk indices, so a client can skip what was delivered."""
        with session_scope(self.session_factory) as session:
            record = session.query(UploadSession).filter(UploadSession.token == token).first()
            if record is None:
                return ResumeInfo(exists=False)

            return ResumeInfo(
                exists=True,
                status=record.status,
                uploaded_chunks=record.uploaded_chunks,
                total_chunks=record.total_chunks,
                uploaded_chunk_indices=sorted(record.chunk_indices or []),
                missing_chunk_indices=self._missing_indices(record),
            )

    # === CLEANUP ===

    def discard_upload(self, token: str) -> UploadSessionInfo:
        """
        Operator cleanup: remove chunk remnants of a session.

        A session that has not completed is marked failed.
        """
        with self.locks.hold(token):
            with session_scope(self.session_factory) as session:
                record = self._lock_row(session, token)
                self.store.delete_all(chunk_prefix(token))
                if record.status != UploadStatus.COMPLETED.value:
                    self._discard_quietly(final_key(record.stored_filename))
                    record.status = UploadStatus.FAILED.value
                    record.error_message = "Discarded by operator"
                session.flush()
                info = UploadSessionInfo.model_validate(record)

        logger.info(f"Discarded upload session {token}")
        return info

    def reclaim_stale_uploads(self, retention: timedelta) -> int:
        """
        Fail sessions that stopped receiving chunks more than `retention` ago
        and delete their remnants.

        Returns:
            Number of sessions reclaimed
        """
        cutoff = utcnow() - retention
        with session_scope(self.session_factory) as session:
            tokens = [
                token
                for (token,) in session.query(UploadSession.token)
                .filter(
                    UploadSession.status.in_(
                        [UploadStatus.PENDING.value, UploadStatus.UPLOADING.value]
                    ),
                    UploadSession.updated_at < cutoff,
                )
                .all()
            ]

        reclaimed = 0
        for token in tokens:
            with self.locks.hold(token):
                with session_scope(self.session_factory) as session:
                    record = self._lock_row(session, token)
                    # Re-check under the lock; a chunk may have arrived meanwhile
                    if UploadStatus(record.status).is_terminal or record.updated_at >= cutoff:
                        continue
                    try:
                        self.store.delete_all(chunk_prefix(token))
                    except StorageError as e:
                        logger.warning(f"Failed to delete chunks of stale session {token}: {e}")
                        continue
                    record.status = UploadStatus.FAILED.value
                    record.error_message = "Upload abandoned"
                    reclaimed += 1

        if reclaimed:
            logger.info(f"Reclaimed {reclaimed} stale upload sessions")
        return reclaimed

    # === INTERNALS ===

    def _get_info(self, token: str) -> UploadSessionInfo:
        with session_scope(self.session_factory) as session:
            record = session.query(UploadSession).filter(UploadSession.token == token).first()
            if record is None:
                raise ResourceNotFoundError("Upload session", token)
            return UploadSessionInfo.model_validate(record)

    def _lock_row(self, session: Session, token: str) -> UploadSession:
        record = (
            session.query(UploadSession)
            .filter(UploadSession.token == token)
            .with_for_update()
            .first()
        )
        if record is None:
            raise ResourceNotFoundError("Upload session", token)
        return record

    @staticmethod
    def _missing_indices(record: UploadSession) -> List[int]:
        accepted = set(record.chunk_indices or [])
        return [i for i in range(record.total_chunks) if i not in accepted]

    def _assemble(self, record: UploadSession, target: str) -> None:
        """Write an empty object, then append every chunk in index order."""
        self.store.put(target, b"")
        for index in range(record.total_chunks):
            key = chunk_key(record.token, index)
            if not self.store.exists(key):
                raise ChunkNotFoundError(key)
            self.store.append(target, self.store.get(key))

        assembled_size = self.store.size(target)
        if assembled_size != record.size:
            logger.warning(
                f"Assembled size {assembled_size} differs from declared size {record.size} "
                f"for session {record.token}"
            )

    def _discard_quietly(self, key: str) -> None:
        try:
            self.store.delete(key)
        except StorageError as e:
            logger.warning(f"Failed to delete {key}: {e}")
