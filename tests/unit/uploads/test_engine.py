"""
Test the chunked upload engine protocol.
"""

import random
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from catalog_loader.db.models import UploadSession, utcnow
from catalog_loader.db.session import session_scope
from catalog_loader.errors import InvalidRequestError, ResourceNotFoundError, StorageError
from catalog_loader.models.upload import UploadStatus
from catalog_loader.uploads.checksum import compute_checksum
from catalog_loader.uploads.engine import chunk_key, final_key


def split(payload, size):
    return [payload[i:i + size] for i in range(0, len(payload), size)]


def start(engine, chunks, filename="data.bin"):
    size = sum(len(c) for c in chunks)
    return engine.initialize_upload(filename, size, "application/octet-stream", len(chunks))


def send(engine, token, chunks, order=None):
    results = []
    for index in order if order is not None else range(len(chunks)):
        results.append(engine.accept_chunk(token, index, chunks[index], compute_checksum(chunks[index])))
    return results


# === INITIALIZATION ===


def test_initialize_creates_pending_session(upload_engine):
    session = upload_engine.initialize_upload("photo.jpg", 10, "image/jpeg", 3)

    assert session.status == UploadStatus.PENDING
    assert session.uploaded_chunks == 0
    assert session.total_chunks == 3
    assert session.original_name == "photo.jpg"
    assert session.stored_filename.endswith(".jpg")
    assert session.stored_filename != "photo.jpg"
    assert session.chunk_size == 4


def test_initialize_tokens_are_unique(upload_engine):
    a = upload_engine.initialize_upload("a.bin", 1, "application/octet-stream", 1)
    b = upload_engine.initialize_upload("a.bin", 1, "application/octet-stream", 1)
    assert a.token != b.token
    assert a.stored_filename != b.stored_filename


@pytest.mark.parametrize(
    "filename,size,chunks",
    [("", 10, 1), ("a.bin", 0, 1), ("a.bin", 10, 0), ("a.bin", -5, 2)],
)
def test_initialize_rejects_invalid_parameters(upload_engine, session_factory, filename, size, chunks):
    with pytest.raises(InvalidRequestError):
        upload_engine.initialize_upload(filename, size, "application/octet-stream", chunks)

    with session_scope(session_factory) as session:
        assert session.query(UploadSession).count() == 0


# === ACCEPTING CHUNKS ===


def test_chunk_count_is_order_independent(upload_engine):
    chunks = split(b"AAAABBBBCCCCDD", 4)
    session = start(upload_engine, chunks)

    results = send(upload_engine, session.token, chunks, order=[3, 1, 0, 2])

    assert all(r.success for r in results)
    assert results[-1].uploaded_chunks == 4
    assert results[-1].is_complete
    status = upload_engine.get_status(session.token)
    assert status.status == UploadStatus.UPLOADING
    assert status.chunk_indices == [0, 1, 2, 3]


def test_reaccepting_chunk_does_not_count_twice(upload_engine, chunk_store):
    chunks = split(b"AAAABBBB", 4)
    session = start(upload_engine, chunks)

    send(upload_engine, session.token, chunks, order=[0])
    again = upload_engine.accept_chunk(session.token, 0, b"ZZZZ", compute_checksum(b"ZZZZ"))

    assert again.success
    assert again.uploaded_chunks == 1
    # The re-sent bytes replace the earlier ones
    assert chunk_store.get(chunk_key(session.token, 0)) == b"ZZZZ"


def test_bad_checksum_changes_nothing(upload_engine, chunk_store):
    chunks = split(b"AAAABBBB", 4)
    session = start(upload_engine, chunks)

    result = upload_engine.accept_chunk(session.token, 0, b"AAAA", compute_checksum(b"XXXX"))

    assert not result.success
    assert result.error_type == "ChecksumMismatchError"
    assert result.uploaded_chunks == 0
    assert not chunk_store.exists(chunk_key(session.token, 0))
    assert upload_engine.get_status(session.token).status == UploadStatus.PENDING


def test_bad_checksum_keeps_previously_accepted_bytes(upload_engine, chunk_store):
    chunks = split(b"AAAABBBB", 4)
    session = start(upload_engine, chunks)
    send(upload_engine, session.token, chunks, order=[0])

    result = upload_engine.accept_chunk(session.token, 0, b"EVIL", compute_checksum(b"AAAA"))

    assert not result.success
    assert result.uploaded_chunks == 1
    assert chunk_store.get(chunk_key(session.token, 0)) == b"AAAA"


@pytest.mark.parametrize("index", [-1, 2, 99])
def test_chunk_index_out_of_range(upload_engine, index):
    chunks = split(b"AAAABBBB", 4)
    session = start(upload_engine, chunks)

    result = upload_engine.accept_chunk(session.token, index, b"AAAA", compute_checksum(b"AAAA"))

    assert not result.success
    assert result.error_type == "InvalidRequestError"
    assert upload_engine.get_status(session.token).uploaded_chunks == 0


def test_unknown_session(upload_engine):
    with pytest.raises(ResourceNotFoundError):
        upload_engine.accept_chunk("no-such-token", 0, b"x", compute_checksum(b"x"))
    with pytest.raises(ResourceNotFoundError):
        upload_engine.get_status("no-such-token")
    with pytest.raises(ResourceNotFoundError):
        upload_engine.complete_upload("no-such-token", "0" * 64)


def test_concurrent_chunks_are_all_counted(upload_engine):
    payload = bytes(random.Random(7).getrandbits(8) for _ in range(20 * 4))
    chunks = split(payload, 4)
    session = start(upload_engine, chunks)
    order = list(range(len(chunks)))
    random.Random(11).shuffle(order)
    # Send every index twice to exercise idempotent re-delivery under contention
    order = order + order[::-1]

    def deliver(index):
        return upload_engine.accept_chunk(session.token, index, chunks[index], compute_checksum(chunks[index]))

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(executor.map(deliver, order))

    assert all(r.success for r in results)
    status = upload_engine.get_status(session.token)
    assert status.uploaded_chunks == 20
    assert status.chunk_indices == list(range(20))

    completion = upload_engine.complete_upload(session.token, compute_checksum(payload))
    assert completion.success


# === COMPLETION ===


def test_complete_before_all_chunks_arrive(upload_engine):
    chunks = split(b"AAAABBBBCCCC", 4)
    session = start(upload_engine, chunks)
    send(upload_engine, session.token, chunks, order=[1])

    result = upload_engine.complete_upload(session.token, compute_checksum(b"AAAABBBBCCCC"))

    assert not result.success
    assert result.error_type == "UploadConflictError"
    assert result.details["missing_chunks"] == [0, 2]
    assert upload_engine.get_status(session.token).status == UploadStatus.UPLOADING


def test_assembly_follows_index_order(upload_engine, chunk_store):
    a, b, c = b"AAAA", b"BBBB", b"CC"
    chunks = [a, b, c]
    session = start(upload_engine, chunks)
    send(upload_engine, session.token, chunks, order=[2, 0, 1])

    result = upload_engine.complete_upload(session.token, compute_checksum(a + b + c))

    assert result.success
    assert result.path == final_key(session.stored_filename)
    assert chunk_store.get(result.path) == a + b + c
    assert result.upload.status == UploadStatus.COMPLETED
    assert result.upload.checksum == compute_checksum(a + b + c)


@pytest.mark.parametrize("seed,size,chunk_size", [(1, 1, 1), (2, 100, 7), (3, 4096, 1000), (4, 333, 333)])
def test_roundtrip_hash(upload_engine, chunk_store, seed, size, chunk_size):
    rng = random.Random(seed)
    payload = bytes(rng.getrandbits(8) for _ in range(size))
    chunks = split(payload, chunk_size)
    session = start(upload_engine, chunks)
    order = list(range(len(chunks)))
    rng.shuffle(order)
    send(upload_engine, session.token, chunks, order=order)

    result = upload_engine.complete_upload(session.token, compute_checksum(payload))

    assert result.success
    assert compute_checksum(chunk_store.get(result.path)) == compute_checksum(payload)


def test_completion_removes_chunks(upload_engine, chunk_store):
    chunks = split(b"AAAABB", 4)
    session = start(upload_engine, chunks)
    send(upload_engine, session.token, chunks)

    upload_engine.complete_upload(session.token, compute_checksum(b"AAAABB"))

    assert not chunk_store.exists(chunk_key(session.token, 0))
    assert not chunk_store.exists(chunk_key(session.token, 1))


def test_complete_twice_is_effectful_once(upload_engine, chunk_store, monkeypatch):
    chunks = split(b"AAAABB", 4)
    session = start(upload_engine, chunks)
    send(upload_engine, session.token, chunks)
    checksum = compute_checksum(b"AAAABB")
    first = upload_engine.complete_upload(session.token, checksum)

    def fail_assemble(*args, **kwargs):
        raise AssertionError("completed upload was re-assembled")

    monkeypatch.setattr(upload_engine, "_assemble", fail_assemble)
    second = upload_engine.complete_upload(session.token, checksum)

    assert second.success
    assert second.already_completed
    assert second.path == first.path
    assert second.upload.updated_at == first.upload.updated_at
    assert chunk_store.get(first.path) == b"AAAABB"


def test_chunk_after_completion_is_rejected(upload_engine):
    chunks = split(b"AAAA", 4)
    session = start(upload_engine, chunks)
    send(upload_engine, session.token, chunks)
    upload_engine.complete_upload(session.token, compute_checksum(b"AAAA"))

    result = upload_engine.accept_chunk(session.token, 0, b"AAAA", compute_checksum(b"AAAA"))

    assert not result.success
    assert result.error_type == "UploadConflictError"
    assert result.uploaded_chunks == 1


def test_final_checksum_mismatch_resets_session(upload_engine, chunk_store):
    chunks = split(b"AAAABBBB", 4)
    session = start(upload_engine, chunks)
    send(upload_engine, session.token, chunks)

    result = upload_engine.complete_upload(session.token, compute_checksum(b"something else"))

    assert not result.success
    assert result.error_type == "ChecksumMismatchError"
    status = upload_engine.get_status(session.token)
    assert status.status == UploadStatus.UPLOADING
    assert status.uploaded_chunks == 0
    assert status.chunk_indices == []
    assert not chunk_store.exists(final_key(session.stored_filename))
    assert not chunk_store.exists(chunk_key(session.token, 0))

    # The session stays resumable with a fresh set of chunks
    send(upload_engine, session.token, chunks)
    retry = upload_engine.complete_upload(session.token, compute_checksum(b"AAAABBBB"))
    assert retry.success


def test_missing_chunk_object_fails_upload(upload_engine, chunk_store):
    chunks = split(b"AAAABBBB", 4)
    session = start(upload_engine, chunks)
    send(upload_engine, session.token, chunks)
    chunk_store.delete(chunk_key(session.token, 1))

    result = upload_engine.complete_upload(session.token, compute_checksum(b"AAAABBBB"))

    assert not result.success
    assert result.error_type == "ChunkNotFoundError"
    status = upload_engine.get_status(session.token)
    assert status.status == UploadStatus.FAILED
    assert status.error_message
    assert not chunk_store.exists(final_key(session.stored_filename))

    again = upload_engine.complete_upload(session.token, compute_checksum(b"AAAABBBB"))
    assert not again.success
    assert again.error_type == "UploadConflictError"


# === RESUME AND CLEANUP ===


def test_resume_info(upload_engine):
    chunks = split(b"AAAABBBBCCCCDDDD", 4)
    session = start(upload_engine, chunks)
    send(upload_engine, session.token, chunks, order=[3, 1])

    info = upload_engine.resume_info(session.token)

    assert info.exists
    assert info.status == UploadStatus.UPLOADING
    assert info.uploaded_chunks == 2
    assert info.uploaded_chunk_indices == [1, 3]
    assert info.missing_chunk_indices == [0, 2]


def test_resume_info_unknown_session(upload_engine):
    info = upload_engine.resume_info("no-such-token")
    assert not info.exists
    assert info.missing_chunk_indices == []


def test_discard_upload(upload_engine, chunk_store):
    chunks = split(b"AAAABBBB", 4)
    session = start(upload_engine, chunks)
    send(upload_engine, session.token, chunks, order=[0])

    info = upload_engine.discard_upload(session.token)

    assert info.status == UploadStatus.FAILED
    assert info.error_message == "Discarded by operator"
    assert not chunk_store.exists(chunk_key(session.token, 0))


def test_reclaim_stale_uploads(upload_engine, session_factory, chunk_store):
    chunks = split(b"AAAABBBB", 4)
    stale = start(upload_engine, chunks)
    fresh = start(upload_engine, chunks)
    send(upload_engine, stale.token, chunks, order=[0])
    send(upload_engine, fresh.token, chunks, order=[0])

    with session_scope(session_factory) as session:
        record = session.query(UploadSession).filter(UploadSession.token == stale.token).one()
        record.updated_at = utcnow() - timedelta(days=2)

    reclaimed = upload_engine.reclaim_stale_uploads(timedelta(hours=24))

    assert reclaimed == 1
    assert upload_engine.get_status(stale.token).status == UploadStatus.FAILED
    assert upload_engine.get_status(stale.token).error_message == "Upload abandoned"
    assert not chunk_store.exists(chunk_key(stale.token, 0))
    assert upload_engine.get_status(fresh.token).status == UploadStatus.UPLOADING
    assert chunk_store.exists(chunk_key(fresh.token, 0))


def test_reclaim_skips_completed_uploads(upload_engine, session_factory):
    chunks = split(b"AAAA", 4)
    session = start(upload_engine, chunks)
    send(upload_engine, session.token, chunks)
    upload_engine.complete_upload(session.token, compute_checksum(b"AAAA"))

    with session_scope(session_factory) as db:
        record = db.query(UploadSession).filter(UploadSession.token == session.token).one()
        record.updated_at = utcnow() - timedelta(days=30)

    assert upload_engine.reclaim_stale_uploads(timedelta(hours=1)) == 0
    assert upload_engine.get_status(session.token).status == UploadStatus.COMPLETED


# === STORAGE FAILURES ===


def test_chunk_write_failure_leaves_session_unchanged(upload_engine, chunk_store, monkeypatch):
    chunks = split(b"AAAABBBB", 4)
    session = start(upload_engine, chunks)

    def broken_put(key, data):
        raise StorageError(f"Failed to write {key}: disk full")

    monkeypatch.setattr(chunk_store, "put", broken_put)
    result = upload_engine.accept_chunk(session.token, 0, b"AAAA", compute_checksum(b"AAAA"))

    assert not result.success
    assert result.error_type == "StorageError"
    assert result.uploaded_chunks == 0
    status = upload_engine.get_status(session.token)
    assert status.status == UploadStatus.PENDING
    assert status.uploaded_chunks == 0


def test_storage_failure_under_session_lock_is_a_result(upload_engine, chunk_store, monkeypatch):
    chunks = split(b"AAAABBBB", 4)
    session = start(upload_engine, chunks)
    send(upload_engine, session.token, chunks, order=[0])

    def broken_exists(key):
        raise StorageError(f"Failed to stat {key}")

    monkeypatch.setattr(chunk_store, "exists", broken_exists)
    result = upload_engine.accept_chunk(session.token, 1, b"BBBB", compute_checksum(b"BBBB"))

    assert not result.success
    assert result.error_type == "StorageError"
    assert result.uploaded_chunks == 1
    monkeypatch.undo()
    assert upload_engine.get_status(session.token).chunk_indices == [0]
