# repository/blob_repository.py
import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterable, AsyncIterator, Optional, Union
from uuid import uuid4
import async_timeout
from redis.asyncio import Redis
from redis.exceptions import RedisError
from config.cache import get_redis
from config.settings import settings
from model.blob import BlobInfo, BlobPage, BlobPagination, BlobStats, StoredBlob
from repository.namespaces import BLOB_INDEX, BLOB_PENDING, BLOBS
from util.errors import NotFoundError, StoreIOError, StoreTimeoutError
from util.functions import format_bytes
from util.timing import timed

logger = logging.getLogger(__name__)

BlobContent = Union[bytes, bytearray, memoryview, AsyncIterable[bytes]]


class ChunkedBlobStore:
    """
    Redis-backed store for binary objects of any size.

    Layout per object:
      <BLOBS>:<id>:meta    hash   display name, sizes, stored_at, metadata (json)
      <BLOBS>:<id>:chunks  list   fixed-size chunks in order
      <BLOB_INDEX>         zset   id scored by stored_at (ms) for recency listing

    Writes land in <BLOB_PENDING>:<id> first and become visible in a single
    MULTI/EXEC together with the metadata, so a failed or timed-out upload
    never leaves a retrievable partial object.
    """

    def __init__(
        self,
        client: Optional[Redis] = None,
        *,
        chunk_size: int = settings.BLOB_CHUNK_SIZE,
        upload_timeout: float = settings.UPLOAD_TIMEOUT_SECONDS,
        pending_ttl_seconds: int = settings.BLOB_PENDING_TTL_SECONDS,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        self._redis = client
        self._chunk_size = int(chunk_size)
        self._upload_timeout = float(upload_timeout)
        self._pending_ttl = int(pending_ttl_seconds)

    async def _client(self) -> Redis:
        if self._redis is None:
            self._redis = await get_redis()
        return self._redis

    @staticmethod
    def _meta_key(storage_id: str) -> str:
        return f"{BLOBS}:{storage_id}:meta"

    @staticmethod
    def _chunks_key(storage_id: str) -> str:
        return f"{BLOBS}:{storage_id}:chunks"

    @staticmethod
    def _pending_key(storage_id: str) -> str:
        return f"{BLOB_PENDING}:{storage_id}"

    # ---------------- Write path ----------------

    async def store(
        self,
        content: BlobContent,
        display_name: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> StoredBlob:
        storage_id = uuid4().hex
        pending = self._pending_key(storage_id)
        r = await self._client()
        committing = False
        committed = False
        try:
            with timed(logger, "blob.store", id=storage_id) as t:
                async with async_timeout.timeout(self._upload_timeout):
                    byte_length, chunk_count = await self._write_chunks(
                        r, pending, content
                    )
                    stored_at = datetime.now(timezone.utc)
                    committing = True
                    await self._commit(
                        r,
                        storage_id,
                        display_name=display_name,
                        metadata=metadata or {},
                        byte_length=byte_length,
                        chunk_count=chunk_count,
                        stored_at=stored_at,
                    )
                committed = True
                t["bytes"] = byte_length
                t["chunks"] = chunk_count
        except asyncio.TimeoutError:
            if committing:
                # EXEC may have landed before the deadline cut the reply off.
                await self._undo_commit(storage_id)
            raise StoreTimeoutError(
                f"Blob upload timeout ({self._upload_timeout:g}s) for {display_name}"
            ) from None
        except (RedisError, OSError) as e:
            raise StoreIOError(f"Blob upload failed for {display_name}: {e}") from e
        finally:
            if not committed:
                await self._discard(r, pending)

        return StoredBlob(
            storage_id=storage_id, byte_length=byte_length, stored_at=stored_at
        )

    async def _iter_content(self, content: BlobContent) -> AsyncIterator[bytes]:
        if isinstance(content, (bytes, bytearray, memoryview)):
            view = memoryview(content)
            for start in range(0, len(view), self._chunk_size):
                yield bytes(view[start : start + self._chunk_size])
            return
        async for piece in content:
            if piece:
                yield bytes(piece)

    async def _write_chunks(
        self, r: Redis, pending: str, content: BlobContent
    ) -> tuple[int, int]:
        buf = bytearray()
        byte_length = 0
        chunk_count = 0

        async def _flush(data: bytes) -> None:
            nonlocal chunk_count
            await r.rpush(pending, data)
            chunk_count += 1
            if chunk_count == 1:
                await r.expire(pending, self._pending_ttl)

        async for piece in self._iter_content(content):
            buf += piece
            byte_length += len(piece)
            while len(buf) >= self._chunk_size:
                await _flush(bytes(buf[: self._chunk_size]))
                del buf[: self._chunk_size]
        if buf:
            await _flush(bytes(buf))
        return byte_length, chunk_count

    async def _commit(
        self,
        r: Redis,
        storage_id: str,
        *,
        display_name: str,
        metadata: dict[str, Any],
        byte_length: int,
        chunk_count: int,
        stored_at: datetime,
    ) -> None:
        chunks_key = self._chunks_key(storage_id)
        mapping = {
            "storage_id": storage_id,
            "display_name": display_name,
            "byte_length": str(byte_length),
            "chunk_size": str(self._chunk_size),
            "chunk_count": str(chunk_count),
            "stored_at": stored_at.isoformat(),
            "metadata": json.dumps(metadata, default=str),
        }
        async with r.pipeline(transaction=True) as pipe:
            if chunk_count:
                # RENAME keeps the pending TTL; committed data must not expire.
                pipe.rename(self._pending_key(storage_id), chunks_key)
                pipe.persist(chunks_key)
            pipe.hset(self._meta_key(storage_id), mapping=mapping)
            pipe.zadd(BLOB_INDEX, {storage_id: int(stored_at.timestamp() * 1000)})
            await pipe.execute()

    @staticmethod
    async def _discard(r: Redis, pending: str) -> None:
        try:
            await r.delete(pending)
        except RedisError as e:
            # Pending keys expire on their own; the original error matters more.
            logger.warning("blob.discard.error key=%s err=%s", pending, e)

    async def _undo_commit(self, storage_id: str) -> None:
        try:
            if await self.delete(storage_id):
                logger.warning("blob.store.rolled_back id=%s", storage_id)
        except RedisError as e:
            logger.error("blob.rollback.error id=%s err=%s", storage_id, e)

    # ---------------- Read path ----------------

    async def describe(self, storage_id: str) -> BlobInfo:
        if not storage_id:
            raise NotFoundError("Blob not found")
        r = await self._client()
        h = await r.hgetall(self._meta_key(storage_id))
        if not h:
            raise NotFoundError(f"Blob not found: {storage_id}")

        def _s(key: str, default: str = "") -> str:
            v = h.get(key.encode("utf-8"), h.get(key))
            if v is None:
                return default
            return v.decode("utf-8") if isinstance(v, (bytes, bytearray)) else str(v)

        try:
            return BlobInfo(
                storage_id=_s("storage_id") or storage_id,
                display_name=_s("display_name"),
                byte_length=int(_s("byte_length", "0") or 0),
                chunk_size=int(_s("chunk_size", "0") or 0),
                chunk_count=int(_s("chunk_count", "0") or 0),
                stored_at=datetime.fromisoformat(_s("stored_at")),
                metadata=json.loads(_s("metadata", "{}") or "{}"),
            )
        except ValueError as e:
            raise StoreIOError(f"Corrupt blob metadata for {storage_id}: {e}") from e

    async def retrieve(
        self, storage_id: str, info: Optional[BlobInfo] = None
    ) -> AsyncIterator[bytes]:
        """
        Return a lazy, single-pass stream over the object's bytes.
        Raises NotFoundError up front; chunks are fetched as the caller iterates.
        Pass `info` from a prior `describe` to skip the metadata read.
        """
        if info is None or info.storage_id != storage_id:
            info = await self.describe(storage_id)
        return self._iter_chunks(storage_id, info.chunk_count)

    async def _iter_chunks(self, storage_id: str, chunk_count: int) -> AsyncIterator[bytes]:
        r = await self._client()
        key = self._chunks_key(storage_id)
        for i in range(chunk_count):
            try:
                chunk = await r.lindex(key, i)
            except RedisError as e:
                raise StoreIOError(f"Blob read failed for {storage_id}: {e}") from e
            if chunk is None:
                raise StoreIOError(f"Blob {storage_id} vanished while reading chunk {i}")
            yield chunk

    async def read_all(self, storage_id: str) -> bytes:
        out = bytearray()
        async for chunk in await self.retrieve(storage_id):
            out += chunk
        return bytes(out)

    # ---------------- Admin ----------------

    async def delete(self, storage_id: str) -> bool:
        """Idempotent: unknown or already-deleted handles are a no-op."""
        r = await self._client()
        async with r.pipeline(transaction=True) as pipe:
            pipe.delete(self._meta_key(storage_id), self._chunks_key(storage_id))
            pipe.zrem(BLOB_INDEX, storage_id)
            removed, _ = await pipe.execute()
        if removed:
            logger.info("blob.deleted id=%s", storage_id)
        return bool(removed)

    async def list_recent(self, limit: int = 50, offset: int = 0) -> BlobPage:
        limit = max(0, int(limit))
        offset = max(0, int(offset))
        r = await self._client()
        total = int(await r.zcard(BLOB_INDEX))
        ids = (
            await r.zrevrange(BLOB_INDEX, offset, offset + limit - 1) if limit else []
        )
        blobs: list[BlobInfo] = []
        for raw in ids:
            sid = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
            try:
                blobs.append(await self.describe(sid))
            except NotFoundError:
                # Deleted between the index read and the metadata read.
                continue
        return BlobPage(
            blobs=blobs,
            pagination=BlobPagination(
                total=total,
                offset=offset,
                limit=limit,
                has_more=offset + limit < total,
            ),
        )

    async def cleanup_older_than(self, days: float = 30) -> int:
        """Delete every object stored at least `days` ago. Returns how many went."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        r = await self._client()
        ids = await r.zrangebyscore(BLOB_INDEX, "-inf", int(cutoff.timestamp() * 1000))
        removed = 0
        for raw in ids:
            sid = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
            if await self.delete(sid):
                removed += 1
        if removed:
            logger.info("blob.cleanup removed=%d older_than_days=%s", removed, days)
        return removed

    async def aggregate_stats(self) -> BlobStats:
        r = await self._client()
        ids = await r.zrange(BLOB_INDEX, 0, -1)
        lengths: list[int] = []
        if ids:
            async with r.pipeline(transaction=False) as pipe:
                for raw in ids:
                    sid = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
                    pipe.hget(self._meta_key(sid), "byte_length")
                values = await pipe.execute()
            lengths = [int(v) for v in values if v is not None]
        total_bytes = sum(lengths)
        average = round(total_bytes / len(lengths)) if lengths else 0
        return BlobStats(
            total_objects=len(lengths),
            total_bytes=total_bytes,
            average_bytes=average,
            formatted_total_size=format_bytes(total_bytes),
        )
