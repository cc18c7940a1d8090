"""Base storage class and helpers.

Contains client lifecycle, collection management, and shared utilities.
Subscriptions and delivery records are plain payload documents; every point
carries a one-dimensional placeholder vector because nothing is searched by
similarity.
"""

from __future__ import annotations

import asyncio
import hashlib
from datetime import datetime
from typing import Any

from qdrant_client import AsyncQdrantClient, models

from hookrelay.config import settings
from hookrelay.crypto import SecretBox

COLLECTION_NAMES = {
    "subscriptions": "subscriptions",
    "deliveries": "deliveries",
}

# Keyword/bool/float payload fields indexed per collection
PAYLOAD_INDEXES: dict[str, dict[str, models.PayloadSchemaType]] = {
    "subscriptions": {
        "id": models.PayloadSchemaType.KEYWORD,
        "owner_id": models.PayloadSchemaType.KEYWORD,
        "active": models.PayloadSchemaType.BOOL,
        "events": models.PayloadSchemaType.KEYWORD,
    },
    "deliveries": {
        "id": models.PayloadSchemaType.KEYWORD,
        "owner_id": models.PayloadSchemaType.KEYWORD,
        "subscription_id": models.PayloadSchemaType.KEYWORD,
        "state": models.PayloadSchemaType.KEYWORD,
        "success": models.PayloadSchemaType.BOOL,
        "created_ts": models.PayloadSchemaType.FLOAT,
        "next_retry_ts": models.PayloadSchemaType.FLOAT,
        "locked_ts": models.PayloadSchemaType.FLOAT,
    },
}

PLACEHOLDER_VECTOR = [0.0]


def to_timestamp(value: datetime | None) -> float | None:
    """Datetime to a float epoch for range filters."""
    return value.timestamp() if value is not None else None


class StorageBase:
    """Base class for HookRelay storage.

    Provides:
    - Client initialization and lifecycle management
    - Collection creation and indexing
    - Key building and point ID conversion
    - The SecretBox used to encrypt subscription secrets
    """

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        prefix: str | None = None,
        location: str | None = None,
        secret_box: SecretBox | None = None,
    ) -> None:
        """Initialize storage client.

        Args:
            url: Qdrant server URL. Defaults to settings.qdrant_url.
            api_key: Qdrant API key. Defaults to settings.qdrant_api_key.
            prefix: Collection name prefix. Defaults to settings.collection_prefix.
            location: Local Qdrant location (e.g. ":memory:"); overrides url.
            secret_box: Secret encryption. Defaults to one keyed from settings.
        """
        self._url = url or settings.qdrant_url
        self._api_key = api_key or settings.qdrant_api_key
        self._prefix = prefix or settings.collection_prefix
        self._location = location
        self._secret_box = secret_box or SecretBox(settings.effective_encryption_key)
        self._client: AsyncQdrantClient | None = None
        self._collections_initialized = False
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def client(self) -> AsyncQdrantClient:
        """Get the Qdrant client, raising if not initialized."""
        if self._client is None:
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        return self._client

    @property
    def is_initialized(self) -> bool:
        return self._client is not None and self._collections_initialized

    async def initialize(self) -> None:
        """Initialize the storage client and ensure collections exist."""
        if self._location is not None:
            self._client = AsyncQdrantClient(location=self._location)
        else:
            self._client = AsyncQdrantClient(url=self._url, api_key=self._api_key)
        await self._ensure_collections()
        self._collections_initialized = True

    async def close(self) -> None:
        """Close the storage client connection."""
        if self._client is not None:
            await self._client.close()
            self._client = None
            self._collections_initialized = False

    def _collection_name(self, kind: str) -> str:
        """Get full collection name with prefix."""
        suffix = COLLECTION_NAMES.get(kind, kind)
        return f"{self._prefix}_{suffix}"

    @staticmethod
    def _build_key(record_id: str, owner_id: str) -> str:
        """Build a tenancy key: ``{owner_id}/{record_id}``."""
        return f"{owner_id}/{record_id}"

    @staticmethod
    def _key_to_point_id(key: str) -> str:
        """Convert a storage key to a deterministic UUID-format point ID."""
        h = hashlib.sha256(key.encode()).hexdigest()[:32]
        return f"{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:32]}"

    def _point_id(self, record_id: str, owner_id: str) -> str:
        return self._key_to_point_id(self._build_key(record_id, owner_id))

    def _lock(self, key: str) -> asyncio.Lock:
        """Per-key lock serialising read-modify-write sequences in this process.

        Qdrant has no atomic increment or multi-statement transaction.
        """
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def _ensure_collections(self) -> None:
        """Ensure all required collections exist with payload indexes."""
        collections = await self.client.get_collections()
        existing = {c.name for c in collections.collections}

        for kind in COLLECTION_NAMES:
            collection_name = self._collection_name(kind)
            if collection_name in existing:
                continue
            await self.client.create_collection(
                collection_name=collection_name,
                vectors_config=models.VectorParams(
                    size=len(PLACEHOLDER_VECTOR),
                    distance=models.Distance.DOT,
                ),
            )
            for field_name, schema in PAYLOAD_INDEXES[kind].items():
                await self.client.create_payload_index(
                    collection_name=collection_name,
                    field_name=field_name,
                    field_schema=schema,
                )

    async def _upsert(self, kind: str, point_id: str, payload: dict[str, Any]) -> None:
        await self.client.upsert(
            collection_name=self._collection_name(kind),
            points=[
                models.PointStruct(
                    id=point_id,
                    vector=PLACEHOLDER_VECTOR,
                    payload=payload,
                )
            ],
        )

    @staticmethod
    def _match(key: str, value: Any) -> models.FieldCondition:
        return models.FieldCondition(key=key, match=models.MatchValue(value=value))

    async def _scroll_all(
        self,
        kind: str,
        scroll_filter: models.Filter,
    ) -> list[models.Record]:
        """Every point matching a filter, following scroll pages to the end."""
        points: list[models.Record] = []
        offset: models.ExtendedPointId | None = None
        while True:
            page, offset = await self.client.scroll(
                collection_name=self._collection_name(kind),
                scroll_filter=scroll_filter,
                limit=settings.storage_max_scroll_limit,
                offset=offset,
                with_payload=True,
            )
            points.extend(page)
            if offset is None:
                return points
