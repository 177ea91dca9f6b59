"""
Librarian Agent: Memory service for cached agent responses, journal entries
and framework knowledge.

Backs the result cache (CacheStore), journal similarity search
(SimilaritySearch) and the framework knowledge base (KnowledgeSearch) with
MongoDB Atlas.
"""

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from pymongo import ASCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.database import Database

from core.config import get_config
from core.similarity import SimilarityMatch

logger = logging.getLogger(__name__)


class Librarian:
    """
    Memory service (no framework logic).

    Connects to MongoDB (framework_oracle database). The agent_cache
    collection holds one document per fingerprint; journal_entries holds
    embedded journal text and framework_knowledge holds per-framework
    reference text, both searched with Atlas Vector Search. pymongo is
    blocking, so every call runs in a worker thread.
    """

    DB_NAME = "framework_oracle"
    CACHE_COLLECTION = "agent_cache"
    JOURNAL_COLLECTION = "journal_entries"
    KNOWLEDGE_COLLECTION = "framework_knowledge"

    def __init__(self, uri: str | None = None) -> None:
        """Initialize the Librarian with a MongoDB connection.

        Args:
            uri: Connection string; defaults to MONGODB_URI from config.

        Raises:
            RuntimeError: If no URI is configured or the client cannot be created.
        """
        config = get_config()
        uri = uri or config.MONGODB_URI
        if not uri:
            raise RuntimeError("MongoDB URI is not configured (set MONGODB_URI).")
        try:
            self._client: MongoClient[Any] = MongoClient(
                uri,
                tz_aware=True,
                serverSelectionTimeoutMS=5000,
            )
        except Exception as e:
            raise RuntimeError(
                f"MongoDB connection failed (check MONGODB_URI and network/SSL): {e}"
            ) from e
        self._db: Database[Any] = self._client[config.MONGODB_DB_NAME or self.DB_NAME]
        self._collection: Collection[Any] = self._db[self.CACHE_COLLECTION]
        self._journal: Collection[Any] = self._db[self.JOURNAL_COLLECTION]
        self._knowledge: Collection[Any] = self._db[self.KNOWLEDGE_COLLECTION]
        self._index_name: str = config.VECTOR_INDEX_NAME
        self._knowledge_index_name: str = config.KNOWLEDGE_INDEX_NAME

    def ensure_indexes(self) -> None:
        """Create the TTL index that lets MongoDB drop expired cache entries."""
        self._collection.create_index([("expires_at", ASCENDING)], expireAfterSeconds=0)

    # CacheStore

    async def get(self, key: str) -> dict[str, Any] | None:
        doc = await asyncio.to_thread(self._collection.find_one, {"_id": key})
        if doc is None:
            return None
        value = doc.get("value")
        return value if isinstance(value, dict) else None

    async def put(
        self, key: str, value: dict[str, Any], expires_at: datetime | None = None
    ) -> None:
        """Upsert the entry for key; rewrites are idempotent."""
        document = {
            "_id": key,
            "value": value,
            "expires_at": expires_at,
            "stored_at": datetime.now(timezone.utc),
        }
        await asyncio.to_thread(self._collection.replace_one, {"_id": key}, document, upsert=True)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._collection.delete_one, {"_id": key})

    # SimilaritySearch

    async def search(
        self, embedding: Sequence[float], count: int = 5, threshold: float = 0.7
    ) -> list[SimilarityMatch]:
        """
        Find journal entries whose embeddings are closest to the query.

        Args:
            embedding: Query vector.
            count: Maximum number of matches.
            threshold: Minimum vectorSearchScore to keep.

        Returns:
            Matches ranked best first.
        """
        matches = await self._vector_search(
            self._journal, self._index_name, embedding, count, threshold
        )
        logger.debug("journal_search", extra={"matches": len(matches)})
        return matches

    async def store_journal_entry(
        self,
        content: str,
        embedding: Sequence[float],
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """
        Save a journal entry with its embedding.

        Returns:
            The new document id as a string.
        """
        document = {
            "content": content,
            "embedding": [float(x) for x in embedding],
            "metadata": dict(metadata or {}),
            "created_at": datetime.now(timezone.utc),
        }
        result = await asyncio.to_thread(self._journal.insert_one, document)
        return str(result.inserted_id)

    async def _vector_search(
        self,
        collection: Collection[Any],
        index: str,
        embedding: Sequence[float],
        count: int,
        threshold: float,
        filter: dict[str, Any] | None = None,
    ) -> list[SimilarityMatch]:
        if count <= 0:
            return []
        search: dict[str, Any] = {
            "index": index,
            "path": "embedding",
            "queryVector": [float(x) for x in embedding],
            "numCandidates": count * 10,
            "limit": count,
        }
        if filter:
            search["filter"] = filter
        pipeline = [
            {"$vectorSearch": search},
            {
                "$project": {
                    "content": 1,
                    "metadata": 1,
                    "framework": 1,
                    "score": {"$meta": "vectorSearchScore"},
                }
            },
        ]

        def _aggregate() -> list[dict[str, Any]]:
            return list(collection.aggregate(pipeline))

        docs = await asyncio.to_thread(_aggregate)
        matches: list[SimilarityMatch] = []
        for doc in docs:
            score = float(doc.get("score", 0.0))
            if score < threshold:
                continue
            metadata = dict(doc.get("metadata") or {})
            if doc.get("framework"):
                metadata["framework"] = doc["framework"]
            matches.append(
                SimilarityMatch(
                    id=str(doc["_id"]),
                    content=doc.get("content", ""),
                    similarity=score,
                    metadata=metadata,
                )
            )
        return matches

    # KnowledgeSearch

    async def search_knowledge(
        self,
        embedding: Sequence[float],
        framework: str | None = None,
        count: int = 3,
        threshold: float = 0.7,
    ) -> list[SimilarityMatch]:
        """
        Search the framework knowledge base.

        Args:
            embedding: Query vector.
            framework: Restrict the search to this framework's entries.
            count: Maximum number of matches.
            threshold: Minimum vectorSearchScore to keep.
        """
        matches = await self._vector_search(
            self._knowledge,
            self._knowledge_index_name,
            embedding,
            count,
            threshold,
            filter={"framework": framework} if framework else None,
        )
        logger.debug(
            "knowledge_search", extra={"framework": framework, "matches": len(matches)}
        )
        return matches

    async def store_framework_knowledge(
        self,
        framework: str,
        content: str,
        embedding: Sequence[float],
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Save one knowledge entry for framework; returns the new document id."""
        document = {
            "framework": framework,
            "content": content,
            "embedding": [float(x) for x in embedding],
            "metadata": dict(metadata or {}),
            "created_at": datetime.now(timezone.utc),
        }
        result = await asyncio.to_thread(self._knowledge.insert_one, document)
        return str(result.inserted_id)
