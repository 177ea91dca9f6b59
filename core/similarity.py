"""
Similarity-search collaborator.

Only agents that ask for it use similarity search (the oracle retrieves
related journal entries, the interpreter retrieves framework knowledge);
the executor never touches it. Production search goes through
agents.librarian.Librarian (MongoDB Atlas Vector Search);
InMemoryVectorIndex and InMemoryKnowledgeBase serve tests and local runs.
OpenAIEmbedder turns queries into vectors through an OpenAI-compatible
embeddings endpoint.
"""

import asyncio
from collections.abc import Sequence
from typing import Any, Protocol

import numpy as np
import openai
from pydantic import BaseModel, Field


class SimilarityMatch(BaseModel):
    """One ranked search hit."""

    id: str
    content: str
    similarity: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class SimilaritySearch(Protocol):
    """Query embedding in, ranked matches out (best first)."""

    async def search(
        self, embedding: Sequence[float], count: int = 5, threshold: float = 0.7
    ) -> list[SimilarityMatch]: ...


class KnowledgeSearch(Protocol):
    """Framework knowledge base, optionally restricted to one framework."""

    async def search_knowledge(
        self,
        embedding: Sequence[float],
        framework: str | None = None,
        count: int = 3,
        threshold: float = 0.7,
    ) -> list[SimilarityMatch]: ...


class Embedder(Protocol):
    """Text in, embedding vector out."""

    async def embed(self, text: str) -> list[float]: ...


class InMemoryVectorIndex:
    """Cosine-similarity index held in memory."""

    def __init__(self) -> None:
        self._ids: list[str] = []
        self._contents: list[str] = []
        self._metadata: list[dict[str, Any]] = []
        self._vectors: list[np.ndarray] = []

    def add(
        self,
        id: str,
        content: str,
        embedding: Sequence[float],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        vector = np.asarray(embedding, dtype=float)
        if self._vectors and vector.shape != self._vectors[0].shape:
            raise ValueError(
                f"embedding dimension {vector.shape[0]} does not match index dimension "
                f"{self._vectors[0].shape[0]}"
            )
        norm = np.linalg.norm(vector)
        if norm == 0:
            raise ValueError("embedding must not be the zero vector")
        self._ids.append(id)
        self._contents.append(content)
        self._metadata.append(dict(metadata or {}))
        self._vectors.append(vector / norm)

    async def search(
        self, embedding: Sequence[float], count: int = 5, threshold: float = 0.7
    ) -> list[SimilarityMatch]:
        if not self._vectors or count <= 0:
            return []
        query = np.asarray(embedding, dtype=float)
        norm = np.linalg.norm(query)
        if norm == 0:
            return []
        scores = np.vstack(self._vectors) @ (query / norm)
        ranked = np.argsort(-scores, kind="stable")
        matches: list[SimilarityMatch] = []
        for idx in ranked:
            score = float(scores[idx])
            if score < threshold:
                break
            matches.append(
                SimilarityMatch(
                    id=self._ids[idx],
                    content=self._contents[idx],
                    similarity=score,
                    metadata=self._metadata[idx],
                )
            )
            if len(matches) >= count:
                break
        return matches

    def __len__(self) -> int:
        return len(self._ids)


class InMemoryKnowledgeBase:
    """Framework knowledge held in memory, one cosine index per framework."""

    def __init__(self) -> None:
        self._indexes: dict[str, InMemoryVectorIndex] = {}

    def add(
        self,
        framework: str,
        id: str,
        content: str,
        embedding: Sequence[float],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        index = self._indexes.setdefault(framework, InMemoryVectorIndex())
        index.add(id, content, embedding, {**(metadata or {}), "framework": framework})

    async def search_knowledge(
        self,
        embedding: Sequence[float],
        framework: str | None = None,
        count: int = 3,
        threshold: float = 0.7,
    ) -> list[SimilarityMatch]:
        if framework is not None:
            indexes = [self._indexes[framework]] if framework in self._indexes else []
        else:
            indexes = list(self._indexes.values())
        matches: list[SimilarityMatch] = []
        for index in indexes:
            matches.extend(await index.search(embedding, count=count, threshold=threshold))
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:count]

    def __len__(self) -> int:
        return sum(len(index) for index in self._indexes.values())


class OpenAIEmbedder:
    """
    Embedder over an OpenAI-compatible embeddings endpoint.

    Defaults target Gemini's OpenAI-compatible API, so the same GOOGLE_API_KEY
    serves generation and embeddings.
    """

    def __init__(self, api_key: str, *, model: str, base_url: str | None = None) -> None:
        self.model = model
        self._client = openai.OpenAI(api_key=api_key, base_url=base_url)

    async def embed(self, text: str) -> list[float]:
        if not text.strip():
            raise ValueError("cannot embed empty text")
        response = await asyncio.to_thread(
            self._client.embeddings.create, model=self.model, input=[text]
        )
        return list(response.data[0].embedding)
