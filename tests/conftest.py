import os

os.environ.setdefault("GOOGLE_API_KEY", "test-key-not-used")
os.environ.setdefault("ENV", "prod")

import hashlib
import re

import pytest

from recall.src.core.embedding_client import EmbeddingCache, EmbeddingClient
from recall.src.database.vector_store import MemoryVectorStore

DIMS = 32

U1 = "11111111-1111-4111-8111-111111111111"
U2 = "22222222-2222-4222-8222-222222222222"
C1 = "c1c1c1c1-0000-4000-8000-000000000001"
C2 = "c2c2c2c2-0000-4000-8000-000000000002"

_WORD_RE = re.compile(r"[a-z0-9]+")


def message_id(n: int) -> str:
    return f"00000000-0000-4000-8000-{n:012d}"


class HashingEmbedder:
    """Deterministic bag-of-words embedder; shared words mean nearby vectors."""

    def __init__(self, dims: int = DIMS) -> None:
        self.dims = dims
        self.calls = 0
        self.fail = False

    def embed_query(self, text: str) -> list[float]:
        self.calls += 1
        if self.fail:
            raise RuntimeError("embedding service unavailable")
        vector = [0.0] * self.dims
        for word in _WORD_RE.findall(text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dims
            vector[bucket] += 1.0
        norm = sum(v * v for v in vector) ** 0.5 or 1.0
        return [v / norm for v in vector]

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self.embed_query(t) for t in texts]


@pytest.fixture
def embedder():
    return HashingEmbedder()


@pytest.fixture
def client(embedder):
    return EmbeddingClient(embedder, EmbeddingCache(), dimensions=DIMS, timeout_seconds=5.0)


@pytest.fixture
def store(client, tmp_path):
    return MemoryVectorStore(client, db_path=str(tmp_path / "lancedb"))
