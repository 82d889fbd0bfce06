"""
Test configuration and fixtures.
"""

import pytest

from ragpipe import (
    BaseEmbedding,
    BaseGenerator,
    CacheService,
    RagEngine,
    ResilienceService,
    StaticGenerator,
)


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records delays instead of waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class MappedEmbedding(BaseEmbedding):
    """Embeds text as the vector of the first keyword it contains.

    Texts containing a keyword from ``failures`` raise the mapped exception.
    """

    def __init__(
        self,
        vectors: dict[str, list[float]],
        default: list[float] | None = None,
        failures: dict[str, Exception] | None = None,
    ):
        self.vectors = vectors
        self.default = default or [0.0, 1.0]
        self.failures = failures or {}
        self.document_calls: list[str] = []
        self.query_calls: list[str] = []

    @property
    def dimension(self) -> int:
        return len(self.default)

    def _lookup(self, text: str) -> list[float]:
        for keyword, error in self.failures.items():
            if keyword in text:
                raise error
        for keyword, vector in self.vectors.items():
            if keyword in text:
                return list(vector)
        return list(self.default)

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.document_calls.extend(texts)
        return [self._lookup(text) for text in texts]

    async def embed_query(self, text: str) -> list[float]:
        self.query_calls.append(text)
        return self._lookup(text)


class FailingGenerator(BaseGenerator):
    """Generator that always raises."""

    def __init__(self, error: Exception | None = None):
        self.error = error or RuntimeError("model exploded")
        self.calls = 0

    async def generate(self, prompt: str) -> str:
        self.calls += 1
        raise self.error


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def resilience(sleep, clock):
    """Resilience service that never actually waits."""
    return ResilienceService(sleep=sleep, clock=clock)


@pytest.fixture
def generator():
    return StaticGenerator("Python is a programming language.")


@pytest.fixture
def make_engine(resilience, generator):
    """Factory for engines wired with fast resilience and a fresh cache."""

    def factory(embedding: BaseEmbedding, **kwargs) -> RagEngine:
        kwargs.setdefault("generator", generator)
        kwargs.setdefault("resilience", resilience)
        kwargs.setdefault("cache", CacheService())
        return RagEngine(embedding=embedding, **kwargs)

    return factory
