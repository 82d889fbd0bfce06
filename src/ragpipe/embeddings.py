"""Embedding providers: offline test doubles, OpenAI and sentence-transformers."""

import asyncio
import hashlib
import logging
import math
from typing import TYPE_CHECKING, Optional

from .base import BaseEmbedding
from .exceptions import TransientError

if TYPE_CHECKING:
    from .utils.config import OpenAISettings

logger = logging.getLogger(__name__)


def openai_transient_errors() -> tuple[type[Exception], ...]:
    """Return the OpenAI errors that a retry can recover from."""
    import openai

    return (openai.APIConnectionError, openai.APITimeoutError, openai.RateLimitError)


def create_openai_client(api_key: Optional[str] = None, base_url: Optional[str] = None):
    """Build an ``AsyncOpenAI`` client, importing the SDK on first use.

    Unset arguments are left for the SDK to resolve from its environment
    variables.
    """
    try:
        from openai import AsyncOpenAI
    except ImportError:
        raise ImportError(
            "The 'openai' package is needed for OpenAI embeddings and answers. "
            "Install it with: pip install ragpipe[openai]"
        )

    options = {"api_key": api_key, "base_url": base_url}
    return AsyncOpenAI(**{name: value for name, value in options.items() if value})


class DummyEmbedding(BaseEmbedding):
    """Maps every text to the zero vector."""

    def __init__(self, dimension: int = 384):
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed_query(text) for text in texts]

    async def embed_query(self, text: str) -> list[float]:
        return [0.0] * self._dimension


class FakeEmbedding(BaseEmbedding):
    """Offline embedding with stable, text-dependent unit vectors.

    Vector components come from repeated SHA-256 digests of
    ``"{seed}:{block}:{text}"``, each byte scaled into [-1, 1]. Equal texts
    under the same seed always land on the same vector, which makes cache
    hits and similarity ordering reproducible in tests.
    """

    def __init__(self, dimension: int = 384, seed: int = 42):
        self._dimension = dimension
        self.seed = seed

    @property
    def dimension(self) -> int:
        return self._dimension

    def _vector_for(self, text: str) -> list[float]:
        raw: list[float] = []
        block = 0
        while len(raw) < self._dimension:
            digest = hashlib.sha256(f"{self.seed}:{block}:{text}".encode()).digest()
            raw += [byte / 127.5 - 1.0 for byte in digest]
            block += 1

        del raw[self._dimension:]
        length = math.sqrt(sum(component * component for component in raw))
        if not length:
            return raw
        return [component / length for component in raw]

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return list(map(self._vector_for, texts))

    async def embed_query(self, text: str) -> list[float]:
        return self._vector_for(text)


class OpenAIEmbedding(BaseEmbedding):
    """Embeddings from the OpenAI ``/embeddings`` endpoint.

    Inputs are sent ``batch_size`` texts per request. Connection failures,
    timeouts and rate limiting surface as ``TransientError`` so the
    engine's retry policy can repeat the call; every other API error
    propagates unchanged.

    The ``openai`` extra must be installed.
    """

    DIMENSIONS_BY_MODEL = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }
    DEFAULT_DIMENSION = 1536

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        batch_size: int = 100,
    ):
        """
        Args:
            model: Embedding model name
            api_key: API key; the SDK reads OPENAI_API_KEY when omitted
            base_url: Alternative endpoint for OpenAI-compatible servers
            batch_size: Texts per embeddings request
        """
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.batch_size = batch_size
        self._client = None

    @classmethod
    def from_settings(cls, settings: "OpenAISettings", batch_size: int = 100) -> "OpenAIEmbedding":
        """Build the embedding from the ``openai`` settings section."""
        return cls(
            model=settings.embedding_model,
            api_key=settings.api_key,
            base_url=settings.base_url,
            batch_size=batch_size,
        )

    @property
    def dimension(self) -> int:
        return self.DIMENSIONS_BY_MODEL.get(self.model, self.DEFAULT_DIMENSION)

    def _get_client(self):
        if self._client is None:
            self._client = create_openai_client(self.api_key, self.base_url)
        return self._client

    async def _request(self, batch: list[str]) -> list[list[float]]:
        try:
            response = await self._get_client().embeddings.create(model=self.model, input=batch)
        except openai_transient_errors() as e:
            raise TransientError(str(e), operation="embedding") from e
        return [item.embedding for item in response.data]

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            logger.debug(f"Requesting {len(batch)} embeddings from {self.model}")
            vectors += await self._request(batch)
        return vectors

    async def embed_query(self, text: str) -> list[float]:
        [vector] = await self._request([text])
        return vector


class LocalEmbedding(BaseEmbedding):
    """Embeddings computed in-process by a sentence-transformers model.

    The model is loaded on the first call and encoding runs on the default
    executor so the event loop stays responsive. Needs the ``local`` extra.
    """

    DIMENSIONS_BY_MODEL = {
        "all-MiniLM-L6-v2": 384,
        "all-mpnet-base-v2": 768,
        "multi-qa-MiniLM-L6-cos-v1": 384,
    }
    DEFAULT_DIMENSION = 384

    def __init__(
        self,
        model_name: str = "all-MiniLM-L6-v2",
        device: Optional[str] = None,
        normalize: bool = True,
    ):
        self.model_name = model_name
        self.device = device
        self.normalize = normalize
        self._model = None

    @property
    def dimension(self) -> int:
        if self._model is not None:
            return self._model.get_sentence_embedding_dimension()
        return self.DIMENSIONS_BY_MODEL.get(self.model_name, self.DEFAULT_DIMENSION)

    def _load(self):
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError:
                raise ImportError(
                    "LocalEmbedding needs the 'sentence-transformers' package. "
                    "Install it with: pip install ragpipe[local]"
                )

            self._model = SentenceTransformer(self.model_name, device=self.device)
            logger.info(f"Loaded sentence-transformers model {self.model_name}")
        return self._model

    def _encode(self, texts: list[str]) -> list[list[float]]:
        matrix = self._load().encode(
            texts,
            normalize_embeddings=self.normalize,
            convert_to_numpy=True,
        )
        return matrix.tolist()

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._encode, texts)

    async def embed_query(self, text: str) -> list[float]:
        [vector] = await self.embed_documents([text])
        return vector
