"""
Embedding backends.

Every provider turns text into a flat list of floats. Network providers share
one httpx.AsyncClient owned by the EmbeddingService; response shapes differ per
vendor and are normalized here so callers only ever see ``List[float]``.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import math
import re

import httpx
import structlog

from wayfinder.domain.errors import ConfigurationError, ProviderError
from wayfinder.domain.models.memory import EmbeddingSettings

logger = structlog.get_logger(__name__)


class EmbeddingProvider(ABC):
    """Interchangeable text -> vector backend"""

    name: str = "base"
    default_model: str = ""
    # Inputs above max_input_bytes are chunked into pieces of at most chunk_bytes
    max_input_bytes: Optional[int] = None
    chunk_bytes: Optional[int] = None

    def __init__(self, api_key: str = "", model: Optional[str] = None, dimensions: Optional[int] = None):
        self.api_key = api_key
        self.model = model or self.default_model
        self.dimensions = dimensions

    def configure(self, settings: EmbeddingSettings) -> None:
        """Apply persisted provider settings"""

        self.api_key = settings.api_key
        self.model = settings.model or self.default_model
        self.dimensions = settings.dimensions

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Embed a single text that already fits the provider's input limit"""
        pass

    def _require_key(self) -> None:
        if not self.is_configured:
            raise ConfigurationError(self.name, "API key not configured")


class HttpEmbeddingProvider(EmbeddingProvider):
    """Provider reached over HTTP through the shared client"""

    def __init__(self, client: httpx.AsyncClient, **kwargs):
        super().__init__(**kwargs)
        self.client = client

    async def _post(self, url: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Any:
        try:
            response = await self.client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise ProviderError(self.name, f"request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ProviderError(self.name, f"request failed: {e}") from e
        except RuntimeError as e:
            # httpx raises RuntimeError when the client has already been closed
            raise ProviderError(self.name, f"client unavailable: {e}") from e

        if response.status_code in (401, 403):
            raise ConfigurationError(self.name, f"credential rejected (HTTP {response.status_code})")
        if response.status_code == 429:
            raise ProviderError(self.name, "rate limited (HTTP 429)", status_code=429)
        if response.status_code >= 400:
            raise ProviderError(
                self.name,
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(self.name, "response is not JSON") from e

    def _as_vector(self, values: Any) -> List[float]:
        if not isinstance(values, list) or not values:
            raise ProviderError(self.name, "unexpected response format")
        try:
            return [float(v) for v in values]
        except (TypeError, ValueError) as e:
            raise ProviderError(self.name, "embedding contains non-numeric values") from e


class GeminiProvider(HttpEmbeddingProvider):
    """Google Gemini embedContent endpoint"""

    name = "gemini"
    default_model = "gemini-embedding-001"
    max_input_bytes = 35000
    chunk_bytes = 30000
    base_url = "https://generativelanguage.googleapis.com/v1beta/models"

    async def embed(self, text: str) -> List[float]:
        self._require_key()

        payload: Dict[str, Any] = {
            "model": f"models/{self.model}",
            "content": {"parts": [{"text": text}]},
        }
        if self.dimensions:
            payload["outputDimensionality"] = self.dimensions

        result = await self._post(
            f"{self.base_url}/{self.model}:embedContent",
            payload,
            headers={"x-goog-api-key": self.api_key},
        )

        values = (result.get("embedding") or {}).get("values") if isinstance(result, dict) else None
        if values is None:
            raise ProviderError(self.name, "no embedding in response")
        return self._as_vector(values)


class OpenAIProvider(HttpEmbeddingProvider):
    """OpenAI /v1/embeddings endpoint"""

    name = "openai"
    default_model = "text-embedding-3-small"
    max_input_bytes = 30000
    chunk_bytes = 24000
    base_url = "https://api.openai.com/v1/embeddings"

    async def embed(self, text: str) -> List[float]:
        self._require_key()

        payload: Dict[str, Any] = {"input": text, "model": self.model, "encoding_format": "float"}
        if self.dimensions:
            payload["dimensions"] = self.dimensions

        result = await self._post(
            self.base_url,
            payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

        try:
            values = result["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(self.name, "no embedding in response") from e
        return self._as_vector(values)


class HuggingFaceProvider(HttpEmbeddingProvider):
    """Hugging Face inference API, feature-extraction pipeline"""

    name = "huggingface"
    default_model = "sentence-transformers/all-MiniLM-L6-v2"
    max_input_bytes = 4000
    chunk_bytes = 3000
    base_url = "https://api-inference.huggingface.co/models/"

    async def embed(self, text: str) -> List[float]:
        self._require_key()

        result = await self._post(
            self.base_url + self.model,
            {"inputs": text, "options": {"wait_for_model": True}},
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

        # [[...]] for batched pipelines, [...] for single input, or a wrapper object
        if isinstance(result, list) and result and isinstance(result[0], list):
            return self._as_vector(result[0])
        if isinstance(result, list):
            return self._as_vector(result)
        if isinstance(result, dict) and "embeddings" in result:
            return self._as_vector(result["embeddings"])
        raise ProviderError(self.name, "unexpected response format")


_STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "is", "are", "was", "were", "be", "been",
})


def _hash_code(value: str) -> int:
    """32-bit rolling string hash (h * 31 + c), signed"""
    h = 0
    for ch in value:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return h - (1 << 32) if h & 0x80000000 else h


class LocalHashProvider(EmbeddingProvider):
    """Deterministic offline embedding from hashed words, n-grams and character stats

    Needs no credential, so it closes the fallback chain. Quality is far below a
    trained model but identical text always maps to the identical vector.
    """

    name = "local"
    default_model = "hash-384"

    def __init__(self, dimension: int = 384, **kwargs):
        super().__init__(**kwargs)
        self.dimension = dimension

    @property
    def is_configured(self) -> bool:
        return True

    def configure(self, settings: EmbeddingSettings) -> None:
        # Credentials and models do not apply to the local backend
        pass

    async def embed(self, text: str) -> List[float]:
        return self.embed_sync(text)

    def embed_sync(self, text: str) -> List[float]:
        vector = [0.0] * self.dimension

        clean = re.sub(r"[^\w\s]", " ", text.lower()).strip()
        words = [w for w in clean.split() if len(w) > 2 and w not in _STOP_WORDS]

        for index, word in enumerate(words):
            word_hash = _hash_code(word)
            weight = abs(word_hash) / 2147483647
            position_weight = 1.0 - (index / len(words)) * 0.5
            for dim in range(self.dimension):
                angle = math.fmod(word_hash * dim, 2 * math.pi)
                vector[dim] += math.sin(angle) * weight * position_weight

        for n in (2, 3):
            for i in range(len(words) - n + 1):
                ngram_hash = _hash_code(" ".join(words[i:i + n]))
                weight = abs(ngram_hash) / 2147483647
                for dim in range(self.dimension):
                    vector[dim] += math.sin(math.fmod(ngram_hash * dim, 2 * math.pi)) * weight * 0.5

        features = self._char_features(text)
        for dim in range(self.dimension):
            vector[dim] += features[dim % len(features)]

        magnitude = math.sqrt(sum(v * v for v in vector))
        if magnitude == 0:
            return vector
        return [v / magnitude for v in vector]

    @staticmethod
    def _char_features(text: str) -> List[float]:
        total = len(text) or 1
        upper = sum(1 for c in text if "A" <= c <= "Z")
        lower = sum(1 for c in text if "a" <= c <= "z")
        digits = sum(1 for c in text if "0" <= c <= "9")
        special = len(text) - upper - lower - digits

        features = [
            upper / total,
            lower / total,
            digits / total,
            special / total,
            min(len(text) / 1000, 1.0),
            min(len(text.split()) / 200, 1.0),
            1.0 if re.search(r"https?://", text) else 0.0,
            1.0 if re.search(r"\d{4}-\d{2}-\d{2}", text) else 0.0,
            1.0 if re.search(r"[A-Z][a-z]+ [A-Z][a-z]+", text) else 0.0,
        ]
        features.extend([0.0] * (20 - len(features)))
        return features


def build_default_providers(client: httpx.AsyncClient, api_keys: Optional[Dict[str, str]] = None) -> List[EmbeddingProvider]:
    """Providers in fixed priority order: gemini, openai, huggingface, local"""

    api_keys = api_keys or {}
    return [
        GeminiProvider(client, api_key=api_keys.get("gemini", "")),
        OpenAIProvider(client, api_key=api_keys.get("openai", "")),
        HuggingFaceProvider(client, api_key=api_keys.get("huggingface", "")),
        LocalHashProvider(),
    ]
