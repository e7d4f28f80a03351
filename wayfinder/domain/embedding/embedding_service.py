from typing import Callable, Dict, List, Optional
import time

import httpx
import structlog

from wayfinder.domain.context.memory.storage import KeyValueStorage
from wayfinder.domain.embedding.chunker import TextChunker, byte_size, mean_pool
from wayfinder.domain.embedding.providers import EmbeddingProvider, HttpEmbeddingProvider, build_default_providers
from wayfinder.domain.errors import AllProvidersFailedError, EmbeddingError, ProviderError
from wayfinder.domain.models.memory import EmbeddingSettings
from wayfinder.infrastructure.observability.logging import MetricsCollector, metrics as default_metrics

logger = structlog.get_logger(__name__)

SETTINGS_KEY = "embeddingSettings"


class EmbeddingService:
    """Fallback coordinator over the embedding providers

    Providers are tried in registry order with the preferred one first. The
    first provider that succeeds becomes sticky and is called directly until it
    fails; only when every provider fails is AllProvidersFailedError raised.
    """

    def __init__(
        self,
        providers: List[EmbeddingProvider],
        storage: Optional[KeyValueStorage] = None,
        client: Optional[httpx.AsyncClient] = None,
        preferred: Optional[str] = None,
        metrics: Optional[MetricsCollector] = None,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None
    ):
        if not providers:
            raise ValueError("EmbeddingService needs at least one provider")

        self.providers: Dict[str, EmbeddingProvider] = {p.name: p for p in providers}
        self.storage = storage
        # Only a client built by client_factory is owned; an injected one is never closed here
        self.client_factory = client_factory
        if client is None and client_factory is not None:
            client = client_factory()
        self.client = client
        self.metrics = metrics or default_metrics
        self.current: Optional[EmbeddingProvider] = self.providers.get(preferred) if preferred else None

    @classmethod
    def create_default(
        cls,
        storage: Optional[KeyValueStorage] = None,
        api_keys: Optional[Dict[str, str]] = None,
        preferred: Optional[str] = None,
        timeout: float = 30.0
    ) -> "EmbeddingService":
        """Service over the built-in providers sharing one HTTP client"""

        def client_factory() -> httpx.AsyncClient:
            return httpx.AsyncClient(timeout=timeout)

        client = client_factory()
        return cls(
            build_default_providers(client, api_keys),
            storage=storage,
            client=client,
            preferred=preferred,
            client_factory=client_factory,
        )

    @property
    def owns_client(self) -> bool:
        return self.client_factory is not None

    def open(self) -> None:
        """Recreate an owned client released by close() and rebind the HTTP providers to it"""

        if not self.owns_client or (self.client is not None and not self.client.is_closed):
            return

        self.client = self.client_factory()
        for provider in self.providers.values():
            if isinstance(provider, HttpEmbeddingProvider):
                provider.client = self.client
        logger.debug("Embedding HTTP client reopened")

    @property
    def current_provider(self) -> Optional[str]:
        return self.current.name if self.current else None

    async def load_settings(self) -> EmbeddingSettings:
        """Read persisted settings and apply them to the preferred provider"""

        settings = EmbeddingSettings()
        if self.storage is not None:
            stored = await self.storage.get([SETTINGS_KEY])
            if SETTINGS_KEY in stored:
                settings = EmbeddingSettings.model_validate(stored[SETTINGS_KEY])
                self._apply(settings)
                logger.info("Embedding settings loaded", provider=settings.provider)
        return settings

    async def update_settings(self, settings: EmbeddingSettings) -> None:
        """Persist settings and reset the sticky choice to the preferred provider"""

        if self.storage is not None:
            await self.storage.set({SETTINGS_KEY: settings.model_dump()})
        self._apply(settings)
        logger.info("Embedding settings updated", provider=settings.provider)

    def _apply(self, settings: EmbeddingSettings) -> None:
        provider = self.providers.get(settings.provider)
        if provider is None:
            logger.warning("Unknown embedding provider in settings", provider=settings.provider)
            self.current = None
            return
        provider.configure(settings)
        self.current = provider

    async def embed(self, text: str) -> List[float]:
        """Embed text with the sticky provider, falling back through the rest"""

        errors: Dict[str, Exception] = {}
        for provider in self._candidates():
            start = time.perf_counter()
            try:
                vector = await self._embed_with(provider, text)
            except EmbeddingError as e:
                errors[provider.name] = e
                logger.warning("Embedding provider failed", provider=provider.name, error=str(e))
                continue

            self.metrics.record_latency("embedding", (time.perf_counter() - start) * 1000, {"provider": provider.name})
            if self.current is not provider:
                if self.current is not None:
                    self.metrics.increment_counter("embedding.provider_fallback", tags={"provider": provider.name})
                logger.info("Embedding provider selected", provider=provider.name, previous=self.current_provider)
                self.current = provider
            return vector

        raise AllProvidersFailedError(errors)

    def _candidates(self) -> List[EmbeddingProvider]:
        ordered = list(self.providers.values())
        if self.current is not None:
            ordered.remove(self.current)
            ordered.insert(0, self.current)
        return ordered

    async def _embed_with(self, provider: EmbeddingProvider, text: str) -> List[float]:
        """One provider's attempt; any failure surfaces as an EmbeddingError for the fallback chain"""

        try:
            return await self._embed_chunked(provider, text)
        except EmbeddingError:
            raise
        except Exception as e:
            raise ProviderError(provider.name, f"{type(e).__name__}: {e}") from e

    async def _embed_chunked(self, provider: EmbeddingProvider, text: str) -> List[float]:
        if provider.max_input_bytes is None or byte_size(text) <= provider.max_input_bytes:
            return await provider.embed(text)

        chunks = TextChunker(provider.chunk_bytes or provider.max_input_bytes).chunk(text)
        logger.debug("Embedding oversized text in chunks", provider=provider.name, chunks=len(chunks))

        vectors = []
        for chunk in chunks:
            vectors.append(await provider.embed(chunk.text))
        return mean_pool(vectors)

    async def close(self) -> None:
        """Release an owned client; open() brings it back"""

        if self.owns_client and self.client is not None and not self.client.is_closed:
            await self.client.aclose()
