from typing import Dict, Optional
import os

from pydantic import BaseModel, ConfigDict, Field
import structlog

from wayfinder.domain.context.context_retriever import MemoryRetriever
from wayfinder.domain.context.memory.memory_store import MemoryStore
from wayfinder.domain.context.memory.storage import InMemoryStorage, JsonFileStorage, KeyValueStorage
from wayfinder.domain.context.page_indexer import PageIndexer
from wayfinder.domain.embedding.embedding_service import EmbeddingService
from wayfinder.domain.models.memory import EmbeddingSettings
from wayfinder.domain.orchestration.core.main_agent import Agent
from wayfinder.domain.orchestration.execution_engine import ExecutionEngine
from wayfinder.domain.planning.decision_module import DecisionModule
from wayfinder.domain.tool.action_executor import BrowserActionExecutor, BrowserController

logger = structlog.get_logger(__name__)


def _env(name: str, default: str) -> str:
    return os.getenv(f"WAYFINDER_{name}", default)


def _env_optional_int(name: str) -> Optional[int]:
    value = _env(name, "")
    return int(value) if value else None


class AgentSettings(BaseModel):
    """Runtime configuration; every field has a WAYFINDER_* environment override"""

    log_level: str = "INFO"
    log_format: str = "json"
    service_name: str = "wayfinder"

    # Empty path keeps everything in process memory
    storage_path: str = ""

    embedding_provider: str = "gemini"
    embedding_model: Optional[str] = None
    embedding_dimensions: Optional[int] = None
    api_keys: Dict[str, str] = Field(default_factory=dict)
    http_timeout: float = 30.0

    max_iterations: int = 5
    step_delay: float = 0.3
    wait_delay: float = 0.5
    navigation_timeout: float = 10.0
    poll_interval: float = 0.5

    retrieval_limit: int = 10
    retrieval_min_score: float = 0.3
    search_min_score: float = 0.12
    action_search_min_score: float = 0.3
    min_page_content_length: int = 100
    history_size: int = 100

    @classmethod
    def from_env(cls) -> "AgentSettings":
        api_keys = {
            "gemini": os.getenv("GEMINI_API_KEY", ""),
            "openai": os.getenv("OPENAI_API_KEY", ""),
            "huggingface": os.getenv("HF_API_TOKEN", ""),
        }
        return cls(
            log_level=_env("LOG_LEVEL", "INFO"),
            log_format=_env("LOG_FORMAT", "json"),
            service_name=_env("SERVICE_NAME", "wayfinder"),
            storage_path=_env("STORAGE_PATH", ""),
            embedding_provider=_env("EMBEDDING_PROVIDER", "gemini"),
            embedding_model=_env("EMBEDDING_MODEL", "") or None,
            embedding_dimensions=_env_optional_int("EMBEDDING_DIMENSIONS"),
            api_keys={name: key for name, key in api_keys.items() if key},
            http_timeout=float(_env("HTTP_TIMEOUT", "30")),
            max_iterations=int(_env("MAX_ITERATIONS", "5")),
            step_delay=float(_env("STEP_DELAY", "0.3")),
            wait_delay=float(_env("WAIT_DELAY", "0.5")),
            navigation_timeout=float(_env("NAVIGATION_TIMEOUT", "10")),
            poll_interval=float(_env("POLL_INTERVAL", "0.5")),
            retrieval_limit=int(_env("RETRIEVAL_LIMIT", "10")),
            retrieval_min_score=float(_env("RETRIEVAL_MIN_SCORE", "0.3")),
            search_min_score=float(_env("SEARCH_MIN_SCORE", "0.12")),
            action_search_min_score=float(_env("ACTION_SEARCH_MIN_SCORE", "0.3")),
            min_page_content_length=int(_env("MIN_PAGE_CONTENT_LENGTH", "100")),
            history_size=int(_env("HISTORY_SIZE", "100")),
        )

    def embedding_settings(self) -> EmbeddingSettings:
        return EmbeddingSettings(
            provider=self.embedding_provider,
            api_key=self.api_keys.get(self.embedding_provider, ""),
            model=self.embedding_model,
            dimensions=self.embedding_dimensions,
        )

    def build_storage(self) -> KeyValueStorage:
        if self.storage_path:
            return JsonFileStorage(self.storage_path)
        return InMemoryStorage()


class AgentComponents(BaseModel):
    """Everything build_agent wires together"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    agent: Agent
    memory_store: MemoryStore
    page_indexer: PageIndexer
    embedding_service: EmbeddingService


def build_agent(
    settings: AgentSettings,
    browser: BrowserController,
    storage: Optional[KeyValueStorage] = None,
    embedding_service: Optional[EmbeddingService] = None
) -> AgentComponents:
    """storage -> embedding service -> memory store -> actions -> engines -> agent"""

    storage = storage or settings.build_storage()

    if embedding_service is None:
        embedding_service = EmbeddingService.create_default(
            storage=storage,
            api_keys=settings.api_keys,
            preferred=settings.embedding_provider,
            timeout=settings.http_timeout,
        )
        preferred = embedding_service.providers.get(settings.embedding_provider)
        if preferred is not None:
            preferred.configure(settings.embedding_settings())

    memory_store = MemoryStore(storage, embedding_service, default_min_score=settings.search_min_score)

    actions = BrowserActionExecutor(
        memory_store,
        browser,
        search_min_score=settings.action_search_min_score,
        navigation_timeout=settings.navigation_timeout,
        poll_interval=settings.poll_interval,
    )

    decision_module = DecisionModule()
    engine = ExecutionEngine(
        actions,
        decision_module=decision_module,
        max_iterations=settings.max_iterations,
        step_delay=settings.step_delay,
        wait_delay=settings.wait_delay,
    )

    agent = Agent(
        memory_store,
        actions,
        retriever=MemoryRetriever(
            memory_store,
            limit=settings.retrieval_limit,
            min_score=settings.retrieval_min_score,
        ),
        decision_module=decision_module,
        execution_engine=engine,
        history_size=settings.history_size,
    )

    logger.info(
        "Agent assembled",
        storage="file" if settings.storage_path else "memory",
        embedding_provider=settings.embedding_provider,
        max_iterations=settings.max_iterations
    )
    return AgentComponents(
        agent=agent,
        memory_store=memory_store,
        page_indexer=PageIndexer(memory_store, min_content_length=settings.min_page_content_length),
        embedding_service=embedding_service,
    )
