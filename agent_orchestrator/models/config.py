"""
Configuration models for the agent orchestrator.

Defines dataclasses for the unified YAML configuration file.
"""

from dataclasses import dataclass, field

DEFAULT_SYSTEM_PROMPT = (
    "You are a strategic marketing assistant. Load canon guidance first, "
    "search the business knowledge base when brand or offer details are needed, "
    "use web search only for current data, call content_execution once with the "
    "best brief you can build, then validate_content or answer the user."
)


@dataclass
class OrchestratorConfig:
    """Main model profile and control loop policy."""
    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o"
    temperature: float = 0.7
    max_tokens: int = 4096
    timeout: int = 120
    max_iterations: int = 5
    # Tool rounds still allowed once a generation tool ran in round >= 2.
    post_generation_rounds: int = 1
    system_prompt: str = DEFAULT_SYSTEM_PROMPT


@dataclass
class GeneratorConfig:
    """Second, stateless model profile used by the generation tool."""
    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 4096
    timeout: int = 120


@dataclass
class EmbeddingConfig:
    """Text-to-vector embedding provider."""
    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "text-embedding-3-large"
    timeout: int = 30


@dataclass
class WebSearchConfig:
    """Hosted web search (Tavily) endpoint."""
    url: str = "https://api.tavily.com"
    api_key: str = ""
    timeout: int = 30


@dataclass
class RecordStoreConfig:
    """Record store and similarity search backend."""
    backend: str = "memory"  # memory | supabase
    url: str = ""
    api_key: str = ""
    timeout: int = 30
    match_function: str = "match_knowledge"
    history_limit: int = 20


@dataclass
class CacheConfig:
    """Default time-to-live per cache data class, in seconds."""
    session_ttl: int = 1800
    knowledge_ttl: int = 86400
    web_search_ttl: int = 3600
    canon_ttl: int = 604800
    embedding_ttl: int = 604800
    max_entries: int = 10000


@dataclass
class ServerConfig:
    """Configuration for the FastAPI server."""
    host: str = "0.0.0.0"
    port: int = 8000
    workers: int = 1
    reload: bool = False


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"


@dataclass
class LangfuseConfig:
    """Configuration for Langfuse observability.

    Tracing auto-enables when both public_key and secret_key are provided.
    """
    public_key: str = ""
    secret_key: str = ""
    host: str = ""
    debug: bool = False

    @property
    def is_configured(self) -> bool:
        """Check if Langfuse is configured (both keys present)."""
        return bool(self.public_key and self.secret_key)


@dataclass
class AppConfig:
    """
    Unified application configuration container.

    Holds all configuration sections loaded from config/config.yaml.
    """
    version: str = "1.0"
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    generator: GeneratorConfig = field(default_factory=GeneratorConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    web_search: WebSearchConfig = field(default_factory=WebSearchConfig)
    record_store: RecordStoreConfig = field(default_factory=RecordStoreConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    langfuse: LangfuseConfig = field(default_factory=LangfuseConfig)

    @property
    def log_level(self) -> str:
        """Shortcut for logging.level."""
        return self.logging.level
