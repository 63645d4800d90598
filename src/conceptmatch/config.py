"""Configuration helpers for the concept matching engine."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from types import MappingProxyType
from typing import TYPE_CHECKING, Final, Mapping

try:  # pragma: no cover - optional dependency loaded at runtime
    from dotenv import load_dotenv
except Exception:  # pragma: no cover
    load_dotenv = None

if load_dotenv is not None:
    load_dotenv()

if TYPE_CHECKING:
    from .llm import ChatLLMClient
    from .observability import MetricsRecorder

_DEFAULT_ONTOLOGY_PATH: Final[str] = "data/concepts.json"
_DEFAULT_CHAT_BACKEND: Final[str] = "none"
_DEFAULT_OPENAI_CHAT_MODEL: Final[str] = "gpt-4o-mini"
_DEFAULT_OLLAMA_URL: Final[str] = "http://localhost:11434"
_DEFAULT_OLLAMA_MODEL: Final[str] = "llama3.1:8b"
_DEFAULT_OLLAMA_TIMEOUT: Final[float] = 60.0
_DEFAULT_VLLM_URL: Final[str] = "http://localhost:8000"
_DEFAULT_VLLM_MODEL: Final[str] = "meta-llama/Meta-Llama-3-8B-Instruct"
_DEFAULT_VLLM_TIMEOUT: Final[float] = 60.0
_DEFAULT_MATCH_MIN_DEPTH: Final[int] = 3
_DEFAULT_MATCH_MIN_SCORE: Final[float] = 1.0
_DEFAULT_MATCH_PARENT_BOOST: Final[float] = 0.3
_DEFAULT_MATCH_PARENT_BOOST_DEPTH: Final[int] = 2
_DEFAULT_MATCH_TOP_N: Final[int] = 10
_DEFAULT_EVOLUTION_MIN_TOKEN_LENGTH: Final[int] = 3

DEFAULT_DEPTH_WEIGHTS: Final[Mapping[int, float]] = MappingProxyType({3: 1.0, 4: 1.5, 5: 2.0, 6: 2.5})

DEFAULT_COMMON_WORDS: Final[frozenset[str]] = frozenset(
    {
        "va",
        "cua",
        "cho",
        "trong",
        "voi",
        "tren",
        "duoi",
        "and",
        "or",
        "the",
        "for",
        "with",
        "from",
        "to",
        "application",
        "system",
        "development",
        "research",
        "project",
        "using",
        "based",
    }
)

# Ordered: the first domain with a keyword hit wins.
DEFAULT_DOMAIN_KEYWORDS: Final[tuple[tuple[str, tuple[str, ...]], ...]] = (
    ("it.ai", ("ai", "machine", "learning", "neural", "deep", "intelligence", "nlp", "vision", "model")),
    ("it.data", ("data", "analytics", "mining", "warehouse", "big data", "etl", "pipeline")),
    ("it.software", ("software", "web", "mobile", "app", "frontend", "backend", "fullstack", "api")),
    ("it.system", ("system", "cloud", "distributed", "infrastructure", "devops", "container", "kubernetes")),
    ("it.security", ("security", "crypto", "encryption", "authentication", "authorization", "firewall")),
    ("it.network", ("network", "protocol", "wireless", "communication", "tcp", "http", "socket")),
    ("it.database", ("database", "sql", "nosql", "mongodb", "mysql", "postgres", "query")),
    ("it.iot", ("iot", "sensor", "embedded", "arduino", "raspberry", "mqtt")),
)


def _env_optional_bool(name: str) -> bool | None:
    """Read an optional boolean environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    msg = f"Environment variable {name} must be a boolean value (true/false)."
    raise ValueError(msg)


def _env_optional_int(name: str) -> int | None:
    """Read an optional integer environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


def _env_optional_float(name: str) -> float | None:
    """Read an optional float environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a float") from exc


def _env_int(name: str, default: int) -> int:
    value = _env_optional_int(name)
    return default if value is None else value


def _env_float(name: str, default: float) -> float:
    """Read a float environment variable with a fallback (preserving zero)."""

    value = _env_optional_float(name)
    return default if value is None else value


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean environment variable with a fallback."""

    value = _env_optional_bool(name)
    if value is None:
        return default
    return value


def normalize_vllm_base_url(url: str) -> str:
    """Strip trailing slashes and a trailing ``/v1`` from a vLLM base URL."""

    value = (url or "").strip().rstrip("/")
    if value.lower().endswith("/v1"):
        value = value[: -len("/v1")]
    return value


@dataclass(frozen=True, slots=True)
class MatchingConfig:
    """Weights and thresholds used when scoring two concept sets."""

    depth_weights: Mapping[int, float] = field(default_factory=lambda: DEFAULT_DEPTH_WEIGHTS)
    min_depth: int = _DEFAULT_MATCH_MIN_DEPTH
    min_score: float = _DEFAULT_MATCH_MIN_SCORE
    parent_boost: float = _DEFAULT_MATCH_PARENT_BOOST
    parent_boost_depth: int = _DEFAULT_MATCH_PARENT_BOOST_DEPTH
    enable_parent_boost: bool = True

    def __post_init__(self) -> None:
        if not self.depth_weights:
            raise ValueError("depth_weights must contain at least one entry")
        object.__setattr__(self, "depth_weights", MappingProxyType(dict(self.depth_weights)))

    def weight_for_depth(self, depth: int) -> float:
        """Return the weight for ``depth``, saturating at the deepest table entry."""

        weight = self.depth_weights.get(depth)
        if weight is not None:
            return weight
        return self.depth_weights[max(self.depth_weights)]


@dataclass(frozen=True, slots=True)
class EvolutionConfig:
    """Filters and keyword tables used while mining new concept candidates."""

    min_token_length: int = _DEFAULT_EVOLUTION_MIN_TOKEN_LENGTH
    exclude_common_words: bool = True
    common_words: frozenset[str] = DEFAULT_COMMON_WORDS
    max_edit_distance: int = 2
    max_length_delta: int = 2
    max_examples: int = 5
    domain_keywords: tuple[tuple[str, tuple[str, ...]], ...] = DEFAULT_DOMAIN_KEYWORDS
    default_parent: str = "it"


@dataclass(slots=True)
class Settings:
    """Runtime settings loaded from environment variables."""

    ontology_path: str = _DEFAULT_ONTOLOGY_PATH
    ontology_strict: bool = True
    chat_backend: str = _DEFAULT_CHAT_BACKEND
    openai_api_key: str | None = None
    openai_chat_model: str = _DEFAULT_OPENAI_CHAT_MODEL
    ollama_base_url: str = _DEFAULT_OLLAMA_URL
    ollama_model: str = _DEFAULT_OLLAMA_MODEL
    ollama_request_timeout: float = _DEFAULT_OLLAMA_TIMEOUT
    vllm_base_url: str = _DEFAULT_VLLM_URL
    vllm_model: str = _DEFAULT_VLLM_MODEL
    vllm_api_key: str | None = None
    vllm_request_timeout: float = _DEFAULT_VLLM_TIMEOUT
    match_min_depth: int = _DEFAULT_MATCH_MIN_DEPTH
    match_min_score: float = _DEFAULT_MATCH_MIN_SCORE
    match_parent_boost: float = _DEFAULT_MATCH_PARENT_BOOST
    match_enable_parent_boost: bool = True
    match_max_workers: int | None = None
    match_top_n: int = _DEFAULT_MATCH_TOP_N
    evolution_min_token_length: int = _DEFAULT_EVOLUTION_MIN_TOKEN_LENGTH
    evolution_use_llm: bool = False
    observability_metrics_enabled: bool = True
    observability_namespace: str = "conceptmatch"
    observability_prometheus_enabled: bool = False
    depth_weights: Mapping[int, float] = field(default_factory=lambda: dict(DEFAULT_DEPTH_WEIGHTS))

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings by reading environment variables."""

        metrics_enabled = _env_optional_bool("OBSERVABILITY_METRICS_ENABLED")
        max_workers = _env_optional_int("MATCH_MAX_WORKERS")

        return cls(
            ontology_path=os.getenv("ONTOLOGY_PATH", _DEFAULT_ONTOLOGY_PATH),
            ontology_strict=_env_bool("ONTOLOGY_STRICT", True),
            chat_backend=os.getenv("CHAT_BACKEND", _DEFAULT_CHAT_BACKEND),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_chat_model=os.getenv("OPENAI_CHAT_MODEL", _DEFAULT_OPENAI_CHAT_MODEL),
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", _DEFAULT_OLLAMA_URL),
            ollama_model=os.getenv("OLLAMA_MODEL", _DEFAULT_OLLAMA_MODEL),
            ollama_request_timeout=_env_float("OLLAMA_TIMEOUT", _DEFAULT_OLLAMA_TIMEOUT),
            vllm_base_url=os.getenv("VLLM_BASE_URL", _DEFAULT_VLLM_URL),
            vllm_model=os.getenv("VLLM_MODEL", _DEFAULT_VLLM_MODEL),
            vllm_api_key=os.getenv("VLLM_API_KEY"),
            vllm_request_timeout=_env_float("VLLM_TIMEOUT", _DEFAULT_VLLM_TIMEOUT),
            match_min_depth=max(1, _env_int("MATCH_MIN_DEPTH", _DEFAULT_MATCH_MIN_DEPTH)),
            match_min_score=_env_float("MATCH_MIN_SCORE", _DEFAULT_MATCH_MIN_SCORE),
            match_parent_boost=_env_float("MATCH_PARENT_BOOST", _DEFAULT_MATCH_PARENT_BOOST),
            match_enable_parent_boost=_env_bool("MATCH_ENABLE_PARENT_BOOST", True),
            match_max_workers=max_workers if max_workers and max_workers > 0 else None,
            match_top_n=max(1, _env_int("MATCH_TOP_N", _DEFAULT_MATCH_TOP_N)),
            evolution_min_token_length=max(
                1,
                _env_int("EVOLUTION_MIN_TOKEN_LENGTH", _DEFAULT_EVOLUTION_MIN_TOKEN_LENGTH),
            ),
            evolution_use_llm=_env_bool("EVOLUTION_USE_LLM", False),
            observability_metrics_enabled=metrics_enabled if metrics_enabled is not None else True,
            observability_namespace=os.getenv("OBSERVABILITY_NAMESPACE", "conceptmatch"),
            observability_prometheus_enabled=_env_bool("OBSERVABILITY_PROMETHEUS_ENABLED", False),
        )

    @property
    def is_openai_chat_backend(self) -> bool:
        """Return True when using the OpenAI Responses API for chat."""

        return self.chat_backend.lower() == "openai"

    @property
    def is_ollama_chat_backend(self) -> bool:
        return self.chat_backend.lower() == "ollama"

    @property
    def is_vllm_chat_backend(self) -> bool:
        return self.chat_backend.lower() == "vllm"

    def matching_config(self) -> MatchingConfig:
        """Return the immutable matching configuration derived from these settings."""

        return MatchingConfig(
            depth_weights=self.depth_weights,
            min_depth=self.match_min_depth,
            min_score=self.match_min_score,
            parent_boost=self.match_parent_boost,
            enable_parent_boost=self.match_enable_parent_boost,
        )

    def evolution_config(self) -> EvolutionConfig:
        return EvolutionConfig(min_token_length=self.evolution_min_token_length)

    def build_metrics_recorder(self) -> "MetricsRecorder":
        """Instantiate the configured metrics recorder."""

        from .observability import MetricsRecorder

        return MetricsRecorder(
            enabled=self.observability_metrics_enabled,
            namespace=self.observability_namespace,
            prometheus_enabled=self.observability_prometheus_enabled,
        )

    def build_llm_client(self) -> "ChatLLMClient | None":
        """Return a chat client for the configured backend, or None when disabled."""

        from .llm import ChatLLMClient

        client = ChatLLMClient(self)
        return client if client.enabled else None


__all__ = [
    "DEFAULT_COMMON_WORDS",
    "DEFAULT_DEPTH_WEIGHTS",
    "DEFAULT_DOMAIN_KEYWORDS",
    "EvolutionConfig",
    "MatchingConfig",
    "Settings",
    "normalize_vllm_base_url",
]
