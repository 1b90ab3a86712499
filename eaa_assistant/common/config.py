"""
Configuration Management for the EAA Assistant

Loads configuration from ~/.eaa_assistant/config.json, a local .env file and
environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger("eaa_assistant.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".eaa_assistant"
CONFIG_PATH = CONFIG_DIR / "config.json"

ENVIRONMENTS = ("development", "test", "production")


@dataclass
class OpenAIConfig:
    """Hosted OpenAI models (embeddings, chat, speech-to-text)"""
    api_key: str = ""
    chat_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-ada-002"
    whisper_model: str = "whisper-1"


@dataclass
class LLMConfig:
    """Chat-completion provider selection"""
    provider: str = "openai"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"


@dataclass
class SupabaseConfig:
    """Managed vector/relational store"""
    url: str = ""
    service_key: str = ""
    match_function: str = "match_documents"
    dataset_param: str = ""

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.service_key)


@dataclass
class RetrievalConfig:
    """Default retrieval parameters for /ask"""
    dataset_id: str = "eaa"
    similarity_threshold: float = 0.78
    max_chunks: int = 5
    max_concurrent_questions: int = 3


@dataclass
class CacheConfig:
    """Result cache sizing"""
    ttl_ms: int = 180_000
    embedding_capacity: int = 200
    search_capacity: int = 300


@dataclass
class ServerConfig:
    """HTTP server and runtime settings"""
    host: str = "0.0.0.0"
    port: int = 3000
    environment: str = "development"
    log_level: str = ""
    request_timeout: float = 30.0
    transcription_timeout: float = 120.0
    max_audio_bytes: int = 25 * 1024 * 1024


@dataclass
class AgentConfig:
    """Auxiliary agent thresholds"""
    frustration_min_level: float = 0.75
    frustration_min_confidence: float = 0.85
    frustration_min_triggers: int = 2
    fact_min_confidence: float = 0.5


@dataclass
class AssistantConfig:
    """Main EAA Assistant configuration"""
    openai: OpenAIConfig = field(default_factory=OpenAIConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    supabase: SupabaseConfig = field(default_factory=SupabaseConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    agents: AgentConfig = field(default_factory=AgentConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)

    @property
    def is_production(self) -> bool:
        return self.server.environment == "production"

    def validate(self) -> list:
        """
        Check required settings for the current environment.

        Production raises on missing credentials; other environments log a
        warning and run with in-memory fallbacks.

        Returns:
            List of problems found (empty when fully configured)
        """
        problems = []
        if self.server.environment not in ENVIRONMENTS:
            problems.append(f"Unknown environment: {self.server.environment}")
        if not self.openai.api_key:
            problems.append("OPENAI_API_KEY is not set")
        if not self.supabase.is_configured:
            problems.append("SUPABASE_URL / SUPABASE_SERVICE_KEY are not set")
        if self.llm.provider == "anthropic" and not self.llm.anthropic_api_key:
            problems.append("ANTHROPIC_API_KEY is not set for provider 'anthropic'")

        if problems and self.is_production:
            raise ValueError("Invalid production configuration: " + "; ".join(problems))
        for problem in problems:
            logger.warning("Config: %s", problem)
        return problems


def _parse_openai_config(data: dict) -> OpenAIConfig:
    """Parse openai section from config dict"""
    openai_data = data.get("openai", {})
    return OpenAIConfig(
        api_key=openai_data.get("api_key", ""),
        chat_model=openai_data.get("chat_model", "gpt-4o-mini"),
        embedding_model=openai_data.get("embedding_model", "text-embedding-ada-002"),
        whisper_model=openai_data.get("whisper_model", "whisper-1"),
    )


def _parse_llm_config(data: dict) -> LLMConfig:
    """Parse llm section from config dict"""
    llm_data = data.get("llm", {})
    return LLMConfig(
        provider=llm_data.get("provider", "openai"),
        anthropic_api_key=llm_data.get("anthropic_api_key", ""),
        anthropic_model=llm_data.get("anthropic_model", "claude-sonnet-4-20250514"),
    )


def _parse_supabase_config(data: dict) -> SupabaseConfig:
    """Parse supabase section from config dict"""
    supabase_data = data.get("supabase", {})
    return SupabaseConfig(
        url=supabase_data.get("url", ""),
        service_key=supabase_data.get("service_key") or supabase_data.get("key", ""),
        match_function=supabase_data.get("match_function", "match_documents"),
        dataset_param=supabase_data.get("dataset_param", ""),
    )


def _parse_retrieval_config(data: dict) -> RetrievalConfig:
    """Parse retrieval section from config dict"""
    retrieval_data = data.get("retrieval", {})
    return RetrievalConfig(
        dataset_id=retrieval_data.get("dataset_id", "eaa"),
        similarity_threshold=retrieval_data.get("similarity_threshold", 0.78),
        max_chunks=retrieval_data.get("max_chunks", 5),
        max_concurrent_questions=retrieval_data.get("max_concurrent_questions", 3),
    )


def _parse_cache_config(data: dict) -> CacheConfig:
    """Parse cache section from config dict"""
    cache_data = data.get("cache", {})
    return CacheConfig(
        ttl_ms=cache_data.get("ttl_ms", 180_000),
        embedding_capacity=cache_data.get("embedding_capacity", 200),
        search_capacity=cache_data.get("search_capacity", 300),
    )


def _parse_server_config(data: dict) -> ServerConfig:
    """Parse server section from config dict"""
    server_data = data.get("server", {})
    return ServerConfig(
        host=server_data.get("host", "0.0.0.0"),
        port=server_data.get("port", 3000),
        environment=server_data.get("environment", "development"),
        log_level=server_data.get("log_level", ""),
        request_timeout=server_data.get("request_timeout", 30.0),
        transcription_timeout=server_data.get("transcription_timeout", 120.0),
        max_audio_bytes=server_data.get("max_audio_bytes", 25 * 1024 * 1024),
    )


def _parse_agent_config(data: dict) -> AgentConfig:
    """Parse agents section from config dict"""
    agent_data = data.get("agents", {})
    return AgentConfig(
        frustration_min_level=agent_data.get("frustration_min_level", 0.75),
        frustration_min_confidence=agent_data.get("frustration_min_confidence", 0.85),
        frustration_min_triggers=agent_data.get("frustration_min_triggers", 2),
        fact_min_confidence=agent_data.get("fact_min_confidence", 0.5),
    )


def _config_path() -> Path:
    override = os.getenv("EAA_CONFIG_PATH")
    return Path(override) if override else CONFIG_PATH


def load_config(env_file: Optional[str] = ".env") -> AssistantConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (a .env file is loaded first, without
       overriding variables that are already set)
    2. Config file (~/.eaa_assistant/config.json or $EAA_CONFIG_PATH)
    3. Default values
    """
    if env_file:
        load_dotenv(env_file, override=False)

    config = AssistantConfig()

    config_path = _config_path()
    if config_path.exists():
        try:
            with open(config_path) as f:
                data = json.load(f)

            config.openai = _parse_openai_config(data)
            config.llm = _parse_llm_config(data)
            config.supabase = _parse_supabase_config(data)
            config.retrieval = _parse_retrieval_config(data)
            config.cache = _parse_cache_config(data)
            config.server = _parse_server_config(data)
            config.agents = _parse_agent_config(data)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Failed to load config file %s: %s", config_path, e)

    _env_str_map = {
        "OPENAI_API_KEY": (config.openai, "api_key"),
        "CHAT_MODEL": (config.openai, "chat_model"),
        "EMBEDDING_MODEL": (config.openai, "embedding_model"),
        "WHISPER_MODEL": (config.openai, "whisper_model"),
        "LLM_PROVIDER": (config.llm, "provider"),
        "ANTHROPIC_API_KEY": (config.llm, "anthropic_api_key"),
        "ANTHROPIC_MODEL": (config.llm, "anthropic_model"),
        "SUPABASE_URL": (config.supabase, "url"),
        "SUPABASE_KEY": (config.supabase, "service_key"),
        "SUPABASE_SERVICE_KEY": (config.supabase, "service_key"),
        "HOST": (config.server, "host"),
        "NODE_ENV": (config.server, "environment"),
        "APP_ENV": (config.server, "environment"),
        "LOG_LEVEL": (config.server, "log_level"),
    }
    for env_var, (section, attr) in _env_str_map.items():
        val = os.getenv(env_var)
        if val:
            setattr(section, attr, val)
            config._env_sourced_keys.add(attr)

    if os.getenv("PORT"):
        config.server.port = int(os.getenv("PORT"))
    if os.getenv("REQUEST_TIMEOUT"):
        config.server.request_timeout = float(os.getenv("REQUEST_TIMEOUT"))
    if os.getenv("CACHE_TTL_MS"):
        config.cache.ttl_ms = int(os.getenv("CACHE_TTL_MS"))

    config.server.environment = config.server.environment.lower()
    return config


def save_config(config: AssistantConfig) -> None:
    """Save configuration to file.

    Secret fields that were sourced from environment variables are written
    as empty strings so that secrets are not persisted to disk.
    """
    config_path = _config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())

    def _secret(attr: str, value: str) -> str:
        return "" if attr in env_sourced else value

    data = {
        "openai": {
            "api_key": _secret("api_key", config.openai.api_key),
            "chat_model": config.openai.chat_model,
            "embedding_model": config.openai.embedding_model,
            "whisper_model": config.openai.whisper_model,
        },
        "llm": {
            "provider": config.llm.provider,
            "anthropic_api_key": _secret("anthropic_api_key", config.llm.anthropic_api_key),
            "anthropic_model": config.llm.anthropic_model,
        },
        "supabase": {
            "url": config.supabase.url,
            "service_key": _secret("service_key", config.supabase.service_key),
            "match_function": config.supabase.match_function,
            "dataset_param": config.supabase.dataset_param,
        },
        "retrieval": {
            "dataset_id": config.retrieval.dataset_id,
            "similarity_threshold": config.retrieval.similarity_threshold,
            "max_chunks": config.retrieval.max_chunks,
            "max_concurrent_questions": config.retrieval.max_concurrent_questions,
        },
        "cache": {
            "ttl_ms": config.cache.ttl_ms,
            "embedding_capacity": config.cache.embedding_capacity,
            "search_capacity": config.cache.search_capacity,
        },
        "server": {
            "host": config.server.host,
            "port": config.server.port,
            "environment": config.server.environment,
            "log_level": config.server.log_level,
            "request_timeout": config.server.request_timeout,
            "transcription_timeout": config.server.transcription_timeout,
            "max_audio_bytes": config.server.max_audio_bytes,
        },
        "agents": {
            "frustration_min_level": config.agents.frustration_min_level,
            "frustration_min_confidence": config.agents.frustration_min_confidence,
            "frustration_min_triggers": config.agents.frustration_min_triggers,
            "fact_min_confidence": config.agents.fact_min_confidence,
        },
    }

    with open(config_path, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    config_path.chmod(0o600)
