"""
Configuration Management Module

This module handles all application configuration using environment variables
with sensible defaults. It follows the 12-factor app methodology for configuration.

Usage:
    from shuttle_voice.config import settings
    print(settings.aws.model_id)

Environment variables are loaded from .env file (if present) and can be
overridden by system environment variables.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
# This should be called before accessing any environment variables
load_dotenv()


def get_env(key: str, default: str = "", required: bool = False) -> str:
    """
    Get an environment variable with optional default and validation.

    Args:
        key: The environment variable name
        default: Default value if not set
        required: If True, raises ValueError when not set

    Returns:
        The environment variable value or default

    Raises:
        ValueError: If required=True and the variable is not set
    """
    value = os.getenv(key, default)
    if required and not value:
        raise ValueError(f"Required environment variable '{key}' is not set")
    return value


def get_env_int(key: str, default: int) -> int:
    """Get an environment variable as integer."""
    return int(get_env(key, str(default)))


def get_env_float(key: str, default: float) -> float:
    """Get an environment variable as float."""
    return float(get_env(key, str(default)))


def get_env_list(key: str, default: str = "") -> List[str]:
    """Get a comma-separated environment variable as a list of stripped values."""
    raw = get_env(key, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class AgentType(str, Enum):
    """Agent variant a session runs as. Selects prompt and knowledge sources."""
    RETRIEVAL = "retrieval"
    BOOKING = "booking"

    @classmethod
    def parse(cls, value: Any, default: Optional["AgentType"] = None) -> "AgentType":
        """Coerce a string (any case) to an AgentType, falling back to default."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            if default is None:
                raise
            return default


@dataclass
class AWSConfig:
    """
    AWS service configuration.

    Credentials are resolved through the default boto3 chain
    (environment, shared credentials file, instance profile).

    Attributes:
        region: Region hosting the speech-to-speech model
        kb_region: Region hosting the knowledge bases
        model_id: Bidirectional streaming model identifier
    """
    region: str = field(default_factory=lambda: get_env("AWS_REGION_VOICE", "us-east-1"))
    kb_region: str = field(default_factory=lambda: get_env("AWS_REGION", "us-east-1"))
    model_id: str = field(default_factory=lambda: get_env("NOVA_SONIC_MODEL_ID", "amazon.nova-sonic-v1:0"))

    @property
    def endpoint_uri(self) -> str:
        """Bedrock runtime endpoint for the voice region."""
        return f"https://bedrock-runtime.{self.region}.amazonaws.com"


@dataclass
class InferenceSettings:
    """
    Model sampling configuration sent with every session start.

    Attributes:
        max_tokens: Maximum tokens generated per response
        top_p: Nucleus sampling threshold
        temperature: Sampling temperature
    """
    max_tokens: int = field(default_factory=lambda: get_env_int("INFERENCE_MAX_TOKENS", 1024))
    top_p: float = field(default_factory=lambda: get_env_float("INFERENCE_TOP_P", 0.9))
    temperature: float = field(default_factory=lambda: get_env_float("INFERENCE_TEMPERATURE", 0.7))

    def to_protocol(self) -> Dict[str, Any]:
        """Render in the wire format expected by sessionStart."""
        return {
            "maxTokens": self.max_tokens,
            "topP": self.top_p,
            "temperature": self.temperature,
        }


@dataclass
class SessionConfig:
    """
    Streaming session tuning.

    Attributes:
        audio_queue_max_size: Pending audio chunks kept before the oldest is dropped
        audio_batch_size: Chunks forwarded per drain pass
        idle_timeout_s: Inactivity after which a session is force closed
        cleanup_interval_s: Period of the idle sweep
        content_end_delay_s: Wait after sending audio content end
        prompt_end_delay_s: Wait after sending prompt end
        session_end_delay_s: Wait after sending session end, before removal
        shutdown_timeout_s: Time allowed for closing every session on shutdown
    """
    audio_queue_max_size: int = field(default_factory=lambda: get_env_int("AUDIO_QUEUE_MAX_SIZE", 200))
    audio_batch_size: int = field(default_factory=lambda: get_env_int("AUDIO_BATCH_SIZE", 5))
    idle_timeout_s: float = field(default_factory=lambda: get_env_float("SESSION_IDLE_TIMEOUT_S", 300.0))
    cleanup_interval_s: float = field(default_factory=lambda: get_env_float("SESSION_CLEANUP_INTERVAL_S", 60.0))
    content_end_delay_s: float = field(default_factory=lambda: get_env_float("CONTENT_END_DELAY_S", 0.5))
    prompt_end_delay_s: float = field(default_factory=lambda: get_env_float("PROMPT_END_DELAY_S", 0.3))
    session_end_delay_s: float = field(default_factory=lambda: get_env_float("SESSION_END_DELAY_S", 0.3))
    shutdown_timeout_s: float = field(default_factory=lambda: get_env_float("SHUTDOWN_TIMEOUT_S", 5.0))

    def validate(self) -> bool:
        """Validate session settings."""
        if self.audio_queue_max_size <= 0:
            raise ValueError("AUDIO_QUEUE_MAX_SIZE must be positive")
        if self.audio_batch_size <= 0:
            raise ValueError("AUDIO_BATCH_SIZE must be positive")
        if self.idle_timeout_s <= 0 or self.cleanup_interval_s <= 0:
            raise ValueError("Idle timeout and cleanup interval must be positive")
        delays = (
            self.content_end_delay_s,
            self.prompt_end_delay_s,
            self.session_end_delay_s,
        )
        if any(d < 0 for d in delays):
            raise ValueError("Close sequence delays cannot be negative")
        return True


@dataclass
class KnowledgeBaseConfig:
    """
    Knowledge base routing per agent variant.

    Attributes:
        retrieval_ids: Knowledge bases searched by the retrieval agent
        booking_ids: Knowledge bases searched by the booking agent
        default_max_results: Results per knowledge base when the model gives none
    """
    retrieval_ids: List[str] = field(default_factory=lambda: [
        get_env("KB_ID_RETRIEVAL_MAIN", "H8REU8WUQ9"),
        get_env("KB_ID_RETRIEVAL_SECONDARY", "WAJPJFUNTH"),
    ])
    booking_ids: List[str] = field(default_factory=lambda: [
        get_env("KB_ID_BOOKING_MAIN", "WAJPJFUNTH"),
        get_env("KB_ID_BOOKING_SECONDARY", "H8REU8WUQ9"),
    ])
    default_max_results: int = field(default_factory=lambda: get_env_int("KB_DEFAULT_MAX_RESULTS", 3))

    def ids_for(self, agent_type: AgentType) -> List[str]:
        """Return the configured (non-empty) knowledge base ids for a variant."""
        if agent_type == AgentType.BOOKING:
            ids = self.booking_ids
        else:
            ids = self.retrieval_ids
        return [kb_id for kb_id in ids if kb_id]


@dataclass
class VoiceConfig:
    """Per-connection defaults applied before the client selects its own."""
    default_voice_id: str = field(default_factory=lambda: get_env("DEFAULT_VOICE_ID", "tiffany"))
    default_user_id: str = field(default_factory=lambda: get_env("DEFAULT_USER_ID", "123"))


@dataclass
class ServerConfig:
    """
    HTTP/WebSocket server configuration.

    Attributes:
        host: Bind address
        port: Bind port
        cors_origins: Allowed browser origins
    """
    host: str = field(default_factory=lambda: get_env("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: get_env_int("PORT", 3000))
    cors_origins: List[str] = field(
        default_factory=lambda: get_env_list("CORS_ORIGINS", "http://localhost:3000")
    )


@dataclass
class LoggingConfig:
    """
    Logging configuration.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        file: Optional log file path
    """
    level: str = field(default_factory=lambda: get_env("LOG_LEVEL", "INFO"))
    file: Optional[str] = field(default_factory=lambda: get_env("LOG_FILE") or None)


@dataclass
class Settings:
    """
    Main settings container aggregating all configuration sections.

    Access via the singleton `settings` instance.

    Example:
        from shuttle_voice.config import settings

        settings.session.validate()
        kb_ids = settings.knowledge_base.ids_for(AgentType.BOOKING)
    """
    aws: AWSConfig = field(default_factory=AWSConfig)
    inference: InferenceSettings = field(default_factory=InferenceSettings)
    session: SessionConfig = field(default_factory=SessionConfig)
    knowledge_base: KnowledgeBaseConfig = field(default_factory=KnowledgeBaseConfig)
    voice: VoiceConfig = field(default_factory=VoiceConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Application-level settings
    app_env: str = field(default_factory=lambda: get_env("APP_ENV", "development"))

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    def validate_all(self) -> bool:
        """
        Validate all configuration sections.

        Returns:
            True if all validations pass

        Raises:
            ValueError: If any validation fails
        """
        self.session.validate()
        return True


# Singleton settings instance
# Import this in other modules: from shuttle_voice.config import settings
settings = Settings()
