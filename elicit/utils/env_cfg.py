import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dotenv import load_dotenv

if TYPE_CHECKING:
    from elicit.agents.policies import ClarificationConfig
    from elicit.agents.similarity import MatchingConfig

load_dotenv()


def _as_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class HostConfig:
    """
    Dataclass for host configuration.
    """

    cors_allowed_origins: str


@dataclass(frozen=True)
class OpenAIConfig:
    """
    Dataclass for OpenAI-compatible API configuration.
    """

    api_key: str
    api_base: str | None
    model: str
    temperature: float
    timeout: float
    max_retries: int


@dataclass(frozen=True)
class SessionConfig:
    """
    Dataclass for session store configuration.
    """

    idle_ttl: float
    sweep_interval: float
    autostart_sweeper: bool


@dataclass(frozen=True)
class LoggingConfig:
    """
    Dataclass for logging configuration.
    """

    path: Path
    level: str
    rotation: str
    retention: int


@dataclass(frozen=True)
class PathConfig:
    """
    Dataclass for path configuration.
    """

    results: Path


def load_host_env() -> HostConfig:
    """
    Loads host configuration from environment variables or defaults.

    Returns:
        HostConfig: Dataclass containing host configuration.
        - cors_allowed_origins (str): Comma-separated list of allowed CORS origins.
    """
    return HostConfig(
        cors_allowed_origins=os.getenv(
            "CORS_ALLOWED_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
        ),
    )


def load_openai_env() -> OpenAIConfig:
    """
    Loads OpenAI configuration from environment variables or defaults.

    Returns:
        OpenAIConfig: Dataclass containing OpenAI configuration.
        - api_key (str): The API key. Local servers accept any value.
        - api_base (str | None): Base URL of an OpenAI-compatible server.
        - model (str): The chat model identifier.
        - temperature (float): Sampling temperature for analysis calls.
        - timeout (float): Request timeout in seconds.
        - max_retries (int): Client-side retry count.
    """
    return OpenAIConfig(
        api_key=os.getenv("OPENAI_API_KEY", "sk-no-key-required"),
        api_base=os.getenv("OPENAI_API_BASE") or None,
        model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        temperature=float(os.getenv("OPENAI_TEMPERATURE", "0.3")),
        timeout=float(os.getenv("OPENAI_TIMEOUT", "60")),
        max_retries=int(os.getenv("OPENAI_MAX_RETRIES", "2")),
    )


def load_session_env() -> SessionConfig:
    """
    Loads session store configuration from environment variables or defaults.

    Returns:
        SessionConfig: Dataclass containing session configuration.
        - idle_ttl (float): Seconds of inactivity after which a session is evicted.
        - sweep_interval (float): Seconds between background sweeps.
        - autostart_sweeper (bool): Whether the API starts the sweeper on startup.
    """
    return SessionConfig(
        idle_ttl=float(os.getenv("SESSION_IDLE_TTL", str(24 * 60 * 60))),
        sweep_interval=float(os.getenv("SESSION_SWEEP_INTERVAL", str(60 * 60))),
        autostart_sweeper=_as_bool(os.getenv("SESSION_SWEEPER"), True),
    )


def load_logging_env() -> LoggingConfig:
    """
    Loads logging configuration from environment variables or defaults.

    Returns:
        LoggingConfig: Dataclass containing logging configuration.
        - path (Path): Path to the log file.
        - level (str): Console log level.
        - rotation (str): Loguru rotation policy for the file sink.
        - retention (int): Number of rotated files to keep.
    """
    project_root: Path = Path(__file__).parents[2].resolve()
    return LoggingConfig(
        path=Path(
            os.getenv("LOG_PATH", project_root / ".logs" / "elicit.log")
        ).expanduser(),
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        rotation=os.getenv("LOG_ROTATION", "5 MB"),
        retention=int(os.getenv("LOG_RETENTION", "3")),
    )


def load_path_env() -> PathConfig:
    """
    Loads path configuration from environment variables or defaults.

    Returns:
        PathConfig: Dataclass containing path configuration.
        - results (Path): Directory for exported conversations.
    """
    data_dir: Path = Path.home() / "elicit"
    return PathConfig(
        results=Path(os.getenv("RESULTS_PATH", data_dir / "results")).expanduser(),
    )


def _env_overrides(prefix: str, cls: type) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for f in fields(cls):
        if not f.init:
            continue
        raw = os.getenv(f"{prefix}{f.name.upper()}")
        if raw is None or raw == "":
            continue
        caster = int if isinstance(f.default, int) else float
        overrides[f.name] = caster(raw)
    return overrides


def load_clarification_env() -> "ClarificationConfig":
    """
    Loads phase and clarification thresholds from ``CLARIFY_*`` variables.

    Each field of ``ClarificationConfig`` maps to ``CLARIFY_<FIELD>``, e.g.
    ``CLARIFY_FATIGUE_ROUNDS=4``. Unset variables keep the defaults.

    Returns:
        ClarificationConfig: The thresholds.
    """
    from elicit.agents.policies import ClarificationConfig

    return ClarificationConfig(**_env_overrides("CLARIFY_", ClarificationConfig))


def load_matching_env() -> "MatchingConfig":
    """
    Loads similarity thresholds from ``MATCH_*`` variables.

    Returns:
        MatchingConfig: The thresholds, e.g. ``MATCH_BASE_THRESHOLD=0.65``.
    """
    from elicit.agents.similarity import MatchingConfig

    return MatchingConfig(**_env_overrides("MATCH_", MatchingConfig))
