"""
Configuration management for Client Pulse.

Loads configuration from:
1. .env file (secrets - never committed)
2. config.yaml (runtime settings)
"""

from dataclasses import dataclass, field, asdict
from typing import List, Optional
import logging
import os
import secrets
import yaml
from dotenv import load_dotenv


logger = logging.getLogger(__name__)


@dataclass
class GeminiConfig:
    """Google Gemini configuration (primary analyzer model)."""

    api_key: str = ""
    model: str = "gemini-2.5-flash"
    max_tokens: int = 8000

    def is_configured(self) -> bool:
        return bool(self.api_key)


@dataclass
class ClaudeConfig:
    """
    Anthropic Claude configuration.

    Claude is the FALLBACK analyzer model. Gemini is tried first when
    GOOGLE_API_KEY is set and gemini_primary is enabled in config.yaml.
    """

    api_key: str = ""
    model: str = "claude-haiku-4-5"
    max_tokens: int = 8000
    temperature: float = 0.4

    def is_configured(self) -> bool:
        return bool(self.api_key)


@dataclass
class FathomConfig:
    """Fathom meeting-recorder API and webhook configuration."""

    api_key: str = ""
    webhook_secret: str = ""
    base_url: str = "https://api.fathom.video/v1"
    timeout_seconds: int = 30

    def is_configured(self) -> bool:
        return bool(self.api_key)


@dataclass
class GraphAPIConfig:
    """Microsoft Graph API configuration (used for notification email)."""

    client_id: str = ""
    client_secret: str = ""
    tenant_id: str = ""
    authority: str = ""
    scopes: List[str] = field(
        default_factory=lambda: [
            "https://graph.microsoft.com/.default"  # Application permissions
        ]
    )

    def __post_init__(self):
        """Build authority URL from tenant ID if not provided."""
        if self.tenant_id and not self.authority:
            self.authority = f"https://login.microsoftonline.com/{self.tenant_id}"

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.tenant_id)


@dataclass
class DatabaseConfig:
    """Database configuration (PostgreSQL in production)."""

    host: str = "localhost"
    port: int = 5432
    database: str = "client_pulse"
    user: str = "postgres"
    password: str = ""
    url: str = ""  # Full URL overrides the individual fields

    @property
    def connection_string(self) -> str:
        """Generate SQLAlchemy connection string."""
        if self.url:
            return self.url
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


@dataclass
class AppConfig:
    """Runtime application configuration (from config.yaml)."""

    # Scheduled Fathom sync
    sync_interval_hours: int = 24
    sync_lookback_hours: int = 24  # Used when no previous sync run exists
    sync_timezone: str = "America/New_York"
    sync_run_hour: int = 0  # Local hour of the daily run (midnight)

    # Transcript queue
    dedupe_meeting_ids: bool = True
    manual_trigger_requires_new_transcripts: bool = True

    # Analyzer
    gemini_primary: bool = True
    analysis_temperature: float = 0.4
    chat_temperature: float = 0.5
    compression_temperature: float = 0.3

    # Dashboard
    dashboard_url: str = "http://localhost:8000"
    analysis_history_limit: int = 5

    # Notifications
    email_enabled: bool = True
    email_from: str = "noreply@example.com"
    slack_enabled: bool = True


class ConfigManager:
    """Central configuration manager.

    Loads configuration from:
    - .env file for secrets (Gemini, Claude, Fathom, Graph, DB credentials)
    - config.yaml for runtime settings
    """

    def __init__(self, env_file: Optional[str] = None, config_file: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            env_file: Path to .env file (default: .env in working directory)
            config_file: Path to config.yaml file (default: config.yaml in working directory)
        """
        if env_file is None:
            env_file = ".env"
        load_dotenv(env_file)

        if config_file is None:
            config_file = os.getenv("CLIENT_PULSE_CONFIG", "config.yaml")
        self.config_file = config_file

        self._load_env_config()
        self._load_yaml_config()

    def _load_env_config(self):
        """Load secrets from .env file."""

        self.database = DatabaseConfig(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "client_pulse"),
            user=os.getenv("DB_USER", "postgres"),
            password=os.getenv("DB_PASSWORD", ""),
            url=os.getenv("DATABASE_URL", ""),
        )

        self.gemini = GeminiConfig(
            api_key=os.getenv("GOOGLE_API_KEY", ""),
            model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
            max_tokens=int(os.getenv("GEMINI_MAX_TOKENS", "8000")),
        )

        self.claude = ClaudeConfig(
            api_key=os.getenv("CLAUDE_API_KEY", ""),
            model=os.getenv("CLAUDE_MODEL", "claude-haiku-4-5"),
            max_tokens=int(os.getenv("CLAUDE_MAX_TOKENS", "8000")),
            temperature=float(os.getenv("CLAUDE_TEMPERATURE", "0.4")),
        )

        self.fathom = FathomConfig(
            api_key=os.getenv("FATHOM_API_KEY", ""),
            webhook_secret=os.getenv("FATHOM_WEBHOOK_SECRET", ""),
            base_url=os.getenv("FATHOM_API_BASE", "https://api.fathom.video/v1"),
        )

        self.graph_api = GraphAPIConfig(
            client_id=os.getenv("GRAPH_CLIENT_ID", ""),
            client_secret=os.getenv("GRAPH_CLIENT_SECRET", ""),
            tenant_id=os.getenv("GRAPH_TENANT_ID", ""),
            authority=os.getenv("GRAPH_AUTHORITY", ""),
        )

        # JWT secret for API bearer tokens
        self.jwt_secret_key = os.getenv("JWT_SECRET_KEY", "")
        if not self.jwt_secret_key:
            env_mode = os.getenv("ENV", "development").lower()
            if env_mode == "production":
                raise ValueError(
                    "CRITICAL: JWT_SECRET_KEY must be set in production! "
                    "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
                )
            self.jwt_secret_key = secrets.token_urlsafe(32)
            logger.warning(
                "JWT_SECRET_KEY not set - using temporary key. "
                "Tokens will be invalidated on restart. Set ENV=production to enforce."
            )

    def _load_yaml_config(self):
        """Load runtime configuration from config.yaml."""
        if not os.path.exists(self.config_file):
            self.app = AppConfig()
            return

        try:
            with open(self.config_file, "r") as f:
                data = yaml.safe_load(f) or {}

            # Model overrides live in config.yaml but are not AppConfig fields
            gemini_model = data.pop("gemini_model", None)
            claude_model = data.pop("claude_model", None)

            self.app = AppConfig(**data)

            if gemini_model:
                self.gemini.model = gemini_model
            if claude_model:
                self.claude.model = claude_model
        except (OSError, yaml.YAMLError, TypeError) as e:
            logger.warning(f"Failed to load {self.config_file}: {e}. Using default configuration")
            self.app = AppConfig()

    def save_yaml_config(self):
        """Save runtime configuration to config.yaml."""
        config_dict = asdict(self.app)
        config_dict["gemini_model"] = self.gemini.model
        config_dict["claude_model"] = self.claude.model

        try:
            with open(self.config_file, "w") as f:
                yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)
            logger.info(f"Configuration saved to {self.config_file}")
        except OSError as e:
            logger.error(f"Failed to save {self.config_file}: {e}")
            raise

    def reload_yaml_config(self):
        """Reload runtime configuration from config.yaml."""
        self._load_yaml_config()

    def analyzer_configured(self) -> bool:
        """True when at least one analyzer model has credentials."""
        return self.gemini.is_configured() or self.claude.is_configured()

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []

        if not self.database.url and not self.database.password:
            errors.append("DATABASE_URL or DB_PASSWORD not set in .env")

        if not self.analyzer_configured():
            errors.append("Neither GOOGLE_API_KEY nor CLAUDE_API_KEY set in .env (analysis disabled)")

        if not self.fathom.webhook_secret:
            errors.append("FATHOM_WEBHOOK_SECRET not set in .env (webhook will reject all calls)")
        if not self.fathom.api_key:
            errors.append("FATHOM_API_KEY not set in .env (transcript fetch and daily sync disabled)")

        if self.app.email_enabled and not self.graph_api.is_configured():
            errors.append("GRAPH_CLIENT_ID/GRAPH_CLIENT_SECRET/GRAPH_TENANT_ID not set (email notifications disabled)")

        if self.app.sync_interval_hours < 1:
            errors.append("sync_interval_hours must be >= 1")
        if self.app.sync_lookback_hours < 1:
            errors.append("sync_lookback_hours must be >= 1")
        if not 0 <= self.app.sync_run_hour <= 23:
            errors.append("sync_run_hour must be between 0 and 23")
        if self.app.analysis_history_limit < 1:
            errors.append("analysis_history_limit must be >= 1")

        return errors


# Global singleton instance
_config: Optional[ConfigManager] = None


def get_config(env_file: Optional[str] = None, config_file: Optional[str] = None) -> ConfigManager:
    """
    Get global configuration manager instance (singleton).

    Args:
        env_file: Path to .env file (only used on first call)
        config_file: Path to config.yaml file (only used on first call)

    Returns:
        ConfigManager instance
    """
    global _config
    if _config is None:
        _config = ConfigManager(env_file=env_file, config_file=config_file)
    return _config


def reload_config():
    """Reload configuration from files."""
    global _config
    if _config is not None:
        _config.reload_yaml_config()
