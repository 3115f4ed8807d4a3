"""Configuration loader for the bot with validation."""
import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def _bool_env(name: str, default: bool = False) -> bool:
    return os.getenv(name, "true" if default else "false").lower() in ("1", "true", "yes")


@dataclass
class Config:
    """
    Bot configuration from environment variables.

    All settings are validated on load to fail fast if misconfigured.
    """

    # Telegram Bot
    bot_token: str

    # Magic-link auth service (Supabase GoTrue)
    supabase_url: str
    supabase_anon_key: str
    verification_base_url: str

    # Webhook (for production)
    webhook_path: str = "/webhook"
    webhook_url: str = ""
    webhook_secret: str = ""
    admin_api_token: str = ""

    # Sessions and linking
    session_ttl_seconds: int = 24 * 3600
    magic_link_ttl_seconds: int = 24 * 3600
    identity_cache_seconds: int = 300

    # Rate limits
    message_rate_limit: int = 30
    message_rate_window: int = 60
    magic_link_rate_limit: int = 3
    magic_link_rate_window: int = 3600
    rate_limit_fail_open: bool = False

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.session_ttl_seconds < 60:
            raise ValueError("SESSION_TTL_SECONDS must be at least 60 seconds")

        if self.magic_link_ttl_seconds < 60:
            raise ValueError("MAGIC_LINK_TTL_SECONDS must be at least 60 seconds")

        for name in ("message_rate_limit", "message_rate_window", "magic_link_rate_limit", "magic_link_rate_window"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name.upper()} must be positive")

        if self.identity_cache_seconds < 0:
            raise ValueError("IDENTITY_CACHE_SECONDS cannot be negative")

        if not self.webhook_path.startswith("/"):
            raise ValueError("WEBHOOK_PATH must start with '/'")

    @classmethod
    def from_env(cls) -> "Config":
        """
        Load configuration from environment variables.

        Raises:
            RuntimeError: If required environment variables are missing
            ValueError: If configuration values are invalid
        """
        # Required fields
        bot_token = os.getenv("BOT_TOKEN")
        if not bot_token:
            raise RuntimeError("BOT_TOKEN environment variable is required")

        supabase_url = os.getenv("SUPABASE_URL")
        if not supabase_url:
            raise RuntimeError("SUPABASE_URL environment variable is required")

        supabase_anon_key = os.getenv("SUPABASE_ANON_KEY")
        if not supabase_anon_key:
            raise RuntimeError("SUPABASE_ANON_KEY environment variable is required")

        verification_base_url = os.getenv("VERIFICATION_BASE_URL")
        if not verification_base_url:
            raise RuntimeError("VERIFICATION_BASE_URL environment variable is required")

        return cls(
            bot_token=bot_token,
            supabase_url=supabase_url,
            supabase_anon_key=supabase_anon_key,
            verification_base_url=verification_base_url,
            webhook_path=os.getenv("WEBHOOK_PATH", "/webhook"),
            webhook_url=os.getenv("WEBHOOK_URL", ""),
            webhook_secret=os.getenv("WEBHOOK_SECRET", ""),
            admin_api_token=os.getenv("ADMIN_API_TOKEN", ""),
            session_ttl_seconds=_int_env("SESSION_TTL_SECONDS", 24 * 3600),
            magic_link_ttl_seconds=_int_env("MAGIC_LINK_TTL_SECONDS", 24 * 3600),
            identity_cache_seconds=_int_env("IDENTITY_CACHE_SECONDS", 300),
            message_rate_limit=_int_env("MESSAGE_RATE_LIMIT", 30),
            message_rate_window=_int_env("MESSAGE_RATE_WINDOW", 60),
            magic_link_rate_limit=_int_env("MAGIC_LINK_RATE_LIMIT", 3),
            magic_link_rate_window=_int_env("MAGIC_LINK_RATE_WINDOW", 3600),
            rate_limit_fail_open=_bool_env("RATE_LIMIT_FAIL_OPEN"),
        )

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return bool(self.webhook_url)
