from pydantic_settings import BaseSettings
from typing import Optional
import os
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    SECRET_KEY: str = "your-secret-key-change-in-production"
    JWT_SECRET: Optional[str] = None
    ALGORITHM: str = "HS256"
    # Portal sessions last a working shift (~8 hours) by default.
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 480
    DEBUG: bool = False
    DEV_TOOLS_DISABLED: bool = False

    # WordPress / WooCommerce backend. FLORA_API_BASE may be given with or
    # without the trailing /wp-json segment; see wp_json_base.
    FLORA_API_BASE: str = os.getenv("FLORA_API_BASE", "https://api.floradistro.com")
    WC_CONSUMER_KEY: Optional[str] = None
    WC_CONSUMER_SECRET: Optional[str] = None

    # WordPress application password for an administrator account. Needed by
    # the users matrix (wp/v2/users) which does not accept consumer keys.
    WP_ADMIN_USERNAME: Optional[str] = None
    WP_ADMIN_APP_PASSWORD: Optional[str] = None

    # Timeout (seconds) applied to every upstream HTTP call.
    UPSTREAM_TIMEOUT_SECONDS: float = 30.0

    # Blueprint field loading
    BLUEPRINT_BATCH_MAX_SIZE: int = 50
    BLUEPRINT_CACHE_TTL_SECONDS: float = 300.0
    BLUEPRINT_PRELOAD_DEBOUNCE_SECONDS: float = 0.3

    # Supabase API Configuration (COA storage)
    SUPABASE_URL: Optional[str] = None
    SUPABASE_KEY: Optional[str] = None  # Anon key
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None  # Service role key
    COA_BUCKET: str = "coas"

    # AI / media providers. Each is optional; the matching endpoint answers
    # 503 when its key is missing.
    OPENAI_API_KEY: Optional[str] = None
    ANTHROPIC_API_KEY: Optional[str] = None
    ANTHROPIC_MODEL: str = os.getenv("ANTHROPIC_MODEL", "claude-3-5-sonnet-20241022")
    CLIPDROP_API_KEY: Optional[str] = None
    REMOVE_BG_API_KEY: Optional[str] = None

    # Public URL of this portal, used to resolve relative image URLs that the
    # frontend sends to the media endpoints.
    PUBLIC_BASE_URL: str = "http://localhost:3000"

    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    class Config:
        env_file = None
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def secret_key(self) -> str:
        return self.JWT_SECRET or self.SECRET_KEY

    @property
    def wp_json_base(self) -> str:
        """Base URL ending in /wp-json, whatever form FLORA_API_BASE takes."""
        base = self.FLORA_API_BASE.rstrip("/")
        if base.endswith("/wp-json"):
            return base
        return f"{base}/wp-json"

    @property
    def wc_configured(self) -> bool:
        return bool(self.WC_CONSUMER_KEY and self.WC_CONSUMER_SECRET)


settings = Settings()
