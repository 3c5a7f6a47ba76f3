"""Application configuration using Pydantic settings."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite:///./wisp.db"
    environment: str = "development"
    log_level: Optional[str] = None  # Overrides the environment default (DEBUG in development, INFO otherwise)

    # CORS
    allowed_origins: str = "http://localhost:3000,http://localhost:3001"

    # Redis (for ARQ worker and project locks)
    redis_url: str = "redis://127.0.0.1:6379"

    # Supabase Storage
    supabase_url: Optional[str] = None
    supabase_secret_key: Optional[str] = None  # Secret key (sb_secret_...) for server-side operations
    screenshot_bucket: str = "project-screenshots"

    # GitHub
    github_token: Optional[str] = None
    github_owner: str = "productstudioinc"
    template_owner: str = "productstudioinc"
    template_repo: str = "vite_react_shadcn_pwa"
    default_branch: str = "main"

    # Vercel
    vercel_token: Optional[str] = None
    vercel_team_id: str = "product-studio"
    vercel_framework: str = "vite"
    domain_suffix: str = "usewisp.app"

    # Cloudflare
    cloudflare_api_token: Optional[str] = None
    cloudflare_zone_id: Optional[str] = None
    cname_target: str = "cname.vercel-dns.com."

    # Code generation (OpenAI-compatible chat completions endpoint)
    codegen_api_key: Optional[str] = None
    codegen_model: str = "anthropic/claude-3.5-sonnet"
    codegen_base_url: str = "https://openrouter.ai/api/v1"
    codegen_rate_limit_retries: int = 3

    # Pipeline tuning
    stage_max_attempts: int = 3
    stage_initial_delay: float = 2.0
    max_backoff_delay: Optional[float] = None  # None keeps pure exponential backoff
    template_settle_seconds: float = 3.0
    domain_verify_attempts: int = 10
    domain_verify_interval: float = 2.0
    deployment_poll_attempts: int = 20
    deployment_poll_interval: float = 5.0
    max_fix_attempts: int = 3
    redeploy_wait_seconds: float = 5.0
    screenshot_enabled: bool = True
    screenshot_settle_seconds: float = 25.0

    @property
    def cors_origins(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
    )


settings = Settings()
