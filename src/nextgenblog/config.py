"""Application configuration."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_title: str = "NextGenBlog"
    debug: bool = False
    log_level: str = "INFO"

    database_url: str = "sqlite:///data/blog.db"
    post_backend: Literal["database", "github"] = "database"

    # Admin credential; the app refuses to start without a secret key
    secret_key: str = ""
    token_max_age: int = 24 * 60 * 60
    admin_username: str = ""

    # GitHub OAuth app
    github_client_id: str = ""
    github_client_secret: str = ""
    public_url: str = "http://localhost:8000"

    # GitHub contents API (github post backend)
    github_token: str = ""
    github_repo: str = ""
    github_branch: str = "main"
    posts_dir: str = "posts"
    index_path: str = "posts.json"
    github_retries: int = 3

    model_config = SettingsConfigDict(
        env_prefix="NEXTGENBLOG_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    @property
    def oauth_callback_url(self) -> str:
        """Absolute URL GitHub redirects back to after authorization."""
        return f"{self.public_url.rstrip('/')}/api/auth/github/callback"
