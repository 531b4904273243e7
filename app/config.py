"""Application configuration"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Database
    database_url: str = "sqlite:///./issuelinks.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Public callback URL remote trackers deliver webhooks to (POST /webhook).
    # Also used to recognize hooks we registered earlier, so it must stay stable.
    webhook_url: str = "http://localhost:8000/webhook"

    # Outbound HTTP
    http_timeout_seconds: float = 30.0

    # Import
    import_interval_minutes: int = 60
    # Upper bound of pages fetched per scheduled run; the next run resumes at the saved cursor.
    import_max_pages: int = 20

    # Backend defaults. Values saved through the admin API take precedence.
    gitlab_url: str | None = None
    gitlab_token: str | None = None
    github_url: str = "https://api.github.com"
    github_token: str | None = None
    jira_url: str | None = None
    jira_user: str | None = None
    jira_token: str | None = None
    bitbucket_url: str = "https://api.bitbucket.org/2.0"
    bitbucket_user: str | None = None
    bitbucket_token: str | None = None

    # Logging
    log_level: str = "INFO"

    # Auth (optional)
    # When enabled, all routes are protected by HTTP Basic auth, except for /health
    # and the webhook receiver (trackers authenticate with their shared secrets).
    auth_enabled: bool = False
    auth_username: str | None = None
    auth_password: str | None = None

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
