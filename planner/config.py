from pydantic_settings import BaseSettings

from planner.errors import ConfigurationError


class Settings(BaseSettings):
    # DeepSeek (required at startup)
    deepseek_api_key: str = ""
    deepseek_base_url: str = "https://api.deepseek.com"
    default_model: str = "deepseek-chat"
    completion_timeout_seconds: float = 60.0
    stream_timeout_seconds: float = 300.0
    stream_connect_timeout_seconds: float = 30.0

    # DuckDuckGo search + scrape
    search_url: str = "https://html.duckduckgo.com/html/"
    search_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
    )
    search_timeout_seconds: float = 10.0
    search_max_urls: int = 5
    scrape_max_page_chars: int = 0  # 0 keeps the whole page

    # Planning loop
    max_searches: int = 50
    research_max_turns: int = 120
    knowledge_excerpt_chars: int = 1500
    stream_synthesis: bool = True

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]

    def require_api_key(self) -> str:
        key = self.deepseek_api_key.strip()
        if not key:
            raise ConfigurationError("DEEPSEEK_API_KEY must be set in environment")
        return key


settings = Settings()
