from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Life Manager Assistant API"
    deepseek_api_key: str = ""
    # any OpenAI-compatible chat completions endpoint works here
    deepseek_model: str = "deepseek-chat"  # override via DEEPSEEK_MODEL in .env
    deepseek_base_url: str = "https://api.deepseek.com"
    database_url: str = ""
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10
    # Comma-separated origins for CORS.
    cors_allow_origins: str = "*"
    jwt_secret_key: str = ""
    jwt_algorithm: str = "HS256"
    log_level: str = "INFO"

    chat_temperature: float = 0.5
    chat_max_tokens: int = 1000
    query_temperature: float = 0.3
    query_max_tokens: int = 500

    # Messages of prior conversation fed into each prompt.
    prompt_window_size: int = 10
    duplicate_window_minutes: int = 5

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore")

    def is_assistant_configured(self) -> bool:
        return bool(self.deepseek_api_key.strip())


settings = Settings()
