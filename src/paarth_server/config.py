from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    gemini_api_key: SecretStr = SecretStr("")
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"

    generation_model: str = "gemini-1.5-flash"
    embedding_model: str = "embedding-001"

    knowledge_base_path: str = "data/krishna_knowledge_base.json"

    # Pause between per-verse embedding calls at startup (rate limiting)
    embedding_delay_seconds: float = 0.1

    request_timeout_seconds: float = 60.0

    session_idle_timeout_seconds: float = 20 * 60
    sweep_interval_seconds: float = 5 * 60
    heartbeat_interval_seconds: float = 30.0

    history_window: int = 2
    retrieval_k_audio: int = 3
    retrieval_k_text: int = 2

    audio_mime_type: str = "audio/webm"

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="paarth_",
        env_file=".env",
        extra="ignore",
    )


settings = Settings()


def get_settings() -> Settings:
    return settings
