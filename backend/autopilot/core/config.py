from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Pipeline preset: fast | thorough | offline | development
    intelligence_mode: str = "thorough"
    default_country: str = "BE"

    # LLM (provider: google | anthropic)
    extraction_provider: str = "google"
    fast_model: str = ""  # auto-defaults per provider if empty
    expert_model: str = ""  # auto-defaults per provider if empty
    classifier_provider: str = ""  # falls back to extraction_provider
    classifier_model: str = ""
    judgment_provider: str = ""  # falls back to extraction_provider
    judgment_model: str = ""
    llm_timeout_seconds: int = 120
    anthropic_api_key: str = ""
    google_ai_api_key: str = ""

    # Vertex AI: Anthropic Claude via Google Cloud
    vertex_project_id: str = ""
    vertex_location: str = "europe-west1"
    vertex_credentials_path: str = ""  # path to service-account JSON

    # Business registry (Belgian KBO/CBE)
    registry_api_url: str = "https://cbeapi.be/api/v1"
    registry_api_key: str = ""
    registry_timeout_seconds: float = 10.0

    @property
    def registry_enabled(self) -> bool:
        return bool(self.registry_api_url and self.registry_api_key)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
