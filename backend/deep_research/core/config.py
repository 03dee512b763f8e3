from pathlib import Path
from typing import Optional
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parents[3] / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    project_name: str = "Deep Research"

    openai_api_key: SecretStr = Field(description="OpenAI API key for reasoning and embedding calls")
    llm_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"

    redis_host: str = "localhost"
    redis_port: int = 6379
    run_cache_ttl_hours: int = 24

    # Sent in User-Agent / mailto params for polite API access
    api_contact_email: str = Field(
        default="researcher@example.com",
        description="Email for API contact/User-Agent (update with your real email)"
    )

    google_search_key: Optional[SecretStr] = Field(default=None, description="Google Custom Search API key")
    google_search_cx: Optional[str] = Field(default=None, description="Google Custom Search engine id")
    pdfvector_api_key: Optional[SecretStr] = Field(default=None, description="PDFVector academic search key")

    log_level: str = "INFO"

    @property
    def API_CONTACT_EMAIL(self) -> str:
        return self.api_contact_email

    @property
    def OPENAI_API_KEY(self) -> str:
        return self.openai_api_key.get_secret_value()

    @property
    def LLM_MODEL(self) -> str:
        return self.llm_model

    @property
    def EMBEDDING_MODEL(self) -> str:
        return self.embedding_model

    @property
    def GOOGLE_SEARCH_KEY(self) -> Optional[str]:
        if self.google_search_key:
            return self.google_search_key.get_secret_value()
        return None

    @property
    def GOOGLE_SEARCH_CX(self) -> Optional[str]:
        return self.google_search_cx

    @property
    def PDFVECTOR_API_KEY(self) -> Optional[str]:
        if self.pdfvector_api_key:
            return self.pdfvector_api_key.get_secret_value()
        return None

    @property
    def PROJECT_NAME(self) -> str:
        return self.project_name

    @property
    def REDIS_HOST(self) -> str:
        return self.redis_host

    @property
    def REDIS_PORT(self) -> int:
        return self.redis_port

    @property
    def RUN_CACHE_TTL_HOURS(self) -> int:
        return self.run_cache_ttl_hours

    @property
    def LOG_LEVEL(self) -> str:
        return self.log_level


settings = Settings()
