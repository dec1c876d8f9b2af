"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings from environment variables."""

    # API Keys
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"

    # Pinecone
    pinecone_api_key: str = ""
    pinecone_environment: str = "us-east-1"
    pinecone_index_name: str = "regulatory-documents"
    pinecone_namespace: str = "cfr"

    # Store
    database_url: str = ""

    # Auth (Supabase-issued JWTs)
    supabase_jwt_secret: str = ""
    jwt_audience: str = "authenticated"

    # App Settings
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # LLM Settings
    chat_model: str = "gpt-4"
    embedding_model: str = "text-embedding-ada-002"
    embedding_dimensions: int = 1536  # ada-002 output size
    response_max_tokens: int = 1500
    generation_temperature: float = 0.1

    # RAG Settings (tunable, empirically chosen)
    similarity_threshold: float = 0.7
    max_retrieved_docs: int = 5
    max_context_messages: int = 8

    # Outbound call policy
    api_timeout_seconds: float = 10.0
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0

    class Config:
        env_file = "../.env"  # Project root .env
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
