from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Beacon API"
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    cors_origins: str = "http://localhost:3000"
    cors_allow_credentials: bool = True
    log_level: str = "INFO"
    request_id_header: str = "X-Request-ID"

    aws_region: str = "us-east-1"
    # On-demand Bedrock invocation may require an inference profile ID/ARN in some regions.
    bedrock_model_id: str = "amazon.nova-pro-v1:0"
    bedrock_embedding_model_id: str = "amazon.titan-embed-text-v2:0"
    embedding_mode: str = "hash"
    embedding_dim: int = 128
    generation_temperature: float = 0.4
    generation_max_tokens: int = 4096
    provider_timeout_seconds: float = 60.0

    database_url: str = "sqlite:///./beacon.db"

    retrieval_top_k_default: int = 8
    retrieval_context_max_chars_per_chunk: int = 1500
    claim_verification_top_k: int = 3
    claim_verification_cap: int = 20
    paragraph_attribution_top_k: int = 3
    word_limit_tolerance: float = 0.10
    compliance_poll_interval_seconds: int = 20

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


settings = Settings()
