from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    db_host: str = "host.docker.internal"
    db_port: int = 5432
    db_database: str = "smart_upload"
    db_username: str = "smart_upload"
    db_password: str = "secret"
    db_pool_max_size: int = 10

    max_job_attempts: int = 3
    job_poll_interval_seconds: int = 5
    job_backoff_base_seconds: int = 5
    max_concurrent: int = 3

    storage_driver: str = "local"
    storage_root: str = "/app/files"
    storage_namespace: str = "smart-upload"
    s3_bucket: str = ""
    s3_endpoint_url: str | None = None
    s3_region: str = "us-east-1"
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""

    pdf_engine: str = "pymupdf"
    render_dpi: int = 110
    header_crop_dpi: int = 150
    max_pages: int = 8
    max_file_size_mb: int = 50

    skip_parse_threshold: int = 60
    auto_approve_threshold: int = 90
    autonomous_approval_threshold: int = 95
    autonomous_mode_enabled: bool = False
    max_pages_per_part: int = 12
    segmentation_trust_threshold: int = 85
    header_label_pass_enabled: bool = True
    ocr_first_enabled: bool = False
    # 0 disables the limit
    max_llm_calls_per_session: int = 5

    extraction_provider: str = "openai"
    extraction_vision_model: str = "gpt-4o"
    extraction_verification_model: str = ""
    extraction_temperature: float = 0.1
    extraction_timeout_seconds: int = 120
    extraction_json_mode: bool = True
    extraction_openai_compatible_base_url: str | None = None
    extraction_openai_api_key: str = ""
    extraction_openai_compatible_api_key: str = ""
    extraction_openrouter_api_key: str = ""
    extraction_groq_api_key: str = ""
    extraction_together_api_key: str = ""
    extraction_gemini_api_key: str = ""
    extraction_anthropic_api_key: str = ""
    extraction_mistral_api_key: str = ""
    extraction_ollama_api_key: str = "ollama"

    @model_validator(mode="after")
    def _check_thresholds(self) -> "Settings":
        for name in (
            "skip_parse_threshold",
            "auto_approve_threshold",
            "autonomous_approval_threshold",
            "segmentation_trust_threshold",
        ):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ValueError(f"{name} must be between 0 and 100, got {value}")
        if self.max_llm_calls_per_session < 0:
            raise ValueError("max_llm_calls_per_session must not be negative")
        if self.skip_parse_threshold >= self.auto_approve_threshold:
            raise ValueError("skip_parse_threshold must be lower than auto_approve_threshold")
        if self.auto_approve_threshold > self.autonomous_approval_threshold:
            raise ValueError(
                "auto_approve_threshold must not exceed autonomous_approval_threshold"
            )
        return self

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024

    @property
    def verification_model(self) -> str:
        return self.extraction_verification_model or self.extraction_vision_model
