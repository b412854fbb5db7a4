from typing import Optional
from urllib.parse import quote_plus

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseSettings):
    """Database configuration"""

    host: str = "localhost"
    port: int = 5432
    username: str = "postgres"
    password: SecretStr = Field(default=SecretStr("postgres"))
    database: str = "table_visits"
    schema_name: Optional[str] = None
    serverless: bool = Field(
        default=True,
        description="If true, disable connection pooling so serverless DBs can pause.",
    )

    @property
    def url(self) -> str:
        """Get database URL"""
        username = quote_plus(self.username)
        password = quote_plus(self.password.get_secret_value())
        return (
            "postgresql+asyncpg://"
            f"{username}:{password}"
            f"@{self.host}:{self.port}/{self.database}"
        )

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        secrets_dir=".secrets",
        case_sensitive=False,
        extra="ignore",
    )


class XunfeiConfig(BaseSettings):
    """Xunfei streaming dictation (iat) configuration."""

    app_id: Optional[str] = None
    api_key: SecretStr | None = None
    api_secret: SecretStr | None = None
    host: str = "iat-api.xfyun.cn"
    path: str = "/v2/iat"
    language: str = "zh_cn"
    domain: str = "iat"
    accent: str = "mandarin"
    vad_eos: int = Field(default=3000, ge=0)
    dwa: str = "wpgs"
    frame_size: int = Field(default=1280, ge=1)
    frame_interval_ms: int = Field(default=40, ge=0)
    timeout_seconds: float = Field(default=60.0, gt=0)

    @property
    def configured(self) -> bool:
        """True when every credential needed to sign the handshake is present."""

        return bool(self.app_id and self.api_key and self.api_secret)

    model_config = SettingsConfigDict(
        env_prefix="XUNFEI_",
        env_file=".env",
        secrets_dir=".secrets",
        case_sensitive=False,
        extra="ignore",
    )


class AnnotationConfig(BaseSettings):
    """OpenAI-compatible chat completion endpoint used for transcript tagging."""

    api_url: str = "https://www.packyapi.com/v1/chat/completions"
    api_key: SecretStr | None = None
    model: str = "gemini-3-flash-preview"
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2000, ge=1, le=8192)
    timeout_seconds: float = Field(default=60.0, gt=0)
    vocabulary_limit: int = Field(default=30, ge=0)

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.api_key.get_secret_value())

    model_config = SettingsConfigDict(
        env_prefix="ANNOTATION_",
        env_file=".env",
        secrets_dir=".secrets",
        case_sensitive=False,
        extra="ignore",
    )


class PipelineConfig(BaseSettings):
    """Knobs for the recording processing pipeline."""

    fetch_timeout_seconds: float = Field(default=30.0, gt=0)
    ffmpeg_binary: str = "ffmpeg"
    mock_storage: bool = Field(
        default=False,
        description="Keep recordings and menu data in memory instead of the database.",
    )

    model_config = SettingsConfigDict(
        env_prefix="PIPELINE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class Settings(BaseSettings):
    """Application settings"""

    app_name: str = "Table Visit Audio Backend"
    app_version: str = "1.0.0"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    log_file: str = "logs/app.log"
    audio_log_file: str = "logs/audio_pipeline.log"
    transcript_log_file: str = "logs/transcripts.log"

    # Database
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    # Speech recognition
    xunfei: XunfeiConfig = Field(default_factory=XunfeiConfig)

    # Transcript annotation
    annotation: AnnotationConfig = Field(default_factory=AnnotationConfig)

    # Pipeline
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)

    # CORS
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
settings = Settings()
