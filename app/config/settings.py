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
    database: str = "skills_lab"
    dsn: Optional[str] = Field(
        default=None,
        description="Full SQLAlchemy async URL; overrides the host/port fields when set.",
    )
    search_schema: Optional[str] = Field(
        default=None,
        description="PostgreSQL schema to create tables in and put first on search_path.",
    )
    serverless: bool = Field(
        default=True,
        description="If true, disable connection pooling so serverless DBs can pause.",
    )

    @property
    def url(self) -> str:
        """Get database URL"""
        if self.dsn:
            return self.dsn
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


class StorageConfig(BaseSettings):
    """S3-compatible object storage (DigitalOcean Spaces or AWS S3)."""

    access_key: Optional[str] = None
    secret_key: Optional[SecretStr] = None
    region: str = "sgp1"
    endpoint: Optional[str] = Field(
        default="sgp1.digitaloceanspaces.com",
        description="Host of the S3-compatible endpoint; None for plain AWS S3.",
    )
    bucket_name: str = "skills-lab-media"
    cdn_host: str = "sgp1.cdn.digitaloceanspaces.com"
    acl: str = "public-read"

    @property
    def endpoint_url(self) -> Optional[str]:
        if not self.endpoint:
            return None
        if self.endpoint.startswith(("http://", "https://")):
            return self.endpoint
        return f"https://{self.endpoint}"

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_",
        env_file=".env",
        secrets_dir=".secrets",
        case_sensitive=False,
        extra="ignore",
    )


class TranscriptionConfig(BaseSettings):
    """Speech-to-text provider reached over multipart HTTP."""

    endpoint_url: str = "https://api.iapp.co.th/asr/v3"
    api_key: SecretStr | None = None
    api_key_header: str = "apikey"
    api_key_prefix: str = ""
    file_field: str = "file"
    extra_form: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float = Field(default=300.0, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="TRANSCRIBE_",
        env_file=".env",
        secrets_dir=".secrets",
        case_sensitive=False,
        extra="ignore",
    )


class BedrockConfig(BaseSettings):
    """Amazon Bedrock configuration used by the rubric grader."""

    region: str = Field(
        default="us-east-1",
        validation_alias="BEDROCK_REGION",
    )
    model_id: str = Field(
        default="anthropic.claude-3-5-sonnet-20240620-v1:0",
        validation_alias="BEDROCK_MODEL_ID",
    )
    max_tokens: int = Field(
        default=1500,
        validation_alias="BEDROCK_MAX_TOKENS",
        ge=1,
        le=8192,
    )
    temperature: float = Field(
        default=0.0,
        validation_alias="BEDROCK_TEMPERATURE",
        ge=0.0,
        le=1.0,
    )
    top_p: float = Field(
        default=0.9,
        validation_alias="BEDROCK_TOP_P",
        ge=0.0,
        le=1.0,
    )
    api_key: SecretStr | None = Field(
        default=None,
        validation_alias="BEDROCK_API_KEY",
    )

    model_config = SettingsConfigDict(
        populate_by_name=True,
        env_file=".env",
        secrets_dir=".secrets",
        case_sensitive=False,
        extra="ignore",
    )


class MediaConfig(BaseSettings):
    """ffmpeg settings for audio extraction."""

    ffmpeg_binary: str = "ffmpeg"
    audio_codec: str = "libmp3lame"
    audio_extension: str = "mp3"

    model_config = SettingsConfigDict(
        env_prefix="MEDIA_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class PipelineConfig(BaseSettings):
    """Scratch space, timeouts and retry policy for the submission pipeline."""

    scratch_dir: str = "tmp"
    uploads_dir: str = "public/uploads"

    assemble_timeout_seconds: float = Field(default=120.0, gt=0)
    transcode_timeout_seconds: float = Field(default=600.0, gt=0)
    upload_timeout_seconds: float = Field(default=600.0, gt=0)
    transcribe_timeout_seconds: float = Field(default=600.0, gt=0)
    grading_timeout_seconds: float = Field(default=180.0, gt=0)
    record_timeout_seconds: float = Field(default=30.0, gt=0)

    external_retries: int = Field(
        default=0,
        ge=0,
        le=5,
        description="Extra attempts for uploading/transcribing/grading before failing.",
    )
    retry_backoff_seconds: float = Field(default=1.0, ge=0)
    grading_json_retries: int = Field(default=0, ge=0, le=3)
    ledger_conflict_retries: int = Field(default=3, ge=0, le=10)

    model_config = SettingsConfigDict(
        env_prefix="PIPELINE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class LabsConfig(BaseSettings):
    """Lab catalog defaults."""

    seed_file: Optional[str] = "app/data/labs.json"
    default_subject: str = "maternalandchild"
    default_lab_number: int = 1
    default_pass_threshold: float = Field(default=60.0, ge=0, le=100)

    model_config = SettingsConfigDict(
        env_prefix="LABS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class SecurityConfig(BaseSettings):
    """JWT configuration shared with the account service."""

    jwt_secret_key: SecretStr = Field(
        default=SecretStr("change-me"),
        validation_alias="JWT_SECRET",
    )
    jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
    access_token_expires_minutes: int = Field(
        default=60,
        validation_alias="JWT_EXPIRATION_MINUTES",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class Settings(BaseSettings):
    """Application settings"""

    app_name: str = "Skills Lab Assessment Backend"
    app_version: str = "1.0.0"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 3000
    log_file: str = "logs/app.log"
    pipeline_log_file: str = "logs/submission_pipeline.log"
    transcript_log_file: str = "logs/transcripts.log"

    # Database
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    # Object storage
    storage: StorageConfig = Field(default_factory=StorageConfig)

    # Speech-to-text
    transcription: TranscriptionConfig = Field(default_factory=TranscriptionConfig)

    # Bedrock
    bedrock: BedrockConfig = Field(default_factory=BedrockConfig)

    # ffmpeg
    media: MediaConfig = Field(default_factory=MediaConfig)

    # Pipeline
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)

    # Labs
    labs: LabsConfig = Field(default_factory=LabsConfig)

    # Security
    security: SecurityConfig = Field(default_factory=SecurityConfig)

    # CORS
    cors_origins: list[str] = ["http://localhost:3000"]
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
