from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # tolerate unknown vars if needed
    )

    app_title: str = Field("Caption Service")
    debug: bool = Field(False, description="Expose raw error text on 500 responses")
    cors_allow_origins: List[str] = Field(default=["*"])

    # Session file store
    uploads_dir: Path = Field(Path("./uploads"))
    results_dir: Path = Field(Path("./results"))

    # Upload limits
    max_file_size: int = Field(10 * 1024 * 1024)
    max_multiple_files: int = Field(100)
    max_folder_files: int = Field(500)

    # DynamoDB (sessions + caption jobs)
    aws_region: str = Field("us-east-1")
    aws_endpoint_url: Optional[str] = Field(None)
    aws_access_key_id: str = Field("test")
    aws_secret_access_key: str = Field("test")
    sessions_table: str = Field("CaptionSessions")
    jobs_table: str = Field("CaptionJobs")

    # Captioning model
    openai_model: str = Field("gpt-4-turbo")
    openai_temperature: float = Field(0.7)
    openai_timeout: Optional[float] = Field(None, description="Per-request timeout, client default when unset")
    openai_send_image: bool = Field(True, description="Attach the image itself to the user message")
    default_max_tokens: int = Field(300)
    generate_chunk_size: int = Field(5)
    batch_chunk_size: int = Field(3)


settings = Settings()
