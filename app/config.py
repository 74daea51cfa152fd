from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

FORMAT_SUFFIX = "1080x1920 vertical format, 6 seconds duration."

DEFAULT_STYLE_PROMPTS: dict[str, str] = {
    "cinematic": f"Cinematic film look, shallow depth of field, dramatic lighting, {FORMAT_SUFFIX}",
    "vibrant": f"Vibrant and colorful, saturated colors, dynamic lighting, {FORMAT_SUFFIX}",
    "slowmo": f"Slow motion effect, smooth and fluid, soft lighting, {FORMAT_SUFFIX}",
    "minimal": f"Minimal and clean, neutral tones, soft natural lighting, {FORMAT_SUFFIX}",
    "rustic": f"Rustic and warm, earthy tones, golden hour lighting, {FORMAT_SUFFIX}",
    "luxury": f"Luxury and elegant, rich colors, sophisticated lighting, {FORMAT_SUFFIX}",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="VIDEO_SERVICE_", env_file=".env", env_file_encoding="utf-8")

    app_name: str = "video-service"

    default_style: str = "vibrant"

    kafka_enabled: bool = False
    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_topic: str = "video_jobs"
    kafka_updates_topic: str = "video_updates"
    kafka_group_id: str = "video-service-consumer"

    # Object storage configuration
    s3_endpoint_url: str = ""
    s3_region: str | None = None
    s3_public_url: str = ""
    s3_bucket: str = "generated-videos"
    s3_access_key: str = ""
    s3_secret_key: str = ""
    s3_addressing_style: str | None = None
    storage_folder_prefix: str = "jobs"
    media_folder_prefix: str = "media"

    # Scene generation
    genai_api_key: str = ""
    genai_model: str = "models/veo-001-preview"
    genai_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    genai_timeout: float = 300.0
    style_prompts: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_STYLE_PROMPTS))
    default_style_prompt: str = f"Cinematic, warm lighting, reduced noise, 8k resolution, {FORMAT_SUFFIX}"

    rendered_video_timeout: float = 120.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
