from pydantic_settings import BaseSettings
from pydantic import Field
from functools import lru_cache


class Settings(BaseSettings):
    app_env: str = Field("development", alias="APP_ENV")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    service_name: str = Field("incident-lens", alias="SERVICE_NAME")

    # ── Paths ─────────────────────────────────────────────────────────────────

    # Folder of evidence videos scanned by main.py
    evidence_input_path: str = Field("data/evidence", alias="EVIDENCE_INPUT_PATH")

    # Keyframes and audio clips are written under {output_path}/keyframes/
    output_path: str = Field("data", alias="OUTPUT_PATH")

    # ── Frame sampling ────────────────────────────────────────────────────────

    # Number of evenly spaced stills sent to the reasoning engine per source
    frame_sample_count: int = Field(5, alias="FRAME_SAMPLE_COUNT")

    # Stills are downscaled to half resolution and JPEG-encoded at ~0.7
    # to keep the payload small
    frame_jpeg_quality: int = Field(70, alias="FRAME_JPEG_QUALITY")
    frame_downscale: float = Field(0.5, alias="FRAME_DOWNSCALE")

    # Lead-in / lead-out fractions skipped (black frames, camera handling)
    frame_window_start: float = Field(0.1, alias="FRAME_WINDOW_START")
    frame_window_end: float = Field(0.9, alias="FRAME_WINDOW_END")

    # ── Audio ─────────────────────────────────────────────────────────────────

    audio_sample_rate: int = Field(16000, alias="AUDIO_SAMPLE_RATE")
    audio_max_seconds: int = Field(60, alias="AUDIO_MAX_SECONDS")

    # Optional explicit tool paths, empty means look them up on PATH
    ffmpeg_path: str = Field("", alias="FFMPEG_PATH")
    ffprobe_path: str = Field("", alias="FFPROBE_PATH")

    # Timeout for fetching remote evidence bytes and for ffmpeg decodes
    fetch_timeout_seconds: int = Field(120, alias="FETCH_TIMEOUT_SECONDS")

    # ── Measurement tools ─────────────────────────────────────────────────────

    # Region crops are sent at full resolution, so keep quality high
    roi_jpeg_quality: int = Field(92, alias="ROI_JPEG_QUALITY")

    # Lines shorter than this (native px) are treated as accidental clicks
    min_line_pixels: float = Field(5.0, alias="MIN_LINE_PIXELS")

    # Region rectangles narrower or shorter than this are ignored
    min_region_pixels: float = Field(10.0, alias="MIN_REGION_PIXELS")

    # Canvas intrinsic size used before a source reports its dimensions
    default_native_width: int = Field(1280, alias="DEFAULT_NATIVE_WIDTH")
    default_native_height: int = Field(720, alias="DEFAULT_NATIVE_HEIGHT")

    # ── Collaborators ─────────────────────────────────────────────────────────

    ollama_host: str = Field("http://localhost:11434", alias="OLLAMA_HOST")

    # Vision model answering targeted questions about region crops
    multimodal_model: str = Field("llava", alias="MULTIMODAL_MODEL")
    region_query_timeout_seconds: int = Field(300, alias="REGION_QUERY_TIMEOUT_SECONDS")

    # Reasoning engine that turns frames + audio into a forensic report.
    # Receives the ordered content-part payload as JSON.
    analysis_endpoint: str = Field("http://localhost:8080/v1/analyze", alias="ANALYSIS_ENDPOINT")
    analysis_model: str = Field("incident-analyst", alias="ANALYSIS_MODEL")
    analysis_timeout_seconds: int = Field(600, alias="ANALYSIS_TIMEOUT_SECONDS")

    class Config:
        env_file = ".env"
        case_sensitive = True
        populate_by_name = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
