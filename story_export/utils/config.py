"""Configuration management for the story export system"""

import yaml
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class Platform(str, Enum):
    """Runtime capability that decides how the finished video is delivered"""
    NATIVE_FILESYSTEM = "native_filesystem"
    BROWSER_DOWNLOAD = "browser_download"


class BusyPolicy(str, Enum):
    """What a second export does while another one holds the engine"""
    QUEUE = "queue"
    REJECT = "reject"


class EngineConfig(BaseModel):
    # Bundled binaries take precedence over whatever is on PATH
    ffmpeg_binary: Optional[str] = None
    ffprobe_binary: Optional[str] = None
    working_root: Optional[str] = None
    exec_timeout_seconds: int = Field(default=600, ge=1)
    profile: str = "fast"  # fast | balanced | quality


class ExportSettings(BaseModel):
    default_slide_duration: int = Field(default=3, ge=1)
    default_resolution: str = "1080x1920"
    busy_policy: BusyPolicy = BusyPolicy.QUEUE
    cancellation_enabled: bool = False
    max_asset_retries: int = Field(default=0, ge=0, le=5)


class CoverArtConfig(BaseModel):
    background_color: str = "#1E1B2E"
    accent_color: str = "#F472B6"
    text_color: str = "#FFFFFF"
    glyph: str = "♪"
    label: str = "NOW PLAYING"
    font_path: Optional[str] = "DejaVuSans.ttf"


class OutputConfig(BaseModel):
    platform: Platform = Platform.NATIVE_FILESYSTEM
    documents_dir: str = "~/Documents"
    subdirectory: str = "stories"
    download_filename: str = "story_export.mp4"
    timestamped_downloads: bool = False


class Config(BaseModel):
    engine: EngineConfig = EngineConfig()
    export: ExportSettings = ExportSettings()
    cover_art: CoverArtConfig = CoverArtConfig()
    output: OutputConfig = OutputConfig()
    logging: Dict[str, Any] = {}

    @classmethod
    def load(cls, config_path: str) -> "Config":
        """Load configuration from YAML file"""
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_file, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

    def save(self, config_path: str):
        """Save configuration to YAML file"""
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.safe_dump(self.model_dump(mode='json'), f, default_flow_style=False, allow_unicode=True)
