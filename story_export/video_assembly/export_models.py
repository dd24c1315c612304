"""
Export Data Models

Pydantic models for the story export pipeline.
"""

import mimetypes
import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Dict, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import DecodeError, ErrorKind


class AssetKind(str, Enum):
    """Types of media a story can hold"""
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"

    @classmethod
    def from_mime(cls, mime_type: str) -> "AssetKind":
        """Map a MIME type such as ``video/mp4`` onto its asset kind"""
        return cls(mime_type.split('/')[0].lower())


DEFAULT_SUFFIXES = {
    AssetKind.IMAGE: ".png",
    AssetKind.VIDEO: ".mp4",
    AssetKind.AUDIO: ".m4a",
}


class Resolution(str, Enum):
    """Vertical output presets"""
    HD = "720x1280"
    FULL_HD = "1080x1920"
    QHD = "1440x2560"

    @property
    def width(self) -> int:
        return int(self.value.split('x')[0])

    @property
    def height(self) -> int:
        return int(self.value.split('x')[1])

    @classmethod
    def parse(cls, value: Any) -> "Resolution":
        if isinstance(value, cls):
            return value
        if isinstance(value, (tuple, list)) and len(value) == 2:
            value = f"{int(value[0])}x{int(value[1])}"
        return cls(str(value).lower().replace('×', 'x'))


class Asset(BaseModel):
    """One user-supplied media item"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    kind: AssetKind
    source: Union[Path, bytes]
    caption: str = ""
    start_time: float = 0.0  # seconds into the source, video/audio only
    suffix: Optional[str] = None

    @model_validator(mode='after')
    def _check_start_time(self) -> "Asset":
        # Images ignore start_time entirely
        if self.kind != AssetKind.IMAGE and self.start_time < 0:
            raise ValueError(f"start_time must be >= 0, got {self.start_time}")
        return self

    @classmethod
    def from_path(cls, path: Union[str, Path], caption: Optional[str] = None,
                  start_time: float = 0.0) -> "Asset":
        """Build an asset from a file, detecting its kind from the MIME type"""
        path = Path(path)
        mime_type, _ = mimetypes.guess_type(path.name)
        if not mime_type:
            raise ValueError(f"Cannot determine media type of {path.name}")
        return cls(
            kind=AssetKind.from_mime(mime_type),
            source=path,
            caption=caption or path.name,
            start_time=start_time,
            suffix=path.suffix or None,
        )

    @property
    def effective_start_time(self) -> float:
        return 0.0 if self.kind == AssetKind.IMAGE else self.start_time

    @property
    def input_suffix(self) -> str:
        if self.suffix:
            return self.suffix if self.suffix.startswith('.') else f".{self.suffix}"
        return DEFAULT_SUFFIXES[self.kind]

    def read_bytes(self) -> bytes:
        if isinstance(self.source, bytes):
            return self.source
        try:
            return self.source.read_bytes()
        except OSError as e:
            raise DecodeError(f"Cannot read asset {self.id} from {self.source}: {e}") from e


class BackgroundMusic(BaseModel):
    """Single music layer mixed under the whole story"""
    source: Union[Path, bytes]
    suffix: str = ".mp3"
    volume: float = Field(default=0.3, ge=0.0, le=1.0)
    fade_in: float = Field(default=0.5, ge=0.0, le=5.0)
    fade_out: float = Field(default=1.0, ge=0.0, le=5.0)
    start_offset: float = Field(default=0.0, ge=0.0)

    def read_bytes(self) -> bytes:
        if isinstance(self.source, bytes):
            return self.source
        try:
            return self.source.read_bytes()
        except OSError as e:
            raise DecodeError(f"Cannot read background music {self.source}: {e}") from e


class ExportConfig(BaseModel):
    """Parameters for one export run"""
    FRAME_RATE: ClassVar[int] = 30

    slide_duration: int = Field(default=3, ge=1)  # seconds per slide
    resolution: Resolution = Resolution.FULL_HD
    background_music: Optional[BackgroundMusic] = None

    @field_validator('resolution', mode='before')
    @classmethod
    def _parse_resolution(cls, value: Any) -> Resolution:
        return Resolution.parse(value)

    @property
    def frame_rate(self) -> int:
        return self.FRAME_RATE

    @property
    def width(self) -> int:
        return self.resolution.width

    @property
    def height(self) -> int:
        return self.resolution.height

    @classmethod
    def from_bpm(cls, bpm: float, **kwargs) -> "ExportConfig":
        """One slide per four beats"""
        if bpm <= 0:
            raise ValueError(f"bpm must be positive, got {bpm}")
        slide_duration = max(1, round(60.0 / bpm * 4))
        return cls(slide_duration=slide_duration, **kwargs)


class MediaInfo(BaseModel):
    """What a probe of a working-storage file revealed"""
    duration: Optional[float] = None
    has_video: bool = False
    has_audio: bool = False
    width: Optional[int] = None
    height: Optional[int] = None
    format_name: Optional[str] = None

    @classmethod
    def from_probe(cls, probe: Dict[str, Any]) -> "MediaInfo":
        streams = probe.get('streams', [])
        video = next((s for s in streams if s.get('codec_type') == 'video'), None)
        audio = next((s for s in streams if s.get('codec_type') == 'audio'), None)

        duration = None
        raw = probe.get('format', {}).get('duration')
        if raw is None and video is not None:
            raw = video.get('duration')
        if raw not in (None, 'N/A'):
            duration = float(raw)

        return cls(
            duration=duration,
            has_video=video is not None,
            has_audio=audio is not None,
            width=int(video['width']) if video and 'width' in video else None,
            height=int(video['height']) if video and 'height' in video else None,
            format_name=probe.get('format', {}).get('format_name'),
        )


class NormalizedSegment(BaseModel):
    """A fixed-format clip in working storage produced from one asset"""
    name: str
    asset_id: str
    index: int
    kind: AssetKind = AssetKind.VIDEO
    width: int
    height: int
    frame_rate: int
    duration: float


class FinalArtifact(BaseModel):
    """The concatenated video read back from working storage"""
    name: str
    data: bytes
    size_bytes: int


class ArtifactRef(BaseModel):
    """Where the delivered video ended up"""
    filename: str
    mime_type: str = "video/mp4"
    size_bytes: int
    location: Optional[Path] = None
    delivered_at: datetime = Field(default_factory=datetime.now)


class OutcomeState(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ExportOutcome(BaseModel):
    state: OutcomeState = OutcomeState.PENDING
    artifact: Optional[ArtifactRef] = None
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None

    @classmethod
    def succeeded(cls, artifact: ArtifactRef) -> "ExportOutcome":
        return cls(state=OutcomeState.SUCCEEDED, artifact=artifact)

    @classmethod
    def failed(cls, kind: ErrorKind, message: str) -> "ExportOutcome":
        return cls(state=OutcomeState.FAILED, error_kind=kind, message=message)


class ExportProgress(BaseModel):
    """Progress tracking for one export run"""
    progress: int = Field(default=0, ge=0, le=100)
    status: str = "Preparing to export video..."


class ExportUpdate(BaseModel):
    """One item of the export progress stream"""
    progress: int = Field(ge=0, le=100)
    status: str
    outcome: Optional[ExportOutcome] = None

    @property
    def is_terminal(self) -> bool:
        return self.outcome is not None


class EncodingProfile(BaseModel):
    """Fixed encoder settings shared by every segment of a run"""
    name: str
    video_codec: str = "libx264"
    preset: str = "veryfast"
    crf: int = Field(default=23, ge=0, le=51)
    pix_fmt: str = "yuv420p"
    audio_codec: str = "aac"
    audio_bitrate: str = "128k"
    sample_rate: int = 44100
    channels: int = 2


ENCODING_PROFILES = {
    "fast": EncodingProfile(name="fast", preset="ultrafast", crf=28),
    "balanced": EncodingProfile(name="balanced", preset="veryfast", crf=23),
    "quality": EncodingProfile(name="quality", preset="medium", crf=20, audio_bitrate="192k"),
}
