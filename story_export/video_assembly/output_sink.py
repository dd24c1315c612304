"""
Output Sinks

Deliver the finished video the way the runtime platform allows: a write to
the user's documents folder, or a download object handed to the client.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from ..utils.config import OutputConfig, Platform
from ..utils.logger import LoggerMixin
from .errors import DeliveryError
from .export_models import ArtifactRef, FinalArtifact

MIME_TYPE = "video/mp4"


def timestamped_filename(prefix: str = "story", now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"{prefix}_{now.strftime('%Y%m%d_%H%M%S')}.mp4"


class OutputSink(ABC):
    """Terminal step of an export"""

    @abstractmethod
    async def deliver(self, artifact: FinalArtifact) -> ArtifactRef:
        ...


class NativeFilesystemSink(OutputSink, LoggerMixin):
    """Writes the video under the user's documents directory"""

    def __init__(self, documents_dir: Path, subdirectory: str = "stories"):
        self.directory = Path(documents_dir).expanduser() / subdirectory

    def _write_new(self, filename: str, data: bytes) -> Path:
        """Write into a file that did not exist before, suffixing _1, _2, ... on collisions"""
        self.directory.mkdir(parents=True, exist_ok=True)
        stem, suffix = Path(filename).stem, Path(filename).suffix
        path = self.directory / filename
        counter = 0
        while True:
            try:
                with open(path, 'xb') as f:
                    f.write(data)
                return path
            except FileExistsError:
                counter += 1
                path = self.directory / f"{stem}_{counter}{suffix}"

    async def deliver(self, artifact: FinalArtifact) -> ArtifactRef:
        filename = timestamped_filename()
        try:
            path = await asyncio.to_thread(self._write_new, filename, artifact.data)
        except OSError as e:
            raise DeliveryError(f"Could not save video to {self.directory / filename}: {e}") from e

        self.logger.info(f"Video saved: {path} ({artifact.size_bytes} bytes)")
        return ArtifactRef(filename=path.name, mime_type=MIME_TYPE,
                           size_bytes=artifact.size_bytes, location=path)


@dataclass
class DownloadObject:
    """Bytes wrapped for a client-initiated save"""
    filename: str
    mime_type: str
    data: bytes

    @property
    def released(self) -> bool:
        return not self.data

    def release(self) -> None:
        self.data = b""


class BrowserDownloadSink(OutputSink, LoggerMixin):
    """
    Hands the video to a download handler, e.g. a web response writer.

    The handler may be a plain function or a coroutine function. Whether the
    user accepts the save dialog is not observable, so delivery succeeds once
    the handler returns.
    """

    def __init__(self, handler: Callable[[DownloadObject], Any],
                 filename: str = "story_export.mp4", timestamped: bool = False):
        self.handler = handler
        self.filename = filename
        self.timestamped = timestamped

    async def deliver(self, artifact: FinalArtifact) -> ArtifactRef:
        filename = timestamped_filename(Path(self.filename).stem) if self.timestamped else self.filename
        download = DownloadObject(filename=filename, mime_type=MIME_TYPE, data=artifact.data)
        try:
            result = self.handler(download)
            if inspect.isawaitable(result):
                await result
        except OSError as e:
            raise DeliveryError(f"Download of {filename} failed: {e}") from e
        finally:
            download.release()

        self.logger.info(f"Download offered: {filename} ({artifact.size_bytes} bytes)")
        return ArtifactRef(filename=filename, mime_type=MIME_TYPE, size_bytes=artifact.size_bytes)


def create_output_sink(config: OutputConfig,
                       download_handler: Optional[Callable[[DownloadObject], Any]] = None) -> OutputSink:
    """Pick the sink matching the platform capability flag"""
    if config.platform == Platform.NATIVE_FILESYSTEM:
        return NativeFilesystemSink(Path(config.documents_dir), config.subdirectory)
    if config.platform == Platform.BROWSER_DOWNLOAD:
        if download_handler is None:
            raise ValueError("Browser downloads need a download handler")
        return BrowserDownloadSink(download_handler, config.download_filename,
                                   config.timestamped_downloads)
    raise ValueError(f"Unsupported platform: {config.platform}")
