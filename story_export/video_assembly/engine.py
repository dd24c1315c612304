"""
Transcoding Engine

The boundary to the external encoder plus the lifecycle manager that owns
the single engine instance:
- Lazy, idempotent loading with automatic reload when the engine drops out
- A private working directory standing in for the engine's virtual filesystem
- Run-scoped sessions that serialize exports and clean up every temp entry
"""

import asyncio
import shutil
import tempfile
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import ffmpeg

from ..utils.config import EngineConfig
from ..utils.logger import LoggerMixin
from .errors import DecodeError, EncodeError, EngineInitError, ExportBusyError, StorageError


class TranscodeEngine(ABC):
    """Operations the pipeline needs from an encoding engine"""

    @property
    @abstractmethod
    def is_loaded(self) -> bool:
        ...

    @abstractmethod
    async def load(self) -> None:
        ...

    @abstractmethod
    async def write_file(self, name: str, data: bytes) -> None:
        ...

    @abstractmethod
    async def exec(self, args: Sequence[str]) -> None:
        """Run one encode recipe; raises EncodeError on failure"""

    @abstractmethod
    async def read_file(self, name: str) -> bytes:
        ...

    @abstractmethod
    async def delete_file(self, name: str) -> None:
        ...

    @abstractmethod
    async def probe(self, name: str) -> Dict[str, Any]:
        """ffprobe-style description of a stored file; raises DecodeError"""


class FFmpegEngine(TranscodeEngine, LoggerMixin):
    """Engine backed by the ffmpeg/ffprobe command line tools"""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.ffmpeg_path: Optional[str] = None
        self.ffprobe_path: Optional[str] = None
        self.workdir: Optional[Path] = None
        self._loaded = False

    @property
    def is_loaded(self) -> bool:
        return self._loaded and self.workdir is not None and self.workdir.exists()

    def _resolve_core(self, bundled: Optional[str], name: str) -> str:
        """Prefer a bundled binary, fall back to the one on PATH"""
        if bundled:
            if Path(bundled).is_file():
                return bundled
            self.logger.warning(f"Bundled {name} not found at {bundled}, trying PATH")
        found = shutil.which(name)
        if not found:
            raise FileNotFoundError(f"{name} not found (install it or set engine.{name}_binary)")
        return found

    async def load(self) -> None:
        self.ffmpeg_path = self._resolve_core(self.config.ffmpeg_binary, 'ffmpeg')
        self.ffprobe_path = self._resolve_core(self.config.ffprobe_binary, 'ffprobe')

        process = await asyncio.create_subprocess_exec(
            self.ffmpeg_path, '-version',
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            raise RuntimeError(f"ffmpeg -version failed: {stderr.decode(errors='replace')}")

        version = stdout.decode(errors='replace').splitlines()[0] if stdout else 'unknown'
        self.workdir = Path(tempfile.mkdtemp(prefix='story_export_', dir=self.config.working_root))
        self._loaded = True
        self.logger.info(f"Engine loaded: {version} (working storage {self.workdir})")

    def _path(self, name: str) -> Path:
        if not self.is_loaded:
            raise StorageError("Engine working storage is not available")
        if not name or Path(name).name != name:
            raise StorageError(f"Invalid working storage name: {name!r}")
        return self.workdir / name

    async def write_file(self, name: str, data: bytes) -> None:
        path = self._path(name)
        try:
            await asyncio.to_thread(path.write_bytes, data)
        except OSError as e:
            raise StorageError(f"Cannot write {name}: {e}") from e

    async def read_file(self, name: str) -> bytes:
        path = self._path(name)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise StorageError(f"Cannot read {name}: {e}") from e

    async def delete_file(self, name: str) -> None:
        path = self._path(name)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot delete {name}: {e}") from e

    async def exec(self, args: Sequence[str]) -> None:
        if not self.is_loaded:
            raise EncodeError("Engine is not loaded")

        self.logger.debug(f"ffmpeg {' '.join(args)}")
        process = await asyncio.create_subprocess_exec(
            self.ffmpeg_path, '-hide_banner', '-nostdin', *args,
            cwd=str(self.workdir),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
        try:
            _, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.config.exec_timeout_seconds
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise EncodeError(f"ffmpeg timed out after {self.config.exec_timeout_seconds}s")

        if process.returncode != 0:
            message = stderr.decode(errors='replace')
            # Last lines carry the actual error, the rest is stream info
            tail = '\n'.join(message.strip().splitlines()[-5:])
            raise EncodeError(f"ffmpeg exited with code {process.returncode}: {tail}", stderr=message)

    async def probe(self, name: str) -> Dict[str, Any]:
        path = self._path(name)
        try:
            return await asyncio.to_thread(ffmpeg.probe, str(path), cmd=self.ffprobe_path)
        except ffmpeg.Error as e:
            error_msg = e.stderr.decode(errors='replace') if e.stderr else str(e)
            raise DecodeError(f"Cannot decode {name}: {error_msg.strip()}") from e


class EngineSession:
    """
    Run-scoped view of the engine.

    Every name is prefixed with the run id, every engine call re-checks that
    the engine is loaded, and every name written or produced is deleted when
    the session is released.
    """

    def __init__(self, manager: "EngineManager", run_id: str):
        self.manager = manager
        self.run_id = run_id
        self._names: List[str] = []

    @property
    def engine(self) -> TranscodeEngine:
        return self.manager.engine

    def name(self, stem: str) -> str:
        return f"{self.run_id}_{stem}"

    def claim(self, stem: str) -> str:
        """Reserve a name for a file the engine will produce"""
        name = self.name(stem)
        if name not in self._names:
            self._names.append(name)
        return name

    @property
    def names(self) -> List[str]:
        return list(self._names)

    async def write_file(self, stem: str, data: bytes) -> str:
        name = self.claim(stem)
        await self.manager._ensure_loaded()
        await self.engine.write_file(name, data)
        return name

    async def exec(self, args: Sequence[str]) -> None:
        await self.manager._ensure_loaded()
        await self.engine.exec(list(args))

    async def read_file(self, name: str) -> bytes:
        await self.manager._ensure_loaded()
        return await self.engine.read_file(name)

    async def probe(self, name: str) -> Dict[str, Any]:
        await self.manager._ensure_loaded()
        return await self.engine.probe(name)

    async def release(self) -> None:
        if not self.engine.is_loaded:
            # Storage went away with the engine instance
            self._names.clear()
            return
        for name in reversed(self._names):
            try:
                await self.engine.delete_file(name)
            except StorageError as e:
                self.manager.logger.warning(f"Could not remove {name}: {e}")
        self.manager.logger.debug(f"Released {len(self._names)} working files for run {self.run_id}")
        self._names.clear()


class EngineManager(LoggerMixin):
    """Owns the single engine instance and hands it out one export at a time"""

    def __init__(self, engine: TranscodeEngine):
        self.engine = engine
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def _ensure_loaded(self) -> None:
        if self.engine.is_loaded:
            return
        self.logger.info("Engine not loaded, loading")
        try:
            await self.engine.load()
        except Exception as e:
            raise EngineInitError(f"Failed to load transcoding engine: {e}") from e

    async def ensure_ready(self) -> None:
        """Load the engine if it reports not-loaded; safe to call repeatedly"""
        async with self._lock:
            await self._ensure_loaded()

    @asynccontextmanager
    async def checkout(self, run_id: str, wait: bool = True) -> AsyncIterator[EngineSession]:
        """Exclusive, run-scoped access to the engine"""
        if not wait and self._lock.locked():
            raise ExportBusyError("Another export is already running")

        async with self._lock:
            session = EngineSession(self, run_id)
            try:
                await self._ensure_loaded()
                yield session
            finally:
                await session.release()


_manager: Optional[EngineManager] = None


def get_engine_manager(config: Optional[EngineConfig] = None) -> EngineManager:
    """Process-wide manager, created on first use"""
    global _manager
    if _manager is None:
        _manager = EngineManager(FFmpegEngine(config))
    return _manager
