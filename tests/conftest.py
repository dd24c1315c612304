"""Shared fixtures: an in-memory transcoding engine and ready-made assets."""

import re
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest

from story_export.video_assembly.engine import EngineManager, TranscodeEngine
from story_export.video_assembly.errors import DecodeError, EncodeError, StorageError
from story_export.video_assembly.export_models import ArtifactRef, Asset, AssetKind, FinalArtifact
from story_export.video_assembly.output_sink import OutputSink

PNG_MAGIC = b"\x89PNG"
GIF_MAGIC = b"GIF89a"


def png_bytes(tag: str) -> bytes:
    """Bytes the fake engine probes as an image."""
    return PNG_MAGIC + tag.encode()


class FakeEngine(TranscodeEngine):
    """
    Working storage is a dict. Each encode writes ``[<source bytes>]`` to its
    output so tests can read slide order straight out of the final video;
    a concat joins the listed segments byte for byte.
    """

    def __init__(self, fail_load: bool = False):
        self.files: Dict[str, bytes] = {}
        self.media: Dict[bytes, Dict[str, Any]] = {}
        self.calls: List[List[str]] = []
        self.load_count = 0
        self.fail_load = fail_load
        self.fail_exec: Optional[Callable[[List[str]], bool]] = None
        self._loaded = False

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    async def load(self) -> None:
        self.load_count += 1
        if self.fail_load:
            raise RuntimeError("core download failed")
        self._loaded = True

    def unload(self) -> None:
        self._loaded = False
        self.files.clear()

    def register(self, data: bytes, duration: Optional[float] = None,
                 video: bool = True, audio: bool = True) -> bytes:
        streams = []
        if video:
            streams.append({"codec_type": "video", "width": 1920, "height": 1080})
        if audio:
            streams.append({"codec_type": "audio"})
        fmt = {"duration": str(duration)} if duration is not None else {}
        self.media[data] = {"streams": streams, "format": fmt}
        return data

    async def write_file(self, name: str, data: bytes) -> None:
        self.files[name] = bytes(data)

    async def read_file(self, name: str) -> bytes:
        if name not in self.files:
            raise StorageError(f"{name} does not exist")
        return self.files[name]

    async def delete_file(self, name: str) -> None:
        self.files.pop(name, None)

    async def probe(self, name: str) -> Dict[str, Any]:
        data = self.files[name]
        if data.startswith(PNG_MAGIC):
            return {"streams": [{"codec_type": "video", "width": 640, "height": 480}],
                    "format": {"format_name": "png_pipe"}}
        if data.startswith(GIF_MAGIC):
            return {"streams": [{"codec_type": "video", "width": 320, "height": 240}],
                    "format": {"format_name": "gif", "duration": "1.0"}}
        if data in self.media:
            return self.media[data]
        raise DecodeError(f"Invalid data found when processing input {name}")

    async def exec(self, args: Sequence[str]) -> None:
        args = list(args)
        self.calls.append(args)
        if self.fail_exec and self.fail_exec(args):
            raise EncodeError("Conversion failed!", stderr="Conversion failed!")

        inputs = [args[i + 1] for i, arg in enumerate(args) if arg == "-i"]
        files = [name for name in inputs if not name.startswith("anullsrc")]
        for name in files:
            if name not in self.files:
                raise EncodeError(f"{name}: No such file or directory")

        output = [arg for arg in args if arg != "-y"][-1]
        if "concat" in args:
            manifest_name = next(n for n in files if n.endswith("concat_list.txt"))
            manifest = self.files[manifest_name].decode()
            data = b""
            for segment in re.findall(r"file '(.+)'", manifest):
                if segment not in self.files:
                    raise EncodeError(f"{segment}: No such file or directory")
                data += self.files[segment]
            self.files[output] = data
        else:
            # Audio slides also read the cover PNG; the audio is the source
            sources = [n for n in files if not self.files[n].startswith(PNG_MAGIC)] or files
            self.files[output] = b"[" + self.files[sources[0]] + b"]"


class RecordingSink(OutputSink):
    def __init__(self):
        self.delivered: List[FinalArtifact] = []

    async def deliver(self, artifact: FinalArtifact) -> ArtifactRef:
        self.delivered.append(artifact)
        return ArtifactRef(filename="story_export.mp4", size_bytes=artifact.size_bytes)


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def manager(engine: FakeEngine) -> EngineManager:
    return EngineManager(engine)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def image_asset() -> Asset:
    return Asset(kind=AssetKind.IMAGE, source=png_bytes("A"), caption="A")


@pytest.fixture
def video_asset(engine: FakeEngine) -> Asset:
    data = engine.register(b"video-clip", duration=20.0)
    return Asset(kind=AssetKind.VIDEO, source=data, caption="Clip", start_time=2.0)


@pytest.fixture
def audio_asset(engine: FakeEngine) -> Asset:
    data = engine.register(b"song-audio", duration=20.0, video=False)
    return Asset(kind=AssetKind.AUDIO, source=data, caption="Song", start_time=5.0)
