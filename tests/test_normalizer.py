"""Tests for per-asset normalization."""

import pytest

from story_export.video_assembly.engine import EngineManager
from story_export.video_assembly.errors import DecodeError, EncodeError
from story_export.video_assembly.export_models import Asset, AssetKind, ExportConfig, MediaInfo, Resolution
from story_export.video_assembly.normalizer import SegmentNormalizer

from .conftest import GIF_MAGIC, FakeEngine, png_bytes


def _filter_graph(args):
    return args[args.index("-filter_complex") + 1]


@pytest.fixture
def normalizer() -> SegmentNormalizer:
    return SegmentNormalizer()


@pytest.fixture
def config() -> ExportConfig:
    return ExportConfig(slide_duration=3, resolution=Resolution.FULL_HD)


def test_image_args_loop_scale_and_pad(normalizer: SegmentNormalizer, config: ExportConfig) -> None:
    args = normalizer.build_image_args("run_input_0.png", "run_segment_0.mp4", config)
    graph = _filter_graph(args)

    assert args[args.index("-loop") + 1] == "1"
    assert "scale=1080:1920" in graph
    assert "force_original_aspect_ratio=decrease" in graph
    assert "pad=1080:1920:(ow-iw)/2:(oh-ih)/2" in graph
    assert "fps=fps=30" in graph
    assert args[args.index("-r") + 1] == "30"
    assert args[args.index("-t") + 1] == "3"
    assert any(arg.startswith("anullsrc") for arg in args)
    assert args[-2:] == ["run_segment_0.mp4", "-y"]


def test_video_args_seek_trim_and_reencode(normalizer: SegmentNormalizer, config: ExportConfig) -> None:
    args = normalizer.build_video_args("in.mp4", "out.mp4", config, start_time=4.5)

    seek = args.index("-ss")
    assert args[seek + 1] == "4.5"
    assert seek < args.index("-i")
    assert args[args.index("-vcodec") + 1] == "libx264"
    assert args[args.index("-acodec") + 1] == "aac"
    assert "copy" not in args
    assert "-shortest" in args
    assert not any(arg.startswith("anullsrc") for arg in args)


def test_video_audio_is_padded_to_the_video_length(normalizer: SegmentNormalizer, config: ExportConfig) -> None:
    args = normalizer.build_video_args("in.mp4", "out.mp4", config, start_time=0)
    assert "apad" in _filter_graph(args)
    assert "-shortest" in args


def test_gif_holds_first_frame_without_image2_options(normalizer: SegmentNormalizer,
                                                      config: ExportConfig) -> None:
    args = normalizer.build_image_args("in.gif", "out.mp4", config, native_loop=False)
    graph = _filter_graph(args)

    assert "-loop" not in args
    assert "-framerate" not in args
    assert "trim=end_frame=1" in graph
    assert "loop=loop=-1:size=1:start=0" in graph
    assert "setpts=N/30/TB" in graph
    assert args[args.index("-t") + 1] == "3"


def test_only_image2_demuxers_loop_natively() -> None:
    assert SegmentNormalizer.loops_natively(MediaInfo(format_name="png_pipe"))
    assert SegmentNormalizer.loops_natively(MediaInfo(format_name="image2"))
    assert SegmentNormalizer.loops_natively(MediaInfo())
    assert not SegmentNormalizer.loops_natively(MediaInfo(format_name="gif"))


def test_video_without_audio_gets_silent_track(normalizer: SegmentNormalizer, config: ExportConfig) -> None:
    args = normalizer.build_video_args("in.mp4", "out.mp4", config, start_time=0, has_audio=False)
    assert any(arg.startswith("anullsrc") for arg in args)


def test_audio_args_mux_cover_with_trimmed_audio(normalizer: SegmentNormalizer) -> None:
    config = ExportConfig(slide_duration=3, resolution=Resolution.HD)
    args = normalizer.build_audio_args("cover.png", "song.m4a", "out.mp4", config, start_time=5)

    inputs = [args[i + 1] for i, arg in enumerate(args) if arg == "-i"]
    assert set(inputs) == {"cover.png", "song.m4a"}
    assert "-shortest" in args
    assert "scale=720:1280" in _filter_graph(args)


@pytest.mark.asyncio
async def test_image_segment_lasts_full_slide(manager: EngineManager, normalizer: SegmentNormalizer,
                                              image_asset: Asset) -> None:
    config = ExportConfig(slide_duration=2, resolution=Resolution.FULL_HD)
    async with manager.checkout("run") as session:
        segment = await normalizer.normalize(session, image_asset, 0, config)

    assert segment.duration == 2
    assert segment.kind == AssetKind.VIDEO
    assert (segment.width, segment.height, segment.frame_rate) == (1080, 1920, 30)
    assert segment.name == "run_segment_0.mp4"


@pytest.mark.asyncio
async def test_audio_segment_is_capped_at_slide(engine: FakeEngine, manager: EngineManager,
                                                normalizer: SegmentNormalizer, audio_asset: Asset,
                                                config: ExportConfig) -> None:
    async with manager.checkout("run") as session:
        segment = await normalizer.normalize(session, audio_asset, 1, config)
        cover = engine.files["run_cover_1.png"]

    assert segment.duration == 3
    assert cover.startswith(b"\x89PNG")
    assert engine.calls[-1][engine.calls[-1].index("-ss") + 1] == "5.0"


@pytest.mark.asyncio
async def test_short_remainder_shortens_segment(engine: FakeEngine, manager: EngineManager,
                                                normalizer: SegmentNormalizer, config: ExportConfig) -> None:
    clip = engine.register(b"short-clip", duration=20.0)
    asset = Asset(kind=AssetKind.VIDEO, source=clip, start_time=18.5)

    async with manager.checkout("run") as session:
        segment = await normalizer.normalize(session, asset, 0, config)

    assert segment.duration == pytest.approx(1.5)


@pytest.mark.asyncio
async def test_start_past_end_restarts_from_zero(engine: FakeEngine, manager: EngineManager,
                                                 normalizer: SegmentNormalizer, config: ExportConfig) -> None:
    clip = engine.register(b"clip", duration=10.0)
    asset = Asset(kind=AssetKind.VIDEO, source=clip, start_time=12)

    async with manager.checkout("run") as session:
        segment = await normalizer.normalize(session, asset, 0, config)

    args = engine.calls[-1]
    assert args[args.index("-ss") + 1] == "0.0"
    assert segment.duration == 3


@pytest.mark.asyncio
async def test_unknown_source_duration_assumes_full_slide(engine: FakeEngine, manager: EngineManager,
                                                          normalizer: SegmentNormalizer,
                                                          config: ExportConfig) -> None:
    clip = engine.register(b"live-clip", duration=None)
    asset = Asset(kind=AssetKind.VIDEO, source=clip, start_time=40)

    async with manager.checkout("run") as session:
        segment = await normalizer.normalize(session, asset, 0, config)

    assert segment.duration == 3


@pytest.mark.asyncio
async def test_corrupt_source_is_a_decode_error(engine: FakeEngine, manager: EngineManager,
                                                normalizer: SegmentNormalizer, config: ExportConfig) -> None:
    asset = Asset(kind=AssetKind.VIDEO, source=b"garbage")
    async with manager.checkout("run") as session:
        with pytest.raises(DecodeError):
            await normalizer.normalize(session, asset, 0, config)
    assert engine.calls == []


@pytest.mark.asyncio
async def test_audio_file_without_audio_stream_is_a_decode_error(engine: FakeEngine, manager: EngineManager,
                                                                 normalizer: SegmentNormalizer,
                                                                 config: ExportConfig) -> None:
    silent = engine.register(b"silent-film", duration=5.0, audio=False)
    asset = Asset(kind=AssetKind.AUDIO, source=silent)
    async with manager.checkout("run") as session:
        with pytest.raises(DecodeError):
            await normalizer.normalize(session, asset, 0, config)


@pytest.mark.asyncio
async def test_engine_failure_is_an_encode_error(engine: FakeEngine, manager: EngineManager,
                                                 normalizer: SegmentNormalizer, config: ExportConfig) -> None:
    engine.fail_exec = lambda args: True
    async with manager.checkout("run") as session:
        with pytest.raises(EncodeError) as excinfo:
            await normalizer.normalize(session, Asset(kind=AssetKind.IMAGE, source=png_bytes("X")), 2, config)

    assert "asset 2" in str(excinfo.value)
    assert excinfo.value.stderr == "Conversion failed!"


@pytest.mark.asyncio
async def test_gif_image_is_normalized(engine: FakeEngine, manager: EngineManager,
                                       normalizer: SegmentNormalizer, config: ExportConfig) -> None:
    asset = Asset(kind=AssetKind.IMAGE, source=GIF_MAGIC + b"frames", suffix=".gif")
    async with manager.checkout("run") as session:
        segment = await normalizer.normalize(session, asset, 0, config)

    args = engine.calls[-1]
    assert "run_input_0.gif" in args
    assert "-loop" not in args
    assert segment.duration == 3
