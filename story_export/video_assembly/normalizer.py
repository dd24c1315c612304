"""
Per-Asset Normalizer

Turns one asset into one segment at the export's resolution, frame rate and
slide duration. Images are looped stills, videos are trimmed and re-encoded,
audio is muxed under a rendered cover frame. Every segment carries one
video and one stereo AAC track so the concat demuxer sees identical streams.
"""

from typing import List, Optional

import ffmpeg

from ..utils.logger import LoggerMixin
from .cover_art import CoverArtSynthesizer
from .engine import EngineSession
from .errors import DecodeError, EncodeError
from .export_models import (
    ENCODING_PROFILES, Asset, AssetKind, EncodingProfile, ExportConfig,
    MediaInfo, NormalizedSegment
)


class SegmentNormalizer(LoggerMixin):
    """Converts assets into fixed-format segments inside working storage"""

    def __init__(self,
                 profile: Optional[EncodingProfile] = None,
                 cover_art: Optional[CoverArtSynthesizer] = None):
        self.profile = profile or ENCODING_PROFILES["fast"]
        self.cover_art = cover_art or CoverArtSynthesizer()

    # ------------------------------------------------------------------
    # Filter and argument builders
    # ------------------------------------------------------------------

    def _fit(self, stream, config: ExportConfig):
        """Scale inside the target box, then pad to it with black"""
        w, h = config.width, config.height
        return (
            stream
            .filter('scale', w, h, force_original_aspect_ratio='decrease')
            .filter('pad', w, h, '(ow-iw)/2', '(oh-ih)/2', color='black')
            .filter('setsar', 1)
            .filter('fps', fps=config.frame_rate)
        )

    def _silence(self, duration: float):
        source = f"anullsrc=channel_layout=stereo:sample_rate={self.profile.sample_rate}"
        return ffmpeg.input(source, format='lavfi', t=duration).audio

    def _encode_args(self, config: ExportConfig, duration: float) -> dict:
        return {
            'vcodec': self.profile.video_codec,
            'preset': self.profile.preset,
            'crf': self.profile.crf,
            'pix_fmt': self.profile.pix_fmt,
            'r': config.frame_rate,
            'acodec': self.profile.audio_codec,
            'audio_bitrate': self.profile.audio_bitrate,
            'ar': self.profile.sample_rate,
            'ac': self.profile.channels,
            't': duration,
        }

    @staticmethod
    def loops_natively(info: Optional[MediaInfo]) -> bool:
        """image2 and its pipe demuxers repeat a still through input options"""
        name = info.format_name if info is not None else None
        return not name or name == 'image2' or name.endswith('_pipe')

    def build_image_args(self, input_name: str, output_name: str, config: ExportConfig,
                         native_loop: bool = True) -> List[str]:
        duration = config.slide_duration
        if native_loop:
            still = ffmpeg.input(input_name, loop=1, framerate=config.frame_rate, t=duration).video
        else:
            # GIF and other containers: hold the first frame for the whole slide
            still = (
                ffmpeg.input(input_name).video
                .filter('trim', end_frame=1)
                .filter('loop', loop=-1, size=1, start=0)
                .filter('setpts', f'N/{config.frame_rate}/TB')
            )
        stream = ffmpeg.output(
            self._fit(still, config),
            self._silence(duration),
            output_name,
            **self._encode_args(config, duration)
        )
        return stream.overwrite_output().get_args()

    def build_video_args(self, input_name: str, output_name: str, config: ExportConfig,
                         start_time: float, has_audio: bool = True) -> List[str]:
        duration = config.slide_duration
        clip = ffmpeg.input(input_name, ss=start_time, t=duration)
        # Padded so -shortest ends on the video even when the source audio stops early
        audio = clip.audio.filter('apad') if has_audio else self._silence(duration)
        stream = ffmpeg.output(
            self._fit(clip.video, config),
            audio,
            output_name,
            shortest=None,
            **self._encode_args(config, duration)
        )
        return stream.overwrite_output().get_args()

    def build_audio_args(self, cover_name: str, audio_name: str, output_name: str,
                         config: ExportConfig, start_time: float) -> List[str]:
        duration = config.slide_duration
        cover = ffmpeg.input(cover_name, loop=1, framerate=config.frame_rate)
        sound = ffmpeg.input(audio_name, ss=start_time, t=duration)
        stream = ffmpeg.output(
            self._fit(cover.video, config),
            sound.audio,
            output_name,
            shortest=None,
            **self._encode_args(config, duration)
        )
        return stream.overwrite_output().get_args()

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def clamp_start_time(self, asset: Asset, info: MediaInfo) -> float:
        start = asset.effective_start_time
        if info.duration is not None and start >= info.duration:
            self.logger.warning(
                f"Asset {asset.id}: start {start:.2f}s is past source duration "
                f"{info.duration:.2f}s, starting from 0"
            )
            return 0.0
        return start

    def expected_duration(self, asset: Asset, info: Optional[MediaInfo],
                          start_time: float, config: ExportConfig) -> float:
        """Length the segment will have once trimmed to the slide"""
        slide = float(config.slide_duration)
        if asset.kind == AssetKind.IMAGE or info is None or info.duration is None:
            return slide
        return max(0.0, min(slide, info.duration - start_time))

    async def _probe(self, session: EngineSession, name: str, asset: Asset) -> MediaInfo:
        info = MediaInfo.from_probe(await session.probe(name))
        if asset.kind in (AssetKind.IMAGE, AssetKind.VIDEO) and not info.has_video:
            raise DecodeError(f"Asset {asset.id} ({asset.kind.value}) has no video stream")
        if asset.kind == AssetKind.AUDIO and not info.has_audio:
            raise DecodeError(f"Asset {asset.id} has no audio stream")
        return info

    async def normalize(self, session: EngineSession, asset: Asset, index: int,
                        config: ExportConfig) -> NormalizedSegment:
        """Produce the segment for ``asset``, the ``index``-th slide of the run"""
        input_name = await session.write_file(f"input_{index}{asset.input_suffix}", asset.read_bytes())
        output_name = session.claim(f"segment_{index}.mp4")
        info = await self._probe(session, input_name, asset)

        if asset.kind == AssetKind.IMAGE:
            start_time = 0.0
            args = self.build_image_args(input_name, output_name, config, self.loops_natively(info))
        elif asset.kind == AssetKind.VIDEO:
            start_time = self.clamp_start_time(asset, info)
            args = self.build_video_args(input_name, output_name, config, start_time, info.has_audio)
        elif asset.kind == AssetKind.AUDIO:
            start_time = self.clamp_start_time(asset, info)
            cover = self.cover_art.render(asset.caption, config.width, config.height)
            cover_name = await session.write_file(f"cover_{index}.png", cover)
            args = self.build_audio_args(cover_name, input_name, output_name, config, start_time)
        else:
            raise ValueError(f"Unsupported asset kind: {asset.kind}")

        self.logger.info(
            f"Normalizing asset {index} ({asset.kind.value}, start {start_time:.2f}s) "
            f"-> {config.resolution.value}@{config.frame_rate}fps"
        )
        try:
            await session.exec(args)
        except EncodeError as e:
            raise EncodeError(f"Encoding asset {index} ({asset.kind.value}) failed: {e}",
                              stderr=e.stderr) from e

        return NormalizedSegment(
            name=output_name,
            asset_id=asset.id,
            index=index,
            width=config.width,
            height=config.height,
            frame_rate=config.frame_rate,
            duration=self.expected_duration(asset, info, start_time, config),
        )
