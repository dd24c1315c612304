"""
Concatenator

Joins normalized segments, in slide order, into the final video through the
concat demuxer. Video and audio are re-encoded rather than stream-copied so
the output parameters stay uniform even if a segment's muxing differs.
"""

from typing import List, Optional, Sequence

import ffmpeg

from ..utils.logger import LoggerMixin
from .engine import EngineSession
from .errors import ConcatError, EncodeError, StorageError
from .export_models import (
    ENCODING_PROFILES, BackgroundMusic, EncodingProfile, ExportConfig,
    FinalArtifact, NormalizedSegment
)

MANIFEST_STEM = "concat_list.txt"
OUTPUT_STEM = "story_export.mp4"


def build_manifest(names: Sequence[str]) -> str:
    """Concat demuxer script, one ``file`` directive per segment"""
    lines = []
    for name in names:
        escaped = name.replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    return "\n".join(lines) + "\n"


class Concatenator(LoggerMixin):
    """Builds the final video from ordered segments"""

    def __init__(self, profile: Optional[EncodingProfile] = None):
        self.profile = profile or ENCODING_PROFILES["fast"]

    def _music_filter(self, music_stream, music: BackgroundMusic, total_duration: float):
        audio = music_stream
        if music.volume != 1.0:
            audio = audio.filter('volume', music.volume)

        if music.fade_in > 0:
            audio = audio.filter('afade', type='in', duration=music.fade_in)

        if music.fade_out > 0 and total_duration > 0:
            # Fade-out must start near the end, never before the fade-in finishes
            st = max(0.0, total_duration - music.fade_out)
            if music.fade_in > 0 and st < music.fade_in + 0.05:
                st = music.fade_in + 0.05
            audio = audio.filter('afade', type='out', st=round(st, 3), d=music.fade_out)
        return audio

    def build_args(self, manifest_name: str, output_name: str, config: ExportConfig,
                   total_duration: float, music_name: Optional[str] = None) -> List[str]:
        joined = ffmpeg.input(manifest_name, format='concat', safe=0)
        video = joined.video
        audio = joined.audio

        if music_name and config.background_music is not None:
            music = config.background_music
            music_input = ffmpeg.input(music_name, ss=music.start_offset, stream_loop=-1)
            bed = self._music_filter(music_input.audio, music, total_duration)
            audio = ffmpeg.filter([audio, bed], 'amix', inputs=2, duration='first', normalize=0)

        output_args = {
            'vcodec': self.profile.video_codec,
            'preset': self.profile.preset,
            'crf': self.profile.crf,
            'pix_fmt': self.profile.pix_fmt,
            'r': config.frame_rate,
            'acodec': self.profile.audio_codec,
            'audio_bitrate': self.profile.audio_bitrate,
            'ar': self.profile.sample_rate,
            'ac': self.profile.channels,
            'movflags': '+faststart',
        }
        stream = ffmpeg.output(video, audio, output_name, **output_args)
        return stream.overwrite_output().get_args()

    async def concatenate(self, session: EngineSession, segments: Sequence[NormalizedSegment],
                          config: ExportConfig) -> FinalArtifact:
        """Join ``segments`` in the given order and read the result back"""
        if not segments:
            raise ConcatError("Nothing to concatenate")

        self.logger.info(f"Concatenating {len(segments)} segments")
        try:
            manifest_name = await session.write_file(
                MANIFEST_STEM, build_manifest([s.name for s in segments]).encode('utf-8')
            )
            music_name = None
            if config.background_music is not None:
                music_name = await session.write_file(
                    f"music{config.background_music.suffix}", config.background_music.read_bytes()
                )

            output_name = session.claim(OUTPUT_STEM)
            total_duration = sum(s.duration for s in segments)
            await session.exec(self.build_args(manifest_name, output_name, config,
                                               total_duration, music_name))
            data = await session.read_file(output_name)
        except (EncodeError, StorageError) as e:
            raise ConcatError(f"Creating final video failed: {e}") from e

        if not data:
            raise ConcatError("Engine produced an empty video")

        self.logger.info(f"Final video: {len(data) / (1024**2):.1f}MB, {total_duration:.1f}s")
        return FinalArtifact(name=output_name, data=data, size_bytes=len(data))
