#!/usr/bin/env python3
"""
Story Export - Main Entry Point
Builds one vertical video from a sequence of images, video clips and audio clips.
"""

import asyncio
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TimeElapsedColumn

from story_export.utils.config import Config
from story_export.utils.logger import setup_logging
from story_export.video_assembly.engine import get_engine_manager
from story_export.video_assembly.errors import ExportError
from story_export.video_assembly.export_job import ExportJob
from story_export.video_assembly.export_models import (
    Asset, BackgroundMusic, ExportConfig, OutcomeState
)
from story_export.video_assembly.output_sink import NativeFilesystemSink

DEFAULT_CONFIG = "configs/config.yaml"

console = Console()


def _parse_indexed(values: Optional[List[str]], option: str) -> Dict[int, str]:
    """Turn ["0=Intro", "2=5.5"] into {0: "Intro", 2: "5.5"}"""
    parsed = {}
    for value in values or []:
        index, sep, rest = value.partition('=')
        if not sep or not index.strip().isdigit():
            raise ValueError(f"{option} expects INDEX=VALUE, got '{value}'")
        parsed[int(index)] = rest
    return parsed


class StoryExportApp:
    """Command line front end for the export pipeline"""

    def __init__(self, config_path: Optional[str] = None):
        config_path = config_path or os.getenv("STORY_EXPORT_CONFIG", DEFAULT_CONFIG)
        if Path(config_path).exists():
            self.config = Config.load(config_path)
        else:
            self.config = Config()
        self.logger = setup_logging(self.config)

    def build_assets(self, files: List[str], captions: Dict[int, str],
                     starts: Dict[int, str]) -> List[Asset]:
        assets = []
        for index, file in enumerate(files):
            path = Path(file)
            if not path.is_file():
                raise FileNotFoundError(f"Asset not found: {file}")
            assets.append(Asset.from_path(
                path,
                caption=captions.get(index),
                start_time=float(starts.get(index, 0.0)),
            ))
        return assets

    def build_export_config(self, slide_duration: Optional[int], bpm: Optional[float],
                            resolution: Optional[str], music: Optional[str]) -> ExportConfig:
        background_music = None
        if music:
            music_path = Path(music)
            background_music = BackgroundMusic(source=music_path, suffix=music_path.suffix or ".mp3")

        resolution = resolution or self.config.export.default_resolution
        if bpm:
            return ExportConfig.from_bpm(bpm, resolution=resolution, background_music=background_music)
        return ExportConfig(
            slide_duration=slide_duration or self.config.export.default_slide_duration,
            resolution=resolution,
            background_music=background_music,
        )

    async def export(self, assets: List[Asset], export_config: ExportConfig,
                     output_dir: Optional[str] = None) -> bool:
        sink = None
        if output_dir:
            sink = NativeFilesystemSink(Path(output_dir), self.config.output.subdirectory)
        job = ExportJob.from_config(assets, export_config, self.config, sink=sink)

        console.print(f"[blue]🎬[/blue] Exporting {len(assets)} slides "
                      f"({export_config.slide_duration}s each, {export_config.resolution.value})")

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=console,
            transient=False
        ) as progress:
            task = progress.add_task("[magenta]Preparing to export video...", total=100)
            async for update in job.run():
                progress.update(task, completed=update.progress, description=f"[magenta]{update.status}")

        outcome = job.outcome
        if outcome.state == OutcomeState.SUCCEEDED:
            artifact = outcome.artifact
            console.print("\n[bold green]🎉 Export Complete![/bold green]")
            console.print(f"[green]💾[/green] Size: {artifact.size_bytes / (1024**2):.1f}MB")
            console.print(f"[green]✅[/green] Saved: {artifact.location or artifact.filename}")
            return True

        console.print(f"[red]❌[/red] {outcome.error_kind.value}: {outcome.message}")
        return False

    async def check_engine(self) -> bool:
        manager = get_engine_manager(self.config.engine)
        try:
            await manager.ensure_ready()
        except ExportError as e:
            console.print(f"[red]❌[/red] Engine unavailable: {e}")
            return False
        console.print("[green]✓[/green] Transcoding engine ready")
        return True


def main():
    """Main entry point"""
    import argparse

    # Local overrides such as STORY_EXPORT_CONFIG
    load_dotenv(dotenv_path=Path(__file__).parent / ".env.local")

    parser = argparse.ArgumentParser(description="Story Export - assemble media into one vertical video")
    parser.add_argument("--config", type=str, default=None,
                        help=f"Path to configuration file (default: {DEFAULT_CONFIG})")
    subparsers = parser.add_subparsers(dest="command", required=True)

    export_parser = subparsers.add_parser("export", help="Export assets into one video")
    export_parser.add_argument("files", nargs="+", help="Images, video clips and audio clips in slide order")
    duration = export_parser.add_mutually_exclusive_group()
    duration.add_argument("--slide-duration", type=int, help="Seconds per slide")
    duration.add_argument("--bpm", type=float, help="Derive slide duration from tempo (four beats per slide)")
    export_parser.add_argument("--resolution", type=str, help="720x1280, 1080x1920 or 1440x2560")
    export_parser.add_argument("--caption", action="append", metavar="INDEX=TEXT",
                               help="Caption for the asset at INDEX (repeatable)")
    export_parser.add_argument("--start", action="append", metavar="INDEX=SECONDS",
                               help="Trim start for the video/audio asset at INDEX (repeatable)")
    export_parser.add_argument("--music", type=str, help="Background music file")
    export_parser.add_argument("--output-dir", type=str, help="Directory to save into instead of Documents")

    subparsers.add_parser("check", help="Verify the transcoding engine can be loaded")

    args = parser.parse_args()

    try:
        app = StoryExportApp(args.config)

        if args.command == "check":
            ok = asyncio.run(app.check_engine())
            sys.exit(0 if ok else 1)

        assets = app.build_assets(
            args.files,
            _parse_indexed(args.caption, "--caption"),
            _parse_indexed(args.start, "--start"),
        )
        export_config = app.build_export_config(args.slide_duration, args.bpm, args.resolution, args.music)
        ok = asyncio.run(app.export(assets, export_config, args.output_dir))
        sys.exit(0 if ok else 1)

    except KeyboardInterrupt:
        console.print("\n[yellow]👋[/yellow] Goodbye!")
    except (ValueError, FileNotFoundError) as e:
        console.print(f"[red]💥[/red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
