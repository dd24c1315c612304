"""
Export Job

Drives one export run end to end:
- Checks out the shared engine (queueing or rejecting concurrent exports)
- Normalizes assets strictly in list order
- Concatenates the segments in that same order
- Hands the result to the output sink

Progress is produced as an async stream of ExportUpdate items; the last
item carries the outcome. Any export error aborts the run and nothing is
delivered.
"""

import time
import uuid
from typing import Any, AsyncIterator, Callable, List, Optional, Sequence

from ..utils.config import BusyPolicy, Config, ExportSettings
from ..utils.logger import LoggerMixin
from .concatenator import Concatenator
from .cover_art import CoverArtSynthesizer
from .engine import EngineManager, EngineSession, get_engine_manager
from .errors import EncodeError, ExportCancelledError, ExportError
from .export_models import (
    ENCODING_PROFILES, Asset, ExportConfig, ExportOutcome, ExportUpdate,
    NormalizedSegment
)
from .normalizer import SegmentNormalizer
from .output_sink import DownloadObject, OutputSink, create_output_sink
from .progress import ProgressTracker


class ExportJob(LoggerMixin):
    """One run of the pipeline over an asset list and export config"""

    def __init__(self,
                 assets: Sequence[Asset],
                 config: ExportConfig,
                 sink: OutputSink,
                 manager: Optional[EngineManager] = None,
                 settings: Optional[ExportSettings] = None,
                 normalizer: Optional[SegmentNormalizer] = None,
                 concatenator: Optional[Concatenator] = None):
        if not assets:
            raise ValueError("An export needs at least one asset")

        self.id = uuid.uuid4().hex[:12]
        self.assets: List[Asset] = list(assets)
        self.config = config
        self.sink = sink
        self.manager = manager or get_engine_manager()
        self.settings = settings or ExportSettings()
        self.normalizer = normalizer or SegmentNormalizer()
        self.concatenator = concatenator or Concatenator(self.normalizer.profile)

        self.tracker = ProgressTracker()
        self.outcome = ExportOutcome()
        self.segments: List[NormalizedSegment] = []
        self._cancel_requested = False
        self._started = False

    @classmethod
    def from_config(cls,
                    assets: Sequence[Asset],
                    export_config: ExportConfig,
                    app_config: Config,
                    sink: Optional[OutputSink] = None,
                    download_handler: Optional[Callable[[DownloadObject], Any]] = None,
                    manager: Optional[EngineManager] = None) -> "ExportJob":
        """Wire a job from application configuration"""
        profile = ENCODING_PROFILES.get(app_config.engine.profile)
        if profile is None:
            raise ValueError(
                f"Unknown encoding profile '{app_config.engine.profile}', "
                f"expected one of {', '.join(ENCODING_PROFILES)}"
            )
        return cls(
            assets,
            export_config,
            sink or create_output_sink(app_config.output, download_handler),
            manager=manager or get_engine_manager(app_config.engine),
            settings=app_config.export,
            normalizer=SegmentNormalizer(profile, CoverArtSynthesizer(app_config.cover_art)),
            concatenator=Concatenator(profile),
        )

    @property
    def progress(self) -> int:
        return self.tracker.progress

    @property
    def status(self) -> str:
        return self.tracker.status

    def cancel(self) -> bool:
        """Request cancellation at the next asset boundary"""
        if not self.settings.cancellation_enabled:
            self.logger.warning(f"Export {self.id}: cancellation is disabled, ignoring request")
            return False
        self._cancel_requested = True
        return True

    def _check_cancelled(self) -> None:
        if self._cancel_requested:
            raise ExportCancelledError("Export cancelled")

    async def _normalize(self, session: EngineSession, asset: Asset, index: int) -> NormalizedSegment:
        attempts = self.settings.max_asset_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await self.normalizer.normalize(session, asset, index, self.config)
            except EncodeError as e:
                if attempt == attempts:
                    raise
                self.logger.warning(f"Asset {index} attempt {attempt}/{attempts} failed, retrying: {e}")

    async def run(self) -> AsyncIterator[ExportUpdate]:
        """Execute the export, yielding progress updates"""
        if self._started:
            raise RuntimeError(f"Export {self.id} has already been started")
        self._started = True

        started = time.time()
        total = len(self.assets)
        wait = self.settings.busy_policy == BusyPolicy.QUEUE
        self.logger.info(
            f"Export {self.id}: {total} assets, {self.config.slide_duration}s slides, "
            f"{self.config.resolution.value}"
        )
        yield self.tracker.reset()

        try:
            async with self.manager.checkout(self.id, wait=wait) as session:
                for index, asset in enumerate(self.assets):
                    self._check_cancelled()
                    yield self.tracker.asset_started(index, total, asset.kind.value)
                    self.segments.append(await self._normalize(session, asset, index))
                    yield self.tracker.asset_finished(index, total)

                self._check_cancelled()
                yield self.tracker.concatenating()
                artifact = await self.concatenator.concatenate(session, self.segments, self.config)
                yield self.tracker.preparing_output()

            yield self.tracker.delivering()
            ref = await self.sink.deliver(artifact)

        except ExportError as e:
            self.logger.error(f"Export {self.id} failed ({e.kind.value}): {e}")
            self.outcome = ExportOutcome.failed(e.kind, str(e))
            yield ExportUpdate(progress=self.tracker.progress,
                               status=f"Export failed: {e.kind.value}",
                               outcome=self.outcome)
            return

        self.outcome = ExportOutcome.succeeded(ref)
        self.logger.info(f"Export {self.id} completed in {time.time() - started:.1f}s: {ref.filename}")
        final = self.tracker.completed()
        yield final.model_copy(update={'outcome': self.outcome})


def start_export(assets: Sequence[Asset],
                 config: ExportConfig,
                 sink: OutputSink,
                 **kwargs) -> AsyncIterator[ExportUpdate]:
    """Stream of progress updates ending in succeeded or failed"""
    return ExportJob(assets, config, sink, **kwargs).run()
