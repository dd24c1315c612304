"""
Progress Tracker

Maps pipeline position onto a monotonic 0-100 percentage:
    0-75   normalizing assets, (i + 1) / total * 75 after asset i
    75-90  creating the final video
    90-95  preparing output
    95-100 delivering output
"""

from .export_models import ExportProgress, ExportUpdate

NORMALIZE_SHARE = 75
CONCAT_START = 75
PREPARE_START = 90
DELIVER_START = 95
COMPLETE = 100


class ProgressTracker:
    """Never reports a lower percentage than it already has within a run"""

    def __init__(self):
        self.state = ExportProgress()

    @property
    def progress(self) -> int:
        return self.state.progress

    @property
    def status(self) -> str:
        return self.state.status

    def reset(self) -> ExportUpdate:
        self.state = ExportProgress()
        return self._update()

    def _update(self) -> ExportUpdate:
        return ExportUpdate(progress=self.state.progress, status=self.state.status)

    def update(self, percent: float, status: str) -> ExportUpdate:
        clamped = max(0, min(COMPLETE, int(percent)))
        self.state = ExportProgress(progress=max(self.state.progress, clamped), status=status)
        return self._update()

    def asset_started(self, index: int, total: int, kind: str) -> ExportUpdate:
        return self.update(self.state.progress, f"Processing {kind} {index + 1} of {total}...")

    def asset_finished(self, index: int, total: int) -> ExportUpdate:
        percent = (index + 1) * NORMALIZE_SHARE / total
        return self.update(percent, f"Processed {index + 1} of {total}")

    def concatenating(self) -> ExportUpdate:
        return self.update(CONCAT_START, "Creating final video...")

    def preparing_output(self) -> ExportUpdate:
        return self.update(PREPARE_START, "Preparing output...")

    def delivering(self) -> ExportUpdate:
        return self.update(DELIVER_START, "Delivering output...")

    def completed(self) -> ExportUpdate:
        return self.update(COMPLETE, "Video exported successfully!")
