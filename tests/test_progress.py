"""Tests for progress allocation."""

from story_export.video_assembly.progress import ProgressTracker


def test_assets_share_first_three_quarters() -> None:
    tracker = ProgressTracker()
    percents = [tracker.asset_finished(i, 3).progress for i in range(3)]
    assert percents == [25, 50, 75]


def test_stage_boundaries() -> None:
    tracker = ProgressTracker()
    tracker.asset_finished(0, 1)
    assert tracker.concatenating().progress == 75
    assert tracker.preparing_output().progress == 90
    assert tracker.delivering().progress == 95
    final = tracker.completed()
    assert final.progress == 100
    assert final.status == "Video exported successfully!"


def test_never_decreases() -> None:
    tracker = ProgressTracker()
    tracker.update(60, "somewhere")
    update = tracker.update(10, "going back")
    assert update.progress == 60
    assert update.status == "going back"
    assert tracker.asset_started(0, 4, "image").progress == 60


def test_reset_starts_over() -> None:
    tracker = ProgressTracker()
    tracker.completed()
    assert tracker.reset().progress == 0


def test_values_are_clamped() -> None:
    tracker = ProgressTracker()
    assert tracker.update(250, "over").progress == 100
