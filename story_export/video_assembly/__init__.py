"""
Video Assembly Pipeline

Turns an ordered list of images, video clips and audio clips into one
vertical MP4:
- Per-asset normalization to a fixed resolution, frame rate and duration
- Cover art for audio-only slides
- Ordered concatenation with optional background music
- Delivery to the filesystem or as a download
"""

from .export_job import ExportJob, start_export
from .export_models import Asset, AssetKind, ExportConfig, ExportOutcome, ExportUpdate, Resolution
from .errors import ErrorKind, ExportError

__all__ = [
    'ExportJob',
    'start_export',
    'Asset',
    'AssetKind',
    'ExportConfig',
    'ExportOutcome',
    'ExportUpdate',
    'Resolution',
    'ErrorKind',
    'ExportError',
]
