"""
Story Export

Builds a single vertical video from a sequence of images, video clips and
audio clips.
"""

__version__ = "0.1.0"
