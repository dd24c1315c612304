"""
Cover Art Synthesizer

Renders the still frame shown while an audio slide plays: a solid
background, a centered glyph, a label line and the caption. Every size is a
fraction of the target height so one design serves 720p, 1080p and 2K.
"""

import io
import textwrap
from dataclasses import dataclass
from typing import Dict, List, Optional

from PIL import Image, ImageDraw, ImageFont

from ..utils.config import CoverArtConfig
from ..utils.logger import get_logger
from .errors import RenderError

logger = get_logger(__name__)

# Font sizes and vertical centers as fractions of the image height
GLYPH_SCALE = 0.16
LABEL_SCALE = 0.028
CAPTION_SCALE = 0.045
GLYPH_CENTER = 0.40
LABEL_CENTER = 0.54
CAPTION_TOP = 0.59
MAX_CAPTION_LINES = 3


@dataclass(frozen=True)
class TextElement:
    """A line of text positioned by its horizontal center"""
    role: str  # glyph | label | caption
    text: str
    font_size: int
    center_y: int
    color: str


class CoverArtSynthesizer:
    """Deterministic cover frames for audio-only assets"""

    def __init__(self, config: Optional[CoverArtConfig] = None):
        self.config = config or CoverArtConfig()
        self._fonts: Dict[int, ImageFont.ImageFont] = {}

    def _font(self, size: int):
        if size not in self._fonts:
            try:
                self._fonts[size] = ImageFont.truetype(self.config.font_path, size)
            except (OSError, AttributeError, TypeError):
                self._fonts[size] = ImageFont.load_default(size=size)
        return self._fonts[size]

    def _wrap_caption(self, caption: str, font_size: int, width: int) -> List[str]:
        # Average glyph is roughly 0.55em wide
        max_chars = max(8, int(width * 0.85 / (font_size * 0.55)))
        lines = textwrap.wrap(caption, width=max_chars) or [""]
        if len(lines) > MAX_CAPTION_LINES:
            lines = lines[:MAX_CAPTION_LINES]
            lines[-1] = lines[-1].rstrip()[:-1] + "…"
        return lines

    def layout(self, caption: str, width: int, height: int) -> List[TextElement]:
        """Text elements for a cover of the given size"""
        if width <= 0 or height <= 0:
            raise RenderError(f"Invalid cover size {width}x{height}")

        glyph_size = max(1, round(height * GLYPH_SCALE))
        label_size = max(1, round(height * LABEL_SCALE))
        caption_size = max(1, round(height * CAPTION_SCALE))

        elements = [
            TextElement("glyph", self.config.glyph, glyph_size, round(height * GLYPH_CENTER),
                        self.config.accent_color),
            TextElement("label", self.config.label, label_size, round(height * LABEL_CENTER),
                        self.config.accent_color),
        ]

        line_height = round(caption_size * 1.3)
        top = round(height * CAPTION_TOP)
        for i, line in enumerate(self._wrap_caption(caption.strip(), caption_size, width)):
            elements.append(TextElement(
                "caption", line, caption_size, top + i * line_height + line_height // 2,
                self.config.text_color
            ))
        return elements

    def render(self, caption: str, width: int, height: int) -> bytes:
        """PNG bytes of the cover frame"""
        elements = self.layout(caption, width, height)
        try:
            image = Image.new("RGB", (width, height), self.config.background_color)
            draw = ImageDraw.Draw(image)
            for element in elements:
                if element.text:
                    draw.text(
                        (width // 2, element.center_y),
                        element.text,
                        fill=element.color,
                        font=self._font(element.font_size),
                        anchor="mm",
                    )

            buffer = io.BytesIO()
            image.save(buffer, format="PNG", optimize=False)
        except (OSError, ValueError) as e:
            raise RenderError(f"Cover art rendering failed: {e}") from e

        logger.debug(f"Rendered {width}x{height} cover for {caption!r}")
        return buffer.getvalue()
