"""Image generation capability: renders branded featured images with Pillow."""

import logging
import os
import platform
from dataclasses import asdict, dataclass
from pathlib import Path

from PIL import Image, ImageDraw, ImageFont
from slugify import slugify

from autopublish.errors import ExternalServiceError

log = logging.getLogger(__name__)

DEFAULT_BRAND = {
    "background": "#243673",
    "accent": "#3b4fe4",
    "text": "#ffffff",
    "width": 1200,
    "height": 627,
}


@dataclass
class GeneratedImage:
    url: str
    alt_text: str

    def to_dict(self) -> dict:
        return asdict(self)


class ImageGenerator:
    """Produces one featured image per description and returns its URL and alt text."""

    def __init__(self, output_dir="output/images", brand: dict = None):
        self.output_dir = output_dir
        self.brand = {**DEFAULT_BRAND, **(brand or {})}
        os.makedirs(self.output_dir, exist_ok=True)

    @classmethod
    def from_config(cls, config: dict) -> "ImageGenerator":
        images = config.get("images", {})
        return cls(output_dir=images.get("output_dir", "output/images"), brand=images.get("brand"))

    def _hex_to_rgb(self, hex_color: str) -> tuple:
        hex_color = hex_color.lstrip("#")
        return tuple(int(hex_color[i:i+2], 16) for i in (0, 2, 4))

    def _get_font(self, size: int, bold: bool = False):
        """Try a handful of common TTF fonts before falling back to Pillow's default."""
        if bold:
            font_names = ["DejaVuSans-Bold.ttf", "Arial Bold.ttf", "LiberationSans-Bold.ttf"]
        else:
            font_names = ["DejaVuSans.ttf", "Arial.ttf", "LiberationSans-Regular.ttf"]

        font_dirs = []
        if platform.system() == "Darwin":
            font_dirs = ["/System/Library/Fonts", "/Library/Fonts"]
        elif platform.system() == "Linux":
            font_dirs = [
                "/usr/share/fonts/truetype/dejavu",
                "/usr/share/fonts/truetype/liberation",
                "/usr/share/fonts/TTF",
            ]

        candidates = [os.path.join(d, n) for d in font_dirs for n in font_names] + font_names
        for path in candidates:
            try:
                return ImageFont.truetype(path, size)
            except (OSError, IOError):
                continue

        log.warning(f"No TrueType font found, using Pillow default (size={size}, bold={bold})")
        return ImageFont.load_default()

    def _draw_wrapped_text(self, draw, text, position, font, fill, max_width):
        """Draw text with word wrapping."""
        x, y = position
        lines = []
        current_line = ""
        for word in text.split():
            test_line = f"{current_line} {word}".strip()
            bbox = draw.textbbox((0, 0), test_line, font=font)
            if bbox[2] - bbox[0] <= max_width:
                current_line = test_line
            else:
                if current_line:
                    lines.append(current_line)
                current_line = word
        if current_line:
            lines.append(current_line)

        line_height = font.size + 10 if hasattr(font, "size") else 50
        for line in lines:
            draw.text((x, y), line, fill=fill, font=font)
            y += line_height

    def generate_alt_text(self, description: str) -> str:
        """Descriptive alt text, max 125 characters."""
        alt = " ".join(description.split())
        if len(alt) > 125:
            alt = alt[:122] + "..."
        return alt

    def generate(self, description: str) -> GeneratedImage:
        """Render a featured image for ``description``."""
        w, h = self.brand["width"], self.brand["height"]
        background = self._hex_to_rgb(self.brand["background"])
        accent = self._hex_to_rgb(self.brand["accent"])
        text_color = self._hex_to_rgb(self.brand["text"])

        img = Image.new("RGB", (w, h), background)
        draw = ImageDraw.Draw(img)

        # Accent bars top and bottom
        draw.rectangle([(0, 0), (w, 8)], fill=accent)
        draw.rectangle([(0, h - 8), (w, h)], fill=accent)

        font_title = self._get_font(48, bold=True)
        self._draw_wrapped_text(draw, description, (60, h // 2 - 80), font_title, text_color, max_width=w - 120)

        filename = f"featured-{slugify(description, max_length=60) or 'image'}.png"
        filepath = Path(self.output_dir) / filename
        try:
            img.save(filepath, "PNG")
        except OSError as e:
            raise ExternalServiceError(f"Image generation failed: {e}") from e

        log.info(f"Generated image {filepath}")
        return GeneratedImage(url=filepath.resolve().as_uri(), alt_text=self.generate_alt_text(description))
