"""Lightweight view model wrapper around `ImageItem`."""

from __future__ import annotations

from dataclasses import dataclass

from core.models import ImageItem
from core.services.filename_service import split_filename


@dataclass
class ImageVM:
    """Expose display properties for list and grid rows."""

    image: ImageItem

    @property
    def file_name(self) -> str:
        """Custom filename when set, otherwise name plus extension."""
        if self.image.custom_filename:
            return self.image.custom_filename
        return f"{self.image.filename}{self.image.extension}"

    @property
    def file_type(self) -> str:
        """Upper-case type label, e.g. `PNG`."""
        _, ext = split_filename(self.file_name)
        return (ext or self.image.extension).lstrip(".").upper()

    @property
    def dimensions_text(self) -> str:
        if self.image.width and self.image.height:
            return f"{self.image.width}×{self.image.height}"
        return ""

    def subtitle(self, show_dimensions: bool = True, show_filetype: bool = True) -> str:
        """Secondary line shown under the name."""
        parts = []
        if show_dimensions and self.dimensions_text:
            parts.append(self.dimensions_text)
        if show_filetype and self.file_type:
            parts.append(self.file_type)
        return " · ".join(parts)
