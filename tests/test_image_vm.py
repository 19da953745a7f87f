from __future__ import annotations

from app.viewmodels.image_vm import ImageVM
from core.models import ImageItem


def test_display_properties():
    row = ImageVM(ImageItem(url="u", filename="sunset", extension=".png", width=800, height=600))
    assert row.file_name == "sunset.png"
    assert row.file_type == "PNG"
    assert row.dimensions_text == "800×600"
    assert row.subtitle() == "800×600 · PNG"
    assert row.subtitle(show_dimensions=False) == "PNG"


def test_custom_filename_and_missing_dimensions():
    row = ImageVM(ImageItem(url="u", filename="a", extension=".jpg", custom_filename="b.webp"))
    assert row.file_name == "b.webp"
    assert row.file_type == "WEBP"
    assert row.dimensions_text == ""
    assert row.subtitle(show_filetype=False) == ""
