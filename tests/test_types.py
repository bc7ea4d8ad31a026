import dataclasses
import pytest

from photobinder.core.types import (
    PdfSettings, PageSizeMode, Orientation, ImageFit, settings_from_dict, settings_to_dict,
)
from photobinder.core.errors import InvalidSettings

def test_defaults():
    s = PdfSettings()
    assert s.page_size == PageSizeMode.A4
    assert s.orientation == Orientation.AUTO
    assert s.margin_mm == 10
    assert s.image_fit == ImageFit.CONTAIN
    assert s.filename == "images.pdf"

@pytest.mark.parametrize("margin", [-0.1, 50.5, 100])
def test_margin_out_of_range(margin):
    with pytest.raises(InvalidSettings):
        PdfSettings(margin_mm=margin)

def test_margin_bounds_accepted():
    assert PdfSettings(margin_mm=0).margin_mm == 0
    assert PdfSettings(margin_mm="50").margin_mm == 50

def test_string_values_are_coerced():
    s = PdfSettings(page_size="fit_image", orientation="l", image_fit="fill")
    assert s.page_size is PageSizeMode.FIT_IMAGE
    assert s.orientation is Orientation.LANDSCAPE
    assert s.image_fit is ImageFit.FILL
    assert PdfSettings(orientation="Portrait").orientation is Orientation.PORTRAIT

@pytest.mark.parametrize("field,value", [("page_size", "A5"), ("orientation", "sideways"), ("image_fit", "ORIGINAL")])
def test_invalid_enum_rejected(field, value):
    with pytest.raises(InvalidSettings):
        PdfSettings(**{field: value})

def test_settings_are_frozen():
    s = PdfSettings()
    with pytest.raises(dataclasses.FrozenInstanceError):
        s.margin_mm = 20

def test_settings_from_dict_fills_defaults():
    s = settings_from_dict({"page_size": "LETTER", "margin_mm": 5})
    assert s.page_size is PageSizeMode.LETTER
    assert s.margin_mm == 5
    assert s.orientation is Orientation.AUTO

def test_settings_dict_roundtrip():
    s = PdfSettings(page_size=PageSizeMode.FIT_IMAGE, orientation=Orientation.LANDSCAPE, margin_mm=3, image_fit=ImageFit.FILL, filename="x.pdf")
    assert settings_from_dict(settings_to_dict(s)) == s
