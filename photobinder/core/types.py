from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from .errors import InvalidSettings

MARGIN_MIN_MM = 0.0
MARGIN_MAX_MM = 50.0
DEFAULT_FILENAME = "images.pdf"

class PageSizeMode(str, Enum):
    A4 = "A4"
    LETTER = "LETTER"
    FIT_IMAGE = "FIT_IMAGE"  # ページ = 画像サイズ

class Orientation(str, Enum):
    PORTRAIT = "p"
    LANDSCAPE = "l"
    AUTO = "auto"  # 画像の縦横比で決める

class ImageFit(str, Enum):
    CONTAIN = "CONTAIN"  # 縦横比維持で余白内に収める
    FILL = "FILL"        # 余白内いっぱいに引き伸ばす

def _coerce_enum(enum_cls, value: Any, field: str):
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        v = value.strip()
        for member in enum_cls:
            if v.lower() in (member.name.lower(), member.value.lower()):
                return member
    choices = ", ".join(m.name for m in enum_cls)
    raise InvalidSettings(f"{field} が不正です: {value!r}（{choices}）")

@dataclass(frozen=True)
class ImageDescriptor:
    pixel_width: int
    pixel_height: int
    mime_type: str
    byte_handle: Any = None  # 描画側だけが参照する（本リポジトリではファイルパス）
    display_name: str = ""

@dataclass(frozen=True)
class PdfSettings:
    page_size: PageSizeMode = PageSizeMode.A4
    orientation: Orientation = Orientation.AUTO
    margin_mm: float = 10.0
    image_fit: ImageFit = ImageFit.CONTAIN
    filename: str = DEFAULT_FILENAME

    def __post_init__(self):
        # frozen なので object.__setattr__ で正規化する
        object.__setattr__(self, "page_size", _coerce_enum(PageSizeMode, self.page_size, "page_size"))
        object.__setattr__(self, "orientation", _coerce_enum(Orientation, self.orientation, "orientation"))
        object.__setattr__(self, "image_fit", _coerce_enum(ImageFit, self.image_fit, "image_fit"))
        try:
            margin = float(self.margin_mm)
        except (TypeError, ValueError):
            raise InvalidSettings(f"margin_mm が数値ではありません: {self.margin_mm!r}")
        if not (MARGIN_MIN_MM <= margin <= MARGIN_MAX_MM):
            raise InvalidSettings(f"margin_mm は {MARGIN_MIN_MM:g}〜{MARGIN_MAX_MM:g} mm の範囲で指定してください: {margin:g}")
        object.__setattr__(self, "margin_mm", margin)
        if self.filename is None:
            object.__setattr__(self, "filename", "")

def settings_from_dict(data: Mapping[str, Any]) -> PdfSettings:
    """manifest / QSettings 由来の dict から PdfSettings を作る。未指定はデフォルト。"""
    d = PdfSettings()
    return PdfSettings(
        page_size=data.get("page_size", d.page_size),
        orientation=data.get("orientation", d.orientation),
        margin_mm=data.get("margin_mm", d.margin_mm),
        image_fit=data.get("image_fit", d.image_fit),
        filename=data.get("filename", d.filename),
    )

def settings_to_dict(settings: PdfSettings) -> dict:
    return {
        "page_size": settings.page_size.value,
        "orientation": settings.orientation.value,
        "margin_mm": settings.margin_mm,
        "image_fit": settings.image_fit.value,
        "filename": settings.filename,
    }

@dataclass(frozen=True)
class PageLayout:
    page_width_mm: float
    page_height_mm: float
    image_x: float
    image_y: float
    image_width_mm: float
    image_height_mm: float
    source_image_index: int
    orientation: Orientation = Orientation.PORTRAIT  # 実際に採用した向き（情報用）
