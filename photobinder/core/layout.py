from __future__ import annotations
from typing import Dict, List, Sequence, Tuple

from .types import ImageDescriptor, ImageFit, Orientation, PageLayout, PageSizeMode, PdfSettings
from .errors import InvalidDimension, InvalidSettings

MM_PER_INCH = 25.4
# FIT_IMAGE のときは 96dpi 想定でピクセル→mm 換算する
ASSUMED_DPI = 96
PX_TO_MM = MM_PER_INCH / ASSUMED_DPI  # ≈ 0.264583

# 縦向き（幅 < 高さ）の公称サイズ in mm
PAGE_SIZES_MM: Dict[PageSizeMode, Tuple[float, float]] = {
    PageSizeMode.A4: (210.0, 297.0),
    PageSizeMode.LETTER: (215.9, 279.4),
}

def px_to_mm(px: float) -> float:
    return px * MM_PER_INCH / ASSUMED_DPI

def nominal_page_size_mm(image: ImageDescriptor, page_size: PageSizeMode) -> Tuple[float, float]:
    if page_size == PageSizeMode.FIT_IMAGE:
        return (px_to_mm(image.pixel_width), px_to_mm(image.pixel_height))
    return PAGE_SIZES_MM[page_size]

def resolve_orientation(image: ImageDescriptor, orientation: Orientation) -> Orientation:
    if orientation == Orientation.AUTO:
        return Orientation.LANDSCAPE if image.pixel_width > image.pixel_height else Orientation.PORTRAIT
    return orientation

def fit_contain(img_w: int, img_h: int, x0: float, y0: float, box_w: float, box_h: float) -> Tuple[float, float, float, float]:
    """縦横比維持で box に収め、余った軸だけ中央寄せする。戻り値は (x, y, w, h)。"""
    image_ratio = img_w / img_h
    area_ratio = box_w / box_h
    if image_ratio > area_ratio:
        # 横長：幅いっぱい、上下を中央寄せ
        h = box_w / image_ratio
        return (x0, y0 + (box_h - h) / 2, box_w, h)
    # 縦長（同率を含む）：高さいっぱい、左右を中央寄せ
    w = box_h * image_ratio
    return (x0 + (box_w - w) / 2, y0, w, box_h)

def compute_page_layout(image: ImageDescriptor, settings: PdfSettings, index: int) -> PageLayout:
    if image.pixel_width <= 0 or image.pixel_height <= 0:
        raise InvalidDimension(
            f"画像 {index} のサイズが不正です: {image.pixel_width}x{image.pixel_height}"
            "（寸法取得前の画像は渡さないこと）"
        )

    page_w, page_h = nominal_page_size_mm(image, settings.page_size)

    if settings.page_size == PageSizeMode.FIT_IMAGE:
        # ページ＝画像。向きは情報のみ、余白と imageFit は無視してページ全面に置く
        orientation = Orientation.LANDSCAPE if page_w > page_h else Orientation.PORTRAIT
        return PageLayout(
            page_width_mm=page_w,
            page_height_mm=page_h,
            image_x=0.0,
            image_y=0.0,
            image_width_mm=page_w,
            image_height_mm=page_h,
            source_image_index=index,
            orientation=orientation,
        )

    orientation = resolve_orientation(image, settings.orientation)
    if orientation == Orientation.LANDSCAPE:
        page_w, page_h = page_h, page_w

    margin = settings.margin_mm
    if 2 * margin >= min(page_w, page_h):
        raise InvalidSettings(f"余白 {margin:g}mm が大きすぎます（ページ {page_w:g}x{page_h:g}mm）")
    draw_w = page_w - 2 * margin
    draw_h = page_h - 2 * margin

    if settings.image_fit == ImageFit.FILL:
        x, y, w, h = margin, margin, draw_w, draw_h
    else:
        x, y, w, h = fit_contain(image.pixel_width, image.pixel_height, margin, margin, draw_w, draw_h)

    return PageLayout(
        page_width_mm=page_w,
        page_height_mm=page_h,
        image_x=x,
        image_y=y,
        image_width_mm=w,
        image_height_mm=h,
        source_image_index=index,
        orientation=orientation,
    )

def compute_layout(images: Sequence[ImageDescriptor], settings: PdfSettings) -> List[PageLayout]:
    """1画像＝1ページ。入力順のまま PageLayout を返す（空なら空）。"""
    return [compute_page_layout(img, settings, idx) for idx, img in enumerate(images)]
