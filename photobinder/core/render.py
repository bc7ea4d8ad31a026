from __future__ import annotations
import io
from typing import Callable, Optional, Sequence, Tuple
import fitz  # PyMuPDF
from PIL import Image, ImageOps

from .types import ImageDescriptor, PageLayout
from .errors import UserFacingError, Canceled, is_pdf_native
from .layout import MM_PER_INCH

PT_PER_INCH = 72.0
EXIF_ORIENTATION_TAG = 0x0112
# プレビュー用に保持する画像の長辺上限
PREVIEW_MAX_SIDE_PX = 1600

def mm_to_pt(mm: float) -> float:
    return mm * PT_PER_INCH / MM_PER_INCH

def layout_rect_pt(layout: PageLayout) -> fitz.Rect:
    """PageLayout の画像矩形（mm, 左上原点）を PDF の点単位 Rect にする"""
    x0 = mm_to_pt(layout.image_x)
    y0 = mm_to_pt(layout.image_y)
    return fitz.Rect(x0, y0, x0 + mm_to_pt(layout.image_width_mm), y0 + mm_to_pt(layout.image_height_mm))

def read_image_bytes(image: ImageDescriptor) -> bytes:
    handle = image.byte_handle
    if isinstance(handle, (bytes, bytearray)):
        return bytes(handle)
    if not handle:
        raise UserFacingError(f"画像データがありません: {image.display_name}")
    try:
        with open(handle, "rb") as f:
            return f.read()
    except OSError:
        raise UserFacingError(f"画像を読み込めません: {handle}")

def _exif_orientation(pil_img: Image.Image) -> int:
    try:
        return int(pil_img.getexif().get(EXIF_ORIENTATION_TAG, 1))
    except Exception:
        return 1

def open_image_upright(data: bytes) -> Image.Image:
    im = Image.open(io.BytesIO(data))
    im = ImageOps.exif_transpose(im)  # EXIF回転反映
    return im

def _prepare_image_for_png(pil_img: Image.Image) -> Image.Image:
    if pil_img.mode in ("RGB", "RGBA", "L", "LA", "P"):
        return pil_img
    return pil_img.convert("RGBA" if "A" in pil_img.getbands() else "RGB")

def prepare_image_stream(image: ImageDescriptor) -> Tuple[bytes, str]:
    """PDFに埋め込むバイト列と形式("jpeg"/"png")を返す。

    JPEG/PNG はそのまま（無劣化）。WebP や EXIF 回転付きの画像は
    Pillow で正立させて PNG に変換する。
    """
    data = read_image_bytes(image)
    try:
        with Image.open(io.BytesIO(data)) as probe:
            needs_rotate = _exif_orientation(probe) != 1
    except Exception:
        raise UserFacingError(f"画像として読み込めません: {image.display_name or image.byte_handle}")

    if is_pdf_native(image.mime_type) and not needs_rotate:
        return data, "jpeg" if image.mime_type == "image/jpeg" else "png"

    im = _prepare_image_for_png(open_image_upright(data))
    buf = io.BytesIO()
    im.save(buf, format="PNG", optimize=True)
    return buf.getvalue(), "png"

def render_pages(
    doc_out: fitz.Document,
    images: Sequence[ImageDescriptor],
    layouts: Sequence[PageLayout],
    progress_cb: Optional[Callable[[int, int], None]] = None,
    cancel_cb: Optional[Callable[[], bool]] = None,
    log_cb: Optional[Callable[[str], None]] = None,
) -> None:
    """layouts 1件ごとにページを追加して画像を配置する。1ページ目も同じ扱い。"""
    total = len(layouts)

    def _log(msg: str):
        if log_cb:
            log_cb(msg)

    for i, lay in enumerate(layouts, start=1):
        if cancel_cb and cancel_cb():
            raise Canceled()

        image = images[lay.source_image_index]
        stream, kind = prepare_image_stream(image)
        page = doc_out.new_page(width=mm_to_pt(lay.page_width_mm), height=mm_to_pt(lay.page_height_mm))
        # FILL は縦横比を崩して矩形いっぱいに描く
        page.insert_image(layout_rect_pt(lay), stream=stream, keep_proportion=False)

        if progress_cb:
            progress_cb(i, total)
        if i == 1 or i == total or i % 10 == 0:
            _log(f"{i}/{total} ページを処理しました（{kind}, {lay.page_width_mm:.1f}x{lay.page_height_mm:.1f}mm）")

def load_preview_source(image: ImageDescriptor, max_side: int = PREVIEW_MAX_SIDE_PX) -> Image.Image:
    """プレビュー用に正立・縮小した画像（RGB/RGBA）。GUI側でキャッシュして使い回す。"""
    im = open_image_upright(read_image_bytes(image))
    if im.mode == "P":
        im = im.convert("RGBA")
    im = im.convert("RGBA" if im.mode in ("RGBA", "LA") else "RGB")
    im.thumbnail((max_side, max_side))
    return im

def render_page_preview(
    image: ImageDescriptor,
    layout: PageLayout,
    dpi: int = 60,
    source: Optional[Image.Image] = None,
) -> Image.Image:
    """プレビュー用：白いページに画像を layout 通りに貼った画像"""
    scale = dpi / MM_PER_INCH
    w = max(1, int(round(layout.page_width_mm * scale)))
    h = max(1, int(round(layout.page_height_mm * scale)))
    canvas = Image.new("RGB", (w, h), "white")

    im = source if source is not None else load_preview_source(image)
    iw = max(1, int(round(layout.image_width_mm * scale)))
    ih = max(1, int(round(layout.image_height_mm * scale)))
    ix = int(round(layout.image_x * scale))
    iy = int(round(layout.image_y * scale))

    if im.mode == "RGBA":
        im = im.resize((iw, ih))
        canvas.paste(im, (ix, iy), mask=im.split()[-1])
    else:
        canvas.paste(im.convert("RGB").resize((iw, ih)), (ix, iy))
    return canvas
