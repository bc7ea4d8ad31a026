from __future__ import annotations
import json, os
from typing import Callable, Optional, Sequence
import fitz  # PyMuPDF
from PIL import Image, ImageOps

from .types import ImageDescriptor, PdfSettings, DEFAULT_FILENAME, settings_from_dict
from .errors import UserFacingError, MAX_IMAGE_BYTES, is_heic, mime_type_for
from .layout import compute_layout
from .render import render_pages

def probe_image(path: str) -> ImageDescriptor:
    """ファイルを検証し、EXIF回転を反映した寸法で ImageDescriptor を作る。"""
    if not path or not os.path.isfile(path):
        raise UserFacingError(f"ファイルが存在しません: {path}")

    if is_heic(path):
        raise UserFacingError("HEIC(.heic/.heif) は未対応です。JPG/PNGに変換してから追加してください。")

    mime = mime_type_for(path)
    if mime is None:
        raise UserFacingError(f"画像形式はJPG/PNG/WebPのみ対応です: {path}")

    size = os.path.getsize(path)
    if size > MAX_IMAGE_BYTES:
        raise UserFacingError(
            f"ファイルサイズが上限（{MAX_IMAGE_BYTES // (1024 * 1024)}MB）を超えています: {path} ({size / (1024 * 1024):.1f}MB)"
        )

    try:
        with Image.open(path) as im:
            w, h = ImageOps.exif_transpose(im).size
    except Exception:
        raise UserFacingError(f"画像を開けません: {path}")
    if w <= 0 or h <= 0:
        raise UserFacingError(f"画像サイズを取得できません: {path}")

    return ImageDescriptor(
        pixel_width=w,
        pixel_height=h,
        mime_type=mime,
        byte_handle=path,
        display_name=os.path.basename(path),
    )

def validate_and_build_images(paths: Sequence[str]) -> list[ImageDescriptor]:
    return [probe_image(p) for p in paths]

def resolve_output_filename(name: Optional[str]) -> str:
    n = (name or "").replace("`", "").strip()
    n = os.path.basename(n.replace("\\", "/")).strip()
    n = n.lstrip(".")
    if not n or n.lower() == "pdf":
        return DEFAULT_FILENAME
    if not n.lower().endswith(".pdf"):
        n += ".pdf"
    return n

def generate_pdf(
    images: Sequence[ImageDescriptor],
    settings: PdfSettings,
    output_dir: str,
    progress_cb: Optional[Callable[[int, int], None]] = None,
    cancel_cb: Optional[Callable[[], bool]] = None,
    log_cb: Optional[Callable[[str], None]] = None,
) -> Optional[str]:
    """PDFを書き出して出力パスを返す。画像が0枚なら何もしない（None）。"""
    def _log(msg: str):
        if log_cb:
            log_cb(msg)

    if not images:
        _log("画像がないため出力しません")
        return None

    # レンダリング前に全ページのレイアウトを確定させる（InvalidDimension はそのまま上げる）
    layouts = compute_layout(images, settings)

    out_dir = os.path.abspath(output_dir or os.getcwd())
    os.makedirs(out_dir, exist_ok=True)
    output_pdf = os.path.join(out_dir, resolve_output_filename(settings.filename))
    tmp_path = os.path.join(out_dir, f".tmp_{os.path.basename(output_pdf)}")

    _log(
        f"page_size={settings.page_size.name}, orientation={settings.orientation.name}, "
        f"margin={settings.margin_mm:g}mm, fit={settings.image_fit.name}, pages={len(layouts)}"
    )

    doc_out = fitz.open()
    saved = False
    try:
        render_pages(doc_out, images, layouts, progress_cb=progress_cb, cancel_cb=cancel_cb, log_cb=log_cb)
        doc_out.save(tmp_path)
        doc_out.close()
        os.replace(tmp_path, output_pdf)
        saved = True
    except UserFacingError:
        raise
    except OSError as e:
        raise UserFacingError(f"PDFを保存できません: {output_pdf} ({e})")
    except Exception as e:
        raise UserFacingError(f"PDF生成中にエラーが発生しました: {e}")
    finally:
        if not doc_out.is_closed:
            doc_out.close()
        if not saved and os.path.exists(tmp_path):
            os.remove(tmp_path)
    _log(f"保存しました: {output_pdf}")
    return output_pdf

def _load_manifest(manifest_path: str) -> dict:
    try:
        with open(manifest_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError:
        raise UserFacingError(f"manifest を開けません: {manifest_path}")
    except json.JSONDecodeError as e:
        raise UserFacingError(f"manifest のJSONが不正です: {e}")

    if not isinstance(data, dict):
        raise UserFacingError("manifest はJSONオブジェクトで記述してください")
    images = data.get("images", [])
    if not isinstance(images, list) or not all(isinstance(p, str) for p in images):
        raise UserFacingError("manifest の images はファイルパス（文字列）の配列で指定してください")
    if not isinstance(data.get("settings", {}), dict):
        raise UserFacingError("manifest の settings はJSONオブジェクトで指定してください")
    output_dir = data.get("output_dir")
    if output_dir is not None and not isinstance(output_dir, str):
        raise UserFacingError("manifest の output_dir は文字列で指定してください")
    return data

def run_job_from_manifest(manifest_path: str) -> Optional[str]:
    data = _load_manifest(manifest_path)

    base_dir = os.path.dirname(os.path.abspath(manifest_path))
    paths = [p if os.path.isabs(p) else os.path.join(base_dir, p) for p in data.get("images", [])]
    images = validate_and_build_images(paths)
    settings = settings_from_dict(data.get("settings", {}))
    output_dir = data.get("output_dir") or base_dir
    if not os.path.isabs(output_dir):
        output_dir = os.path.join(base_dir, output_dir)
    return generate_pdf(images, settings, output_dir)
