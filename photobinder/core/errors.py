import os
from typing import Optional

# 1ファイルあたりの上限（アップロード時点で弾く）
MAX_IMAGE_BYTES = 20 * 1024 * 1024

_MIME_BY_EXT = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}

# PDF に直接埋め込めるのはこの2つだけ
PDF_NATIVE_MIME_TYPES = ("image/jpeg", "image/png")

class UserFacingError(Exception):
    """UI/CLIでそのまま表示してよいエラー"""

class Canceled(UserFacingError):
    """ユーザーが出力を中断した"""

    def __init__(self, message: str = "中断しました。"):
        super().__init__(message)

class InvalidDimension(ValueError):
    """ピクセル寸法が0以下の画像がレイアウトに渡された（呼び出し側の契約違反）"""

class InvalidSettings(ValueError):
    """PdfSettings の値が範囲外・不正"""

def is_heic(path: str) -> bool:
    p = path.lower()
    return p.endswith(".heic") or p.endswith(".heif")

def mime_type_for(path: str) -> Optional[str]:
    return _MIME_BY_EXT.get(os.path.splitext(path)[1].lower())

def is_supported_image(path: str) -> bool:
    return mime_type_for(path) is not None

def is_pdf_native(mime_type: str) -> bool:
    return mime_type in PDF_NATIVE_MIME_TYPES
