from __future__ import annotations
from dataclasses import dataclass
from PySide6.QtCore import QObject, Signal, Slot

from photobinder.core.types import ImageDescriptor, PdfSettings
from photobinder.core.engine import generate_pdf
from photobinder.core.errors import UserFacingError, Canceled, InvalidDimension

@dataclass
class Job:
    images: list[ImageDescriptor]
    settings: PdfSettings
    output_dir: str

class Worker(QObject):
    progress = Signal(int, int)
    log = Signal(str)
    finished = Signal(str)
    failed = Signal(str)
    canceled = Signal(str)

    def __init__(self, job: Job):
        super().__init__()
        self.job = job
        self._cancel = False

    @Slot()
    def run(self):
        def cancel_cb() -> bool:
            return self._cancel

        def progress_cb(cur: int, total: int):
            self.progress.emit(cur, total)

        def log_cb(msg: str):
            self.log.emit(msg)

        try:
            out = generate_pdf(
                self.job.images,
                self.job.settings,
                self.job.output_dir,
                progress_cb=progress_cb,
                cancel_cb=cancel_cb,
                log_cb=log_cb,
            )
            self.finished.emit(out or "")
        except Canceled as e:
            self.canceled.emit(str(e))
        except UserFacingError as e:
            self.failed.emit(str(e))
        except InvalidDimension as e:
            self.failed.emit(f"画像サイズの取得が完了していません: {e}")
        except Exception as e:
            self.failed.emit(f"PDF生成に失敗しました。もう一度お試しください。({e})")

    def cancel(self):
        self._cancel = True
