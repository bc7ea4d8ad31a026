from __future__ import annotations
import json, os, subprocess, sys
from typing import Dict, List

from PIL import Image

from PySide6.QtCore import Qt, QSettings, QThread
from PySide6.QtGui import QPixmap, QImage, QIcon
from PySide6.QtWidgets import (
    QApplication, QMainWindow, QWidget, QHBoxLayout, QVBoxLayout, QPushButton,
    QFileDialog, QLabel, QPlainTextEdit, QMessageBox, QScrollArea, QComboBox,
    QRadioButton, QButtonGroup, QProgressBar, QSplitter, QAbstractItemView,
    QLineEdit, QSlider, QListWidgetItem, QGroupBox, QFormLayout
)

from photobinder.core.types import (
    ImageDescriptor, PdfSettings, PageSizeMode, Orientation, ImageFit,
    MARGIN_MIN_MM, MARGIN_MAX_MM, settings_from_dict, settings_to_dict,
)
from photobinder.core.errors import UserFacingError, InvalidSettings, InvalidDimension, is_heic
from photobinder.core.engine import probe_image
from photobinder.core.layout import compute_page_layout
from photobinder.core.render import render_page_preview, load_preview_source
from photobinder.gui.widgets import ImageDropList
from photobinder.gui.worker import Worker, Job

APP_TITLE = "PhotoBinder"
ORG_NAME = "PhotoBinder"
APP_NAME = "PhotoBinder"
THUMB_PX = 64

PAGE_SIZE_LABELS = [
    (PageSizeMode.A4, "A4"),
    (PageSizeMode.LETTER, "Letter"),
    (PageSizeMode.FIT_IMAGE, "画像サイズに合わせる"),
]
ORIENTATION_LABELS = [
    (Orientation.AUTO, "自動"),
    (Orientation.PORTRAIT, "縦"),
    (Orientation.LANDSCAPE, "横"),
]
FIT_LABELS = [
    (ImageFit.CONTAIN, "ページに収める（印刷向け）"),
    (ImageFit.FILL, "引き伸ばして埋める"),
]

def pil_to_qpixmap(pil_img) -> QPixmap:
    rgb = pil_img.convert("RGB")
    w, h = rgb.size
    data = rgb.tobytes("raw", "RGB")
    qimg = QImage(data, w, h, 3 * w, QImage.Format.Format_RGB888)
    return QPixmap.fromImage(qimg.copy())

class MainWindow(QMainWindow):
    def __init__(self):
        super().__init__()
        self.setWindowTitle(APP_TITLE)

        self.qsettings = QSettings(ORG_NAME, APP_NAME)
        self.images: List[ImageDescriptor] = []
        # 画像ごとのサムネイル。追加時に作り、削除・全消去で解放する
        self._thumbs: Dict[str, QIcon] = {}
        # プレビュー用の正立・縮小済み画像。サムネイルと同じく削除時に解放する
        self._preview_sources: Dict[str, Image.Image] = {}
        self.last_output_pdf = ""
        self._last_output_dir = ""

        self._thread: QThread | None = None
        self._worker: Worker | None = None

        self._build_ui()
        self._load_settings()
        self._refresh_list()
        self._update_preview()

    # ---- UI ----
    def _build_ui(self):
        root = QWidget()
        self.setCentralWidget(root)
        layout = QVBoxLayout(root)

        splitter = QSplitter(Qt.Orientation.Horizontal)
        layout.addWidget(splitter, stretch=1)

        # 左：画像リスト
        left = QWidget()
        left_layout = QVBoxLayout(left)

        self.listw = ImageDropList()
        self.listw.setSelectionMode(QAbstractItemView.SelectionMode.ExtendedSelection)
        self.listw.files_dropped.connect(self.on_files_dropped)
        self.listw.items_reordered.connect(self.on_list_reordered)
        self.listw.delete_requested.connect(self.on_delete_clicked)
        self.listw.currentRowChanged.connect(lambda _: self._update_preview())
        left_layout.addWidget(self.listw, stretch=1)

        btn_row1 = QHBoxLayout()
        self.btn_add = QPushButton("追加…")
        self.btn_del = QPushButton("削除")
        self.btn_clear = QPushButton("全消去")
        btn_row1.addWidget(self.btn_add)
        btn_row1.addWidget(self.btn_del)
        btn_row1.addWidget(self.btn_clear)
        left_layout.addLayout(btn_row1)

        btn_row2 = QHBoxLayout()
        self.btn_up = QPushButton("前へ")
        self.btn_down = QPushButton("後へ")
        btn_row2.addWidget(self.btn_up)
        btn_row2.addWidget(self.btn_down)
        left_layout.addLayout(btn_row2)

        self.lbl_note = QLabel("※ JPG / PNG / WebP（1ファイル20MBまで）。リストの順番がページ順になります。")
        self.lbl_note.setWordWrap(True)
        self.lbl_note.setStyleSheet("color: #666;")
        left_layout.addWidget(self.lbl_note)
        splitter.addWidget(left)

        # 中央：ページプレビュー
        center = QWidget()
        center_layout = QVBoxLayout(center)
        self.preview_scroll = QScrollArea()
        self.preview_scroll.setWidgetResizable(True)
        self.preview_label = QLabel("プレビューなし")
        self.preview_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.preview_label.setStyleSheet("color: #ddd; background: #111;")
        self.preview_scroll.setWidget(self.preview_label)
        center_layout.addWidget(self.preview_scroll, stretch=1)

        nav = QHBoxLayout()
        self.lbl_page = QLabel("ページ 0 / 0")
        nav.addStretch(1)
        nav.addWidget(self.lbl_page)
        center_layout.addLayout(nav)
        splitter.addWidget(center)

        # 右：設定と出力
        right = QWidget()
        right_layout = QVBoxLayout(right)
        splitter.addWidget(right)

        splitter.setStretchFactor(0, 1)
        splitter.setStretchFactor(1, 2)
        splitter.setStretchFactor(2, 1)
        splitter.setSizes([300, 560, 340])

        box = QGroupBox("PDF設定")
        form = QFormLayout(box)

        self.ed_filename = QLineEdit()
        self.ed_filename.setPlaceholderText("document.pdf")
        form.addRow("ファイル名", self.ed_filename)

        size_row = QVBoxLayout()
        self.size_group = QButtonGroup(self)
        self.rb_sizes: Dict[PageSizeMode, QRadioButton] = {}
        for mode, label in PAGE_SIZE_LABELS:
            rb = QRadioButton(label)
            self.size_group.addButton(rb)
            self.rb_sizes[mode] = rb
            size_row.addWidget(rb)
        self.rb_sizes[PageSizeMode.A4].setChecked(True)
        form.addRow("用紙サイズ", size_row)

        self.cmb_orientation = QComboBox()
        for value, label in ORIENTATION_LABELS:
            self.cmb_orientation.addItem(label, value.value)
        self.lbl_orientation = QLabel("向き")
        form.addRow(self.lbl_orientation, self.cmb_orientation)

        self.cmb_fit = QComboBox()
        for value, label in FIT_LABELS:
            self.cmb_fit.addItem(label, value.value)
        self.lbl_fit = QLabel("画像の配置")
        form.addRow(self.lbl_fit, self.cmb_fit)

        margin_row = QHBoxLayout()
        self.sld_margin = QSlider(Qt.Orientation.Horizontal)
        self.sld_margin.setRange(int(MARGIN_MIN_MM), int(MARGIN_MAX_MM))
        self.sld_margin.setSingleStep(1)
        self.sld_margin.setValue(10)
        self.lbl_margin_value = QLabel("10mm")
        margin_row.addWidget(self.sld_margin, stretch=1)
        margin_row.addWidget(self.lbl_margin_value)
        self.margin_widget = QWidget()
        self.margin_widget.setLayout(margin_row)
        self.lbl_margin = QLabel("余白")
        form.addRow(self.lbl_margin, self.margin_widget)

        right_layout.addWidget(box)

        action_row = QHBoxLayout()
        self.btn_generate = QPushButton("PDF出力…")
        self.btn_cancel = QPushButton("中断")
        self.btn_open_folder = QPushButton("保存先を開く")
        self.btn_open_folder.setEnabled(False)
        action_row.addWidget(self.btn_generate)
        action_row.addWidget(self.btn_cancel)
        action_row.addWidget(self.btn_open_folder)
        action_row.addStretch(1)
        right_layout.addLayout(action_row)

        self.pbar = QProgressBar()
        self.pbar.setValue(0)
        right_layout.addWidget(self.pbar)

        self.log = QPlainTextEdit()
        self.log.setReadOnly(True)
        self.log.setMaximumBlockCount(2000)
        right_layout.addWidget(self.log, stretch=1)

        # signals
        self.btn_add.clicked.connect(self.on_add_clicked)
        self.btn_del.clicked.connect(self.on_delete_clicked)
        self.btn_clear.clicked.connect(self.on_clear_clicked)
        self.btn_up.clicked.connect(lambda: self.on_move(-1))
        self.btn_down.clicked.connect(lambda: self.on_move(+1))
        self.size_group.buttonToggled.connect(lambda *_: self.on_settings_changed())
        self.cmb_orientation.currentIndexChanged.connect(lambda _: self.on_settings_changed())
        self.cmb_fit.currentIndexChanged.connect(lambda _: self.on_settings_changed())
        self.sld_margin.valueChanged.connect(self.on_margin_changed)
        self.btn_generate.clicked.connect(self.on_generate_clicked)
        self.btn_cancel.clicked.connect(self.on_cancel_clicked)
        self.btn_open_folder.clicked.connect(self.on_open_folder_clicked)

    # ---- 設定 ----
    def _load_settings(self):
        last_dir = self.qsettings.value("last_output_dir", "")
        self._last_output_dir = last_dir if isinstance(last_dir, str) else ""
        raw = self.qsettings.value("pdf_settings", "")
        settings = PdfSettings()
        if isinstance(raw, str) and raw:
            try:
                settings = settings_from_dict(json.loads(raw))
            except (ValueError, InvalidSettings) as e:
                self._append_log(f"[WARN] 保存済み設定を読み込めません: {e}")
        self._apply_settings_to_ui(settings)

    def _save_settings(self):
        if self._last_output_dir:
            self.qsettings.setValue("last_output_dir", self._last_output_dir)
        self.qsettings.setValue("pdf_settings", json.dumps(settings_to_dict(self._current_settings())))

    def _apply_settings_to_ui(self, s: PdfSettings):
        self.ed_filename.setText(s.filename)
        self.rb_sizes[s.page_size].setChecked(True)
        self.cmb_orientation.setCurrentIndex(self.cmb_orientation.findData(s.orientation.value))
        self.cmb_fit.setCurrentIndex(self.cmb_fit.findData(s.image_fit.value))
        self.sld_margin.setValue(int(round(s.margin_mm)))
        self._update_settings_visibility()

    def _current_settings(self) -> PdfSettings:
        page_size = next(m for m, rb in self.rb_sizes.items() if rb.isChecked())
        return PdfSettings(
            page_size=page_size,
            orientation=self.cmb_orientation.currentData(),
            margin_mm=self.sld_margin.value(),
            image_fit=self.cmb_fit.currentData(),
            filename=self.ed_filename.text(),
        )

    def _update_settings_visibility(self):
        # 画像サイズモードでは向き・配置・余白は使われない
        show = not self.rb_sizes[PageSizeMode.FIT_IMAGE].isChecked()
        for w in (self.lbl_orientation, self.cmb_orientation, self.lbl_fit, self.cmb_fit,
                  self.lbl_margin, self.margin_widget):
            w.setVisible(show)

    def on_settings_changed(self):
        self._update_settings_visibility()
        self._update_preview()

    def on_margin_changed(self, value: int):
        self.lbl_margin_value.setText(f"{value}mm")
        self._update_preview()

    def closeEvent(self, event):
        self._save_settings()
        self._release_thumbs()
        super().closeEvent(event)

    # ---- リスト ----
    def _thumb_for(self, img: ImageDescriptor) -> QIcon:
        key = str(img.byte_handle)
        icon = self._thumbs.get(key)
        if icon is None:
            pix = QPixmap(key)
            if not pix.isNull():
                pix = pix.scaled(THUMB_PX, THUMB_PX, Qt.AspectRatioMode.KeepAspectRatio,
                                 Qt.TransformationMode.SmoothTransformation)
            icon = QIcon(pix)
            self._thumbs[key] = icon
        return icon

    def _release_thumb(self, img: ImageDescriptor):
        key = str(img.byte_handle)
        if not any(str(i.byte_handle) == key for i in self.images):
            self._thumbs.pop(key, None)
            self._preview_sources.pop(key, None)

    def _release_thumbs(self):
        self._thumbs.clear()
        self._preview_sources.clear()

    def _preview_source_for(self, img: ImageDescriptor) -> Image.Image:
        key = str(img.byte_handle)
        src = self._preview_sources.get(key)
        if src is None:
            src = load_preview_source(img)
            self._preview_sources[key] = src
        return src

    def _refresh_list(self, select_row: int = -1):
        self.listw.blockSignals(True)
        self.listw.clear()
        for img in self.images:
            item = QListWidgetItem(self._thumb_for(img), f"{img.display_name}  ({img.pixel_width}x{img.pixel_height})")
            item.setData(Qt.ItemDataRole.UserRole, img)
            self.listw.addItem(item)
        self.listw.blockSignals(False)
        if 0 <= select_row < self.listw.count():
            self.listw.setCurrentRow(select_row)
        self._update_preview()

    def _sync_images_from_list(self):
        new_images: List[ImageDescriptor] = []
        for i in range(self.listw.count()):
            data = self.listw.item(i).data(Qt.ItemDataRole.UserRole)
            if isinstance(data, ImageDescriptor):
                new_images.append(data)
        self.images = new_images

    def on_list_reordered(self):
        self._sync_images_from_list()
        self._update_preview()

    def _append_log(self, msg: str):
        self.log.appendPlainText(msg)

    def _error(self, title: str, msg: str):
        self._append_log(f"[ERROR] {msg}")
        QMessageBox.critical(self, title, msg)

    def _warn(self, title: str, msg: str):
        self._append_log(f"[WARN] {msg}")
        QMessageBox.warning(self, title, msg)

    def _probe_paths(self, paths: List[str]) -> List[ImageDescriptor]:
        new_images: List[ImageDescriptor] = []
        errors: List[str] = []
        for p in paths:
            try:
                new_images.append(probe_image(p))
            except UserFacingError as e:
                errors.append(str(e))
        if errors:
            self._warn("追加できないファイル", "\n".join(errors))
        return new_images

    def _insert_paths(self, paths: List[str], insert_row: int):
        paths = sorted(paths, key=lambda x: os.path.basename(x))  # 複数追加は名前順
        new_images = self._probe_paths(paths)
        if not new_images:
            return
        insert_row = max(0, min(insert_row, len(self.images)))
        self.images[insert_row:insert_row] = new_images
        self._append_log(f"[INFO] {len(new_images)} 枚追加（計 {len(self.images)} 枚）")
        self._refresh_list(select_row=insert_row)

    def on_files_dropped(self, paths: List[str], rejected: List[str], insert_row: int):
        if rejected:
            heic = [p for p in rejected if is_heic(p)]
            msg = "未対応のファイル形式です:\n" + "\n".join(os.path.basename(p) for p in rejected)
            if heic:
                msg += "\nHEIC(.heic/.heif) はJPG/PNGに変換してから追加してください。"
            self._warn("追加できないファイル", msg)
        if paths:
            self._insert_paths(paths, insert_row)

    def on_add_clicked(self):
        paths, _ = QFileDialog.getOpenFileNames(
            self, "画像を追加", "",
            "Images (*.png *.jpg *.jpeg *.webp);;All files (*.*)"
        )
        if paths:
            self._insert_paths(paths, len(self.images))

    def on_delete_clicked(self):
        rows = sorted({i.row() for i in self.listw.selectedIndexes()}, reverse=True)
        if not rows:
            return
        if len(rows) > 1:
            resp = QMessageBox.question(
                self,
                "削除",
                f"{len(rows)} 件削除しますか？",
                QMessageBox.StandardButton.Yes | QMessageBox.StandardButton.No,
                QMessageBox.StandardButton.No,
            )
            if resp != QMessageBox.StandardButton.Yes:
                return
        for r in rows:
            if 0 <= r < len(self.images):
                removed = self.images.pop(r)
                self._release_thumb(removed)
        self._refresh_list(select_row=min(rows[-1], len(self.images) - 1))

    def on_clear_clicked(self):
        if not self.images:
            return
        self.images = []
        self._release_thumbs()
        self._refresh_list()

    def on_move(self, delta: int):
        rows = sorted({i.row() for i in self.listw.selectedIndexes()})
        if len(rows) != 1:
            self._warn("移動", "移動は1件選択のときに使用してください。")
            return
        r = rows[0]
        nr = r + delta
        if not (0 <= nr < len(self.images)):
            return
        self.images[r], self.images[nr] = self.images[nr], self.images[r]
        self._refresh_list(select_row=nr)

    # ---- プレビュー ----
    def _preview_dpi(self, page_w_mm: float, page_h_mm: float) -> int:
        viewport = self.preview_scroll.viewport()
        w = max(200, viewport.width() - 24)
        h = max(200, viewport.height() - 24)
        dpi = min(w / (page_w_mm / 25.4), h / (page_h_mm / 25.4))
        return max(10, int(dpi))

    def _update_preview(self):
        total = len(self.images)
        if total == 0:
            self.preview_label.setPixmap(QPixmap())
            self.preview_label.setText("プレビューなし")
            self.lbl_page.setText("ページ 0 / 0")
            return
        row = self.listw.currentRow()
        idx = row if 0 <= row < total else 0
        self.lbl_page.setText(f"ページ {idx + 1} / {total}")
        try:
            settings = self._current_settings()
            lay = compute_page_layout(self.images[idx], settings, idx)
            img = self.images[idx]
            pil = render_page_preview(
                img, lay,
                dpi=self._preview_dpi(lay.page_width_mm, lay.page_height_mm),
                source=self._preview_source_for(img),
            )
        except (UserFacingError, InvalidSettings, InvalidDimension) as e:
            self._append_log(f"[ERROR] {e}")
            self.preview_label.setPixmap(QPixmap())
            self.preview_label.setText("プレビュー生成エラー")
            return
        self.preview_label.setText("")
        self.preview_label.setPixmap(pil_to_qpixmap(pil))

    def resizeEvent(self, event):
        super().resizeEvent(event)
        if self.images:
            self._update_preview()

    # ---- 出力 ----
    def on_generate_clicked(self):
        if not self.images:
            self._warn("出力", "画像がありません。")
            return
        try:
            settings = self._current_settings()
        except InvalidSettings as e:
            self._error("設定エラー", str(e))
            return

        default_dir = self._last_output_dir or os.getcwd()
        out_dir = QFileDialog.getExistingDirectory(self, "保存先フォルダ", default_dir)
        if not out_dir:
            return
        self._last_output_dir = out_dir

        self.pbar.setValue(0)
        self.btn_generate.setEnabled(False)
        self.btn_open_folder.setEnabled(False)
        self._append_log(
            f"[INFO] 出力開始: size={settings.page_size.name}, orientation={settings.orientation.name}, "
            f"fit={settings.image_fit.name}, margin={settings.margin_mm:g}mm"
        )

        job = Job(images=list(self.images), settings=settings, output_dir=out_dir)
        self._thread = QThread(self)
        self._worker = Worker(job)
        self._worker.moveToThread(self._thread)

        self._thread.started.connect(self._worker.run)
        self._worker.progress.connect(self.on_job_progress)
        self._worker.log.connect(lambda m: self._append_log(f"[JOB] {m}"))
        self._worker.finished.connect(self.on_job_finished)
        self._worker.failed.connect(self.on_job_failed)
        self._worker.canceled.connect(self.on_job_canceled)

        def cleanup():
            if self._thread:
                self._thread.quit()
                self._thread.wait(2000)
            self._thread = None
            self._worker = None
            self.btn_generate.setEnabled(True)

        self._worker.finished.connect(lambda _: cleanup())
        self._worker.failed.connect(lambda _: cleanup())
        self._worker.canceled.connect(lambda _: cleanup())

        self._thread.start()

    def on_job_progress(self, cur: int, total: int):
        if total <= 0:
            self.pbar.setValue(0)
            return
        self.pbar.setMaximum(total)
        self.pbar.setValue(cur)

    def on_job_finished(self, out_path: str):
        if not out_path:
            self._append_log("[INFO] 出力する画像がありませんでした")
            return
        self._append_log(f"[INFO] 出力完了: {out_path}")
        self.last_output_pdf = out_path
        self.btn_open_folder.setEnabled(True)
        QMessageBox.information(self, "完了", "PDFを保存しました。")

    def on_job_failed(self, msg: str):
        self._error("出力エラー", msg)

    def on_job_canceled(self, msg: str):
        self._append_log(f"[INFO] {msg}")
        QMessageBox.information(self, "中断", msg)

    def on_cancel_clicked(self):
        if self._worker:
            self._append_log("[INFO] 中断要求")
            self._worker.cancel()

    def on_open_folder_clicked(self):
        if not self.last_output_pdf:
            return
        folder = os.path.dirname(os.path.abspath(self.last_output_pdf))
        try:
            if sys.platform.startswith("win"):
                os.startfile(folder)
            elif sys.platform == "darwin":
                subprocess.Popen(["open", folder])
            else:
                subprocess.Popen(["xdg-open", folder])
        except OSError as e:
            self._warn("フォルダを開けません", str(e))


def main():
    app = QApplication(sys.argv)
    w = MainWindow()
    w.resize(1200, 760)
    w.show()
    app.exec()

if __name__ == "__main__":
    main()
