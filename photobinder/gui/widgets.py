from __future__ import annotations
import os
from PySide6.QtCore import Signal, Qt, QSize
from PySide6.QtWidgets import QListWidget, QAbstractItemView
from PySide6.QtGui import QDropEvent

from photobinder.core.errors import is_supported_image, is_heic

class ImageDropList(QListWidget):
    """画像のD&D受付と並べ替えを行うリスト。(受理パス, 未対応パス, 挿入位置) を通知する。"""
    files_dropped = Signal(list, list, int)
    items_reordered = Signal()
    delete_requested = Signal()

    def __init__(self, parent=None):
        super().__init__(parent)
        self.setAcceptDrops(True)
        self.setDragEnabled(True)
        self.setDropIndicatorShown(True)
        self.setDragDropMode(QAbstractItemView.DragDropMode.InternalMove)
        self.setDefaultDropAction(Qt.DropAction.MoveAction)
        self.setIconSize(QSize(64, 64))

    def dragEnterEvent(self, event):
        if event.mimeData().hasUrls():
            event.acceptProposedAction()
        else:
            super().dragEnterEvent(event)

    def dragMoveEvent(self, event):
        if event.mimeData().hasUrls():
            event.acceptProposedAction()
        else:
            super().dragMoveEvent(event)

    def dropEvent(self, event: QDropEvent):
        if not event.mimeData().hasUrls():
            internal = event.source() is self
            super().dropEvent(event)
            if internal:
                self.items_reordered.emit()
            return

        row = self.indexAt(event.position().toPoint()).row()
        if row < 0:
            row = self.count()  # 末尾に追加

        accepted, rejected = [], []
        for u in event.mimeData().urls():
            p = u.toLocalFile()
            if not p or not os.path.isfile(p):
                continue
            if is_supported_image(p) and not is_heic(p):
                accepted.append(p)
            else:
                rejected.append(p)

        self.files_dropped.emit(accepted, rejected, row)
        event.acceptProposedAction()

    def keyPressEvent(self, event):
        if event.key() in (Qt.Key.Key_Delete, Qt.Key.Key_Backspace):
            self.delete_requested.emit()
            return
        super().keyPressEvent(event)
