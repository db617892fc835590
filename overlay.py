"""Overlay window showing recording progress, notifications and errors."""

from __future__ import annotations

try:
    from PySide6.QtCore import Qt, QTimer
    from PySide6.QtWidgets import QApplication, QLabel, QWidget, QVBoxLayout
except Exception:  # pragma: no cover
    Qt = None  # type: ignore
    QTimer = None  # type: ignore
    QApplication = None  # type: ignore
    QLabel = object  # type: ignore
    QWidget = object  # type: ignore
    QVBoxLayout = object  # type: ignore

STYLE_NORMAL = (
    "color: white; font-size: 18px; padding: 16px;"
    "background: rgba(0,0,0,190); border-radius: 12px;"
)
STYLE_ERROR = (
    "color: #FF6B6B; font-size: 18px; padding: 16px;"
    "background: rgba(0,0,0,210); border-radius: 12px;"
)
STYLE_NOTE = "color: #DDDDDD; font-size: 14px; padding: 4px 16px;"


class OverlayWindow(QWidget):
    def __init__(self) -> None:
        if Qt is None:
            raise RuntimeError("PySide6 is not installed")
        super().__init__()
        self.setWindowFlags(
            Qt.WindowStaysOnTopHint | Qt.FramelessWindowHint | Qt.Tool
        )
        self.setAttribute(Qt.WA_TranslucentBackground, True)
        self.setFixedWidth(600)

        self._label = QLabel("")
        self._label.setWordWrap(True)
        self._label.setStyleSheet(STYLE_NORMAL)
        self._note = QLabel("")
        self._note.setStyleSheet(STYLE_NOTE)
        self._note.hide()

        layout = QVBoxLayout()
        layout.setContentsMargins(0, 0, 0, 0)
        layout.addWidget(self._label)
        layout.addWidget(self._note)
        self.setLayout(layout)

        self._prompt = ""
        self._bytes = ""
        self._chunks = ""
        self._hide_timer: QTimer | None = None
        self._note_timer: QTimer | None = None

    def show_recording(self, prompt: str = "") -> None:
        self._prompt = prompt
        self._bytes = ""
        self._chunks = ""
        self._label.setStyleSheet(STYLE_NORMAL)
        self._render("🎙️ Listening...")

    def show_processing(self) -> None:
        self._render("Transcribing...")

    def set_bytes(self, text: str) -> None:
        self._bytes = text
        self._render("🎙️ Listening...")

    def set_chunks(self, text: str) -> None:
        self._chunks = text
        self._render("🎙️ Listening...")

    def append_progress(self, text: str) -> None:
        self._chunks += text
        self._render(self._label.text().split("\n", 1)[0])

    def show_notification(self, text: str, hide_after_ms: int = 3500) -> None:
        """One-shot note under the main label."""
        self._note.setText(text)
        self._note.show()
        self._center_top()
        self.show()
        if self._note_timer is not None:
            self._note_timer.stop()
        self._note_timer = QTimer()
        self._note_timer.setSingleShot(True)
        self._note_timer.timeout.connect(self._note.hide)
        self._note_timer.start(hide_after_ms)
        self.hide_with_delay(hide_after_ms)

    def show_error(self, text: str, hide_after_ms: int = 4000) -> None:
        self._label.setStyleSheet(STYLE_ERROR)
        self._set_text(f"⚠️ {text}\nPress the hotkey to try again.")
        self.hide_with_delay(hide_after_ms)

    def hide_with_delay(self, delay_ms: int = 400) -> None:
        self._cancel_hide_timer()
        self._hide_timer = QTimer()
        self._hide_timer.setSingleShot(True)
        self._hide_timer.timeout.connect(self.hide)
        self._hide_timer.start(delay_ms)

    def _render(self, headline: str) -> None:
        lines = [headline]
        if self._prompt:
            lines.append(self._prompt)
        progress = "  ".join(part for part in (self._bytes, self._chunks) if part)
        if progress:
            lines.append(progress)
        self._set_text("\n".join(lines))

    def _set_text(self, text: str) -> None:
        self._cancel_hide_timer()
        self._label.setText(text)
        self._center_top()
        self.show()

    def _center_top(self) -> None:
        """Position the window at the top center of the primary screen."""
        screen = QApplication.primaryScreen()
        if screen is None:
            return
        geom = screen.availableGeometry()
        self.adjustSize()
        x = geom.x() + (geom.width() - self.width()) // 2
        y = geom.y() + 40  # below menu bar
        self.move(x, y)

    def _cancel_hide_timer(self) -> None:
        if self._hide_timer is not None:
            self._hide_timer.stop()
            self._hide_timer = None
