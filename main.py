"""Application entrypoint."""

from __future__ import annotations

import sys

from auto_paste import PasteForwardingHandle
from config import JsonConfigStore
from hotkey import HOLD, TOGGLE, GlobalHotkeyAdapter
from log_setup import setup_logging
from message_bus import MessageBus
from models import (
    AppendProgressText,
    RecognizerRequest,
    SessionOutcome,
    SessionState,
    ShowFatalError,
    ShowNotification,
)
from overlay import OverlayWindow
from recognizer import DashscopeTranscriber
from recorder import SoundDeviceCaptureService
from scheduler import TimerLoop
from session_controller import SessionController

try:
    from PySide6.QtCore import QObject, QSize, QTimer, Signal
    from PySide6.QtGui import QAction, QBrush, QColor, QIcon, QPainter, QPixmap
    from PySide6.QtWidgets import QApplication, QInputDialog, QMenu, QMessageBox, QSystemTrayIcon
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

logger = setup_logging("speech_session")

# Drives timers and drains the message bus on the Qt main thread.
PUMP_INTERVAL_MS = 20


def _create_icon(color: str = "#888888", size: int = 22) -> QIcon:
    """Generate a simple circular tray icon with the given color."""
    pixmap = QPixmap(QSize(size, size))
    pixmap.fill(QColor(0, 0, 0, 0))
    painter = QPainter(pixmap)
    painter.setRenderHint(QPainter.Antialiasing, True)
    painter.setBrush(QBrush(QColor(color)))
    painter.setPen(QColor(color))
    painter.drawEllipse(2, 2, size - 4, size - 4)
    painter.end()
    return QIcon(pixmap)


ICON_IDLE = "#888888"       # grey
ICON_RECORDING = "#FF4444"  # red
ICON_PROCESSING = "#4488FF"  # blue
ICON_ERROR = "#FF8800"      # orange


class UIBridge(QObject):
    start_signal = Signal()
    stop_signal = Signal()
    state_signal = Signal(str, str)  # from_state, to_state
    finish_signal = Signal(object)


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.app.setQuitOnLastWindowClosed(False)
        self.config_store = JsonConfigStore()
        self.overlay = OverlayWindow()
        self.ui = UIBridge()
        self.ui.start_signal.connect(self._begin_session)
        self.ui.stop_signal.connect(self._end_recording)
        self.ui.state_signal.connect(self._on_state_change_ui)
        self.ui.finish_signal.connect(self._on_finish_ui)

        self.loop = TimerLoop()
        self.bus = MessageBus()
        self.bus.subscribe(ShowNotification, self.overlay.show_notification)
        self.bus.subscribe(AppendProgressText, self.overlay.append_progress)
        self.bus.subscribe(ShowFatalError, self.overlay.show_error)
        self.pump = QTimer()
        self.pump.timeout.connect(self._pump)

        self.capture = SoundDeviceCaptureService(
            DashscopeTranscriber(api_key=self.config_store.get_api_key())
        )
        self.controller = SessionController(
            service=self.capture,
            scheduler=self.loop,
            bus=self.bus,
            preferences=self.config_store,
            overrides=self.config_store,
            on_state_change=self._on_state_change,
            on_finish=self._on_finish,
            on_bytes=self.overlay.set_bytes,
            on_chunks=self.overlay.set_chunks,
        )
        mode = TOGGLE if self.config_store.get_auto_stop_after_pause() else HOLD
        self.hotkey = GlobalHotkeyAdapter(hotkey_name=self.config_store.get_hotkey(), mode=mode)

        self.tray = QSystemTrayIcon()
        self.tray.setIcon(_create_icon(ICON_IDLE))
        self.tray.setToolTip("Speech Session: Ready")
        self._setup_menu()
        self.tray.show()

    def _setup_menu(self) -> None:
        menu = QMenu()

        for title, handler in (
            ("Set API Key", self._set_api_key),
            ("Set Server URL", self._set_server_url),
            ("Set Hotkey", self._set_hotkey),
            ("Session Details", self._show_details),
        ):
            action = QAction(title, menu)
            action.triggered.connect(handler)
            menu.addAction(action)

        menu.addSeparator()
        quit_action = QAction("Quit", menu)
        quit_action.triggered.connect(self.quit)
        menu.addAction(quit_action)

        self.tray.setContextMenu(menu)

    def _set_api_key(self) -> None:
        value, ok = QInputDialog.getText(None, "API Key", "DashScope API Key")
        if not ok:
            return
        self.config_store.set_api_key(value)
        self.capture.transcriber = DashscopeTranscriber(api_key=value)
        QMessageBox.information(None, "Saved", "API Key saved and applied.")

    def _set_server_url(self) -> None:
        value, ok = QInputDialog.getText(
            None, "Server URL", "Recognition server URL", text=self.config_store.get_server_url()
        )
        if not ok or not value:
            return
        self.config_store.set_server_url(value)
        QMessageBox.information(None, "Saved", "Server URL saved, used from the next session.")

    def _set_hotkey(self) -> None:
        value, ok = QInputDialog.getText(
            None, "Hotkey", "Use pynput key format, e.g. Key.alt_l"
        )
        if not ok or not value:
            return
        self.config_store.set_hotkey(value)
        QMessageBox.information(None, "Saved", "Hotkey saved. Restart app to apply.")

    def _show_details(self) -> None:
        QMessageBox.information(None, "Session Details", "\n".join(self.controller.describe()))

    # ------------------------------------------------------------------
    # Callbacks (may arrive on worker threads → emit signals for UI thread)
    # ------------------------------------------------------------------

    def _on_state_change(self, from_state: SessionState, to_state: SessionState) -> None:
        self.ui.state_signal.emit(from_state.value, to_state.value)

    def _on_finish(self, outcome: SessionOutcome) -> None:
        self.ui.finish_signal.emit(outcome)

    # ------------------------------------------------------------------
    # UI thread handlers (safe for Qt)
    # ------------------------------------------------------------------

    def _pump(self) -> None:
        self.loop.run_pending()
        self.bus.dispatch_pending()

    def _request(self) -> RecognizerRequest:
        return RecognizerRequest(
            prompt="Speak now",
            results_handle=PasteForwardingHandle(),
            results_payload={"source": "hotkey"},
        )

    def _begin_session(self) -> None:
        if self.controller.state == SessionState.RECORDING:
            # Auto-started recording; the first press ends it.
            self.controller.stop()
            self.hotkey.reset()
            return
        session = self.controller.initialize(self._request())
        if session.state == SessionState.INITIALIZED:
            self.controller.start()

    def _end_recording(self) -> None:
        self.controller.stop()

    def _on_state_change_ui(self, from_state: str, to_state: str) -> None:
        if to_state == SessionState.RECORDING.value:
            self.tray.setIcon(_create_icon(ICON_RECORDING))
            self.tray.setToolTip("Speech Session: Recording...")
            session = self.controller.session
            self.overlay.show_recording(session.config.prompt if session and session.config else "")
        elif to_state == SessionState.PROCESSING.value:
            self.tray.setIcon(_create_icon(ICON_PROCESSING))
            self.tray.setToolTip("Speech Session: Processing...")
            self.overlay.show_processing()
        elif to_state == SessionState.FINISHED.value:
            self.hotkey.reset()
            self.tray.setToolTip("Speech Session: Ready")

    def _on_finish_ui(self, outcome: SessionOutcome) -> None:
        if outcome.success:
            self.tray.setIcon(_create_icon(ICON_IDLE))
            self.overlay.hide_with_delay(3500)
        else:
            self.tray.setIcon(_create_icon(ICON_ERROR))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        if self.config_store.get_auto_start():
            self.controller.initialize(self._request())
        self.controller.connect()
        self.pump.start(PUMP_INTERVAL_MS)
        try:
            self.hotkey.start(
                on_start=self.ui.start_signal.emit,
                on_stop=self.ui.stop_signal.emit,
            )
        except Exception as exc:
            logger.warning("Hotkey disabled: %s", exc)
            self.overlay.show_error(f"Hotkey disabled: {exc}")
        return self.app.exec()

    def quit(self) -> None:
        self.hotkey.stop()
        self.pump.stop()
        self.controller.disconnect()
        self.app.quit()


def main() -> int:
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
