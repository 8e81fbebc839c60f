"""
FocusGate control panel (PyQt6).

A thin host window around ``SessionController``: enter the sites to
block, start or end the session, watch the live request log.  Proxy
callbacks arrive on handler threads and reach the widgets through Qt
signals.
"""

import logging
from datetime import datetime

from PyQt6.QtWidgets import (
    QMainWindow, QWidget, QVBoxLayout, QHBoxLayout, QFormLayout,
    QGroupBox, QLabel, QLineEdit, QPushButton, QPlainTextEdit,
    QMessageBox,
)
from PyQt6.QtCore import QTimer, pyqtSignal, QObject

from config.settings import Settings
from engine          import SessionController, SystemProxyConfig


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Qt Log Handler: routes Python logging into the GUI
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class QtLogSignal(QObject):
    log_message = pyqtSignal(str)


class QtLogHandler(logging.Handler):
    """Logging handler that emits a Qt signal for each record."""

    def __init__(self):
        super().__init__()
        self.signal_emitter = QtLogSignal()
        self.setFormatter(logging.Formatter(
            Settings.LOG_FORMAT, datefmt=Settings.LOG_DATE_FORMAT,
        ))

    def emit(self, record):
        msg = self.format(record)
        self.signal_emitter.log_message.emit(msg)


class SignalBridge(QObject):
    proxy_request = pyqtSignal(str, str, int, bool)  # method, host, port, blocked
    status_update = pyqtSignal(str)


STYLE_SHEET = """
QMainWindow, QWidget {
    background-color: #1e1e2e;
    color: #cdd6f4;
}
QGroupBox {
    border: 1px solid #313244;
    border-radius: 6px;
    margin-top: 12px;
    padding-top: 8px;
}
QLineEdit, QPlainTextEdit {
    background-color: #313244;
    border: 1px solid #45475a;
    border-radius: 4px;
    padding: 4px;
}
QPushButton {
    background-color: #89b4fa;
    color: #1e1e2e;
    border-radius: 4px;
    padding: 6px 16px;
}
QPushButton[danger="true"] {
    background-color: #f38ba8;
}
QPushButton:disabled {
    background-color: #45475a;
    color: #6c7086;
}
"""


class ControlPanel(QMainWindow):
    def __init__(self, controller: SessionController | None = None,
                 sites: list[str] | None = None):
        super().__init__()
        self.bridge = SignalBridge()
        self.logger = logging.getLogger("FocusGate.ControlPanel")
        self.controller = controller or SessionController(
            configurator=SystemProxyConfig()
        )
        if self.controller.on_request is None:
            self.controller.on_request = self._cb_request

        self.log_handler = QtLogHandler()
        logging.getLogger().addHandler(self.log_handler)

        self._build_ui(sites or [])
        self.setStyleSheet(STYLE_SHEET)

    def _build_ui(self, sites: list[str]):
        self.setWindowTitle(f"{Settings.APP_NAME} — Focus Session")
        self.setMinimumSize(640, 480)

        central = QWidget()
        self.setCentralWidget(central)
        layout = QVBoxLayout(central)

        # ── sites ──
        sites_group = QGroupBox("Sites to Block")
        sites_layout = QVBoxLayout(sites_group)
        self.txt_sites = QLineEdit(", ".join(sites))
        self.txt_sites.setPlaceholderText(
            "e.g. instagram.com, youtube.com, twitter.com"
        )
        sites_layout.addWidget(self.txt_sites)
        layout.addWidget(sites_group)

        # ── buttons ──
        btn_layout = QHBoxLayout()
        self.btn_start = QPushButton("Start Session")
        self.btn_start.clicked.connect(self.start_session)
        btn_layout.addWidget(self.btn_start)

        self.btn_stop = QPushButton("End Session")
        self.btn_stop.setProperty("danger", True)
        self.btn_stop.setEnabled(False)
        self.btn_stop.clicked.connect(self.end_session)
        btn_layout.addWidget(self.btn_stop)
        layout.addLayout(btn_layout)

        # ── status ──
        info_group = QGroupBox("Proxy Status")
        info_fl = QFormLayout(info_group)
        self.lbl_status   = QLabel("Idle")
        self.lbl_listen   = QLabel("—")
        self.lbl_requests = QLabel("0")
        self.lbl_active   = QLabel("0")
        self.lbl_blocked  = QLabel("0")
        info_fl.addRow("Status:",             self.lbl_status)
        info_fl.addRow("Listening on:",       self.lbl_listen)
        info_fl.addRow("Total Requests:",     self.lbl_requests)
        info_fl.addRow("Active Connections:", self.lbl_active)
        info_fl.addRow("Blocked:",            self.lbl_blocked)
        layout.addWidget(info_group)

        # ── request log ──
        log_group = QGroupBox("Live Request Log")
        log_layout = QVBoxLayout(log_group)
        self.txt_log = QPlainTextEdit()
        self.txt_log.setReadOnly(True)
        self.txt_log.setMaximumBlockCount(500)
        log_layout.addWidget(self.txt_log)
        layout.addWidget(log_group)

        self.bridge.proxy_request.connect(self._on_proxy_request)
        self.bridge.status_update.connect(self.statusBar().showMessage)
        self.log_handler.signal_emitter.log_message.connect(
            self._on_log_message
        )

        self._timer = QTimer(self)
        self._timer.timeout.connect(self._refresh_stats)
        self._timer.start(1000)

    # ── actions ─────────────────────────────────────────────────

    def sites(self) -> list[str]:
        return [s for s in self.txt_sites.text().split(",") if s.strip()]

    def start_session(self):
        result = self.controller.start(self.sites())

        if not result["ok"]:
            QMessageBox.critical(self, "Error", result["error"])
            return

        self.btn_start.setText("Restart Session")
        self.btn_stop.setEnabled(True)
        self.lbl_status.setText("Running")
        self.lbl_listen.setText(f"{self.controller.host}:{self.controller.port}")
        self.bridge.status_update.emit(
            f"Blocking {len(self.sites())} site(s) on port "
            f"{self.controller.port}"
        )

    def end_session(self):
        self.controller.stop()
        self.btn_start.setText("Start Session")
        self.btn_stop.setEnabled(False)
        self.lbl_status.setText("Idle")
        self.lbl_listen.setText("—")
        self.bridge.status_update.emit("Session ended")

    # ── callbacks ───────────────────────────────────────────────

    def _cb_request(self, method: str, host: str, port: int, blocked: bool):
        # handler thread → GUI thread
        self.bridge.proxy_request.emit(method, host, port, blocked)

    def _on_proxy_request(self, method: str, host: str, port: int,
                          blocked: bool):
        ts = datetime.now().strftime("%H:%M:%S")
        verdict = "BLOCKED" if blocked else "allowed"
        self.txt_log.appendPlainText(
            f"[{ts}] {verdict:8s} {method:8s} {host}:{port}"
        )

    def _on_log_message(self, msg: str):
        self.statusBar().showMessage(msg, 5000)

    def _refresh_stats(self):
        stats = self.controller.stats()
        if not stats.get("running"):
            return
        self.lbl_requests.setText(str(stats["total_requests"]))
        self.lbl_active.setText(str(stats["active_connections"]))
        self.lbl_blocked.setText(str(stats["blocked_requests"]))

    def closeEvent(self, event):
        if self.controller.is_running:
            self.controller.stop()
        logging.getLogger().removeHandler(self.log_handler)
        self.logger.info("Goodbye!")
        event.accept()
