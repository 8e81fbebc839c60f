import os


class Settings:
    """Centralised application configuration."""

    # ── application ──────────────────────────────────────────────
    APP_NAME    = "FocusGate"
    APP_VERSION = "1.0.0"

    # ── paths ────────────────────────────────────────────────────
    BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    LOG_FILE = os.path.join(BASE_DIR, "focusgate.log")

    # ── network ──────────────────────────────────────────────────
    PROXY_HOST     = "127.0.0.1"
    PROXY_PORT     = 8080
    MAX_PORT       = 65535
    BACKLOG        = 100
    BUFFER_SIZE    = 65536
    MAX_HEAD_SIZE  = 64 * 1024          # request line + headers

    # ── timeouts (seconds) ───────────────────────────────────────
    ACCEPT_TIMEOUT  = 1.0               # accept loop polls _running
    REQUEST_TIMEOUT = 30                # reading the request head
    CONNECT_TIMEOUT = 15                # upstream connect
    IDLE_TIMEOUT    = 300               # splice with no traffic
    SELECT_INTERVAL = 1.0
    COMMAND_TIMEOUT = 15                # one OS proxy command

    # ── system proxy ─────────────────────────────────────────────
    PROXY_BYPASS = [
        "localhost",
        "127.0.0.1",
        "10.*",
        "172.16.*",
        "192.168.*",
    ]

    # ── logging ──────────────────────────────────────────────────
    LOG_LEVEL        = "INFO"
    LOG_FORMAT       = "[%(asctime)s] [%(levelname)-8s] %(name)s — %(message)s"
    LOG_DATE_FORMAT  = "%H:%M:%S"
    LOG_MAX_BYTES    = 2 * 1024 * 1024
    LOG_BACKUP_COUNT = 3
