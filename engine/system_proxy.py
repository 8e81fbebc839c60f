"""
System proxy configurator (Windows / macOS / Linux).

Points the operating system's HTTP and HTTPS proxy settings at the local
FocusGate listener and clears them again.  Every operation is a
best-effort aggregate over its sub-targets (network services, registry
values, gsettings keys): a failing sub-target is logged and reported as a
warning, and the overall result only fails when the operation cannot be
attempted at all.
"""

import platform
import subprocess
import logging
from typing import Callable

from config.settings import Settings
from engine.errors   import SystemProxyCommandFailure

logger = logging.getLogger("FocusGate.SystemProxy")

CommandRunner = Callable[[list[str]], subprocess.CompletedProcess]

_WIN_INTERNET_SETTINGS = (
    "HKCU\\Software\\Microsoft\\Windows\\CurrentVersion\\Internet Settings"
)


def run_command(cmd: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        cmd, capture_output=True, text=True,
        timeout=Settings.COMMAND_TIMEOUT,
    )


class ConfigResult:
    """Outcome of one enable/disable call."""

    def __init__(self, ok: bool, message: str,
                 warnings: list[str] | None = None):
        self.ok       = ok
        self.message  = message
        self.warnings = warnings or []

    def __bool__(self) -> bool:
        return self.ok

    def as_dict(self) -> dict:
        return {
            "ok":       self.ok,
            "message":  self.message,
            "warnings": list(self.warnings),
        }

    def __repr__(self) -> str:
        return (f"ConfigResult(ok={self.ok}, message={self.message!r}, "
                f"warnings={len(self.warnings)})")


class SystemProxyConfig:
    """Configure system-wide proxy settings for one platform."""

    PLATFORMS = ("windows", "macos", "linux")

    def __init__(
        self,
        platform_name: str | None = None,
        host: str = Settings.PROXY_HOST,
        runner: CommandRunner | None = None,
        bypass: list[str] | None = None,
    ):
        self.platform = platform_name or self.detect_os()
        if self.platform not in self.PLATFORMS:
            raise ValueError(f"Unsupported platform: {self.platform!r}")
        self.host    = host
        self._runner = runner or run_command
        self.bypass  = list(Settings.PROXY_BYPASS if bypass is None
                            else bypass)
        # GNOME ignore-hosts value found before the first enable
        self._saved_ignore_hosts: str | None = None

    @staticmethod
    def detect_os() -> str:
        system = platform.system().lower()
        if system == "windows":
            return "windows"
        elif system == "darwin":
            return "macos"
        else:
            return "linux"

    # ── public API ──────────────────────────────────────────────

    def enable(self, port: int) -> ConfigResult:
        """Route HTTP and HTTPS through ``host:port``."""
        handlers = {
            "windows": self._set_windows_proxy,
            "macos":   self._set_macos_proxy,
            "linux":   self._set_linux_proxy,
        }
        return self._attempt("enable", handlers[self.platform], port)

    def disable(self) -> ConfigResult:
        """Remove the proxy settings written by ``enable``."""
        handlers = {
            "windows": self._unset_windows_proxy,
            "macos":   self._unset_macos_proxy,
            "linux":   self._unset_linux_proxy,
        }
        return self._attempt("disable", handlers[self.platform])

    # ── aggregation helpers ─────────────────────────────────────

    def _attempt(self, action: str, handler, *args) -> ConfigResult:
        try:
            result = handler(*args)
        except FileNotFoundError as exc:
            # the platform tool itself is missing
            result = ConfigResult(
                False, f"Cannot {action} system proxy: {exc}"
            )
        except (OSError, subprocess.SubprocessError) as exc:
            result = ConfigResult(
                False, f"Failed to {action} system proxy: {exc}"
            )

        if result.ok:
            logger.info("System proxy %s (%s): %s",
                        action, self.platform, result.message)
        else:
            logger.error("System proxy %s (%s) failed: %s",
                         action, self.platform, result.message)
        return result

    def _run_all(self, target: str, commands: list[list[str]],
                 warnings: list[str]) -> bool:
        """Run *commands* for one sub-target; failures become warnings."""
        ok = True
        for cmd in commands:
            try:
                proc = self._runner(cmd)
            except subprocess.TimeoutExpired:
                failure = SystemProxyCommandFailure(target, cmd, "timed out")
            else:
                if proc.returncode == 0:
                    continue
                detail = (proc.stderr or proc.stdout or "").strip()
                failure = SystemProxyCommandFailure(
                    target, cmd, detail or f"exit {proc.returncode}"
                )
            logger.warning("%s", failure)
            warnings.append(str(failure))
            ok = False
        return ok

    # ── Windows ─────────────────────────────────────────────────

    def _reg_add(self, name: str, kind: str, data: str) -> list[str]:
        return ["reg", "add", _WIN_INTERNET_SETTINGS,
                "/v", name, "/t", kind, "/d", data, "/f"]

    def _set_windows_proxy(self, port: int) -> ConfigResult:
        proxy = f"{self.host}:{port}"
        values = [
            ("ProxyServer", "REG_SZ", f"http={proxy};https={proxy}"),
            ("ProxyOverride", "REG_SZ", ";".join(self.bypass + ["<local>"])),
            ("ProxyEnable", "REG_DWORD", "1"),
        ]
        warnings: list[str] = []
        for name, kind, data in values:
            self._run_all(name, [self._reg_add(name, kind, data)], warnings)
        self._notify_windows()
        return ConfigResult(True, f"System proxy set to {proxy}", warnings)

    def _unset_windows_proxy(self) -> ConfigResult:
        warnings: list[str] = []
        self._run_all(
            "ProxyEnable",
            [self._reg_add("ProxyEnable", "REG_DWORD", "0")],
            warnings,
        )
        self._notify_windows()
        return ConfigResult(True, "System proxy disabled", warnings)

    @staticmethod
    def _notify_windows():
        """Tell WinINet the settings changed so browsers pick them up."""
        try:
            import ctypes
            internet_option_refresh = 37
            internet_option_settings_changed = 39
            internet_set_option = ctypes.windll.Wininet.InternetSetOptionW
            internet_set_option(0, internet_option_settings_changed, 0, 0)
            internet_set_option(0, internet_option_refresh, 0, 0)
        except (ImportError, AttributeError, OSError) as exc:
            logger.debug("WinINet refresh unavailable: %s", exc)

    # ── macOS ───────────────────────────────────────────────────

    def _macos_services(self) -> list[str] | None:
        result = self._runner(["networksetup", "-listallnetworkservices"])
        if result.returncode != 0:
            return None
        lines = result.stdout.split("\n")
        # first line is the "An asterisk (*) denotes ..." banner;
        # services prefixed with "*" are disabled
        return [
            line.strip() for line in lines[1:]
            if line.strip() and not line.startswith("*")
        ]

    def _set_macos_proxy(self, port: int) -> ConfigResult:
        services = self._macos_services()
        if not services:
            return ConfigResult(False, "No network services found")

        warnings: list[str] = []
        applied = 0
        for service in services:
            if self._run_all(service, [
                ["networksetup", "-setwebproxy", service,
                 self.host, str(port)],
                ["networksetup", "-setsecurewebproxy", service,
                 self.host, str(port)],
            ], warnings):
                applied += 1

        return ConfigResult(
            True,
            f"Proxy set on {applied}/{len(services)} network services",
            warnings,
        )

    def _unset_macos_proxy(self) -> ConfigResult:
        services = self._macos_services()
        if not services:
            return ConfigResult(False, "No network services found")

        warnings: list[str] = []
        cleared = 0
        for service in services:
            if self._run_all(service, [
                ["networksetup", "-setwebproxystate", service, "off"],
                ["networksetup", "-setsecurewebproxystate", service, "off"],
            ], warnings):
                cleared += 1

        return ConfigResult(
            True,
            f"Proxy cleared on {cleared}/{len(services)} network services",
            warnings,
        )

    # ── Linux (GNOME) ───────────────────────────────────────────

    def _get_linux_ignore_hosts(self, warnings: list[str]) -> str | None:
        cmd = ["gsettings", "get", "org.gnome.system.proxy", "ignore-hosts"]
        try:
            proc = self._runner(cmd)
        except subprocess.TimeoutExpired:
            warnings.append(str(SystemProxyCommandFailure(
                "ignore-hosts", cmd, "timed out")))
            return None
        if proc.returncode != 0 or not proc.stdout.strip():
            return None
        return proc.stdout.strip()

    def _set_linux_proxy(self, port: int) -> ConfigResult:
        ignore = "[" + ", ".join(f"'{h}'" for h in self.bypass) + "]"
        warnings: list[str] = []
        if self._saved_ignore_hosts is None:
            # a restart must not save our own value over the user's
            self._saved_ignore_hosts = self._get_linux_ignore_hosts(warnings)
        for scheme in ("http", "https"):
            schema = f"org.gnome.system.proxy.{scheme}"
            self._run_all(scheme, [
                ["gsettings", "set", schema, "host", f"'{self.host}'"],
                ["gsettings", "set", schema, "port", str(port)],
            ], warnings)
        self._run_all("ignore-hosts", [
            ["gsettings", "set", "org.gnome.system.proxy",
             "ignore-hosts", ignore],
        ], warnings)
        self._run_all("mode", [
            ["gsettings", "set", "org.gnome.system.proxy", "mode", "'manual'"],
        ], warnings)
        return ConfigResult(
            True, f"GNOME proxy set to {self.host}:{port}", warnings
        )

    def _unset_linux_proxy(self) -> ConfigResult:
        warnings: list[str] = []
        self._run_all("mode", [
            ["gsettings", "set", "org.gnome.system.proxy", "mode", "'none'"],
        ], warnings)
        if self._saved_ignore_hosts is not None:
            self._run_all("ignore-hosts", [
                ["gsettings", "set", "org.gnome.system.proxy",
                 "ignore-hosts", self._saved_ignore_hosts],
            ], warnings)
            self._saved_ignore_hosts = None
        return ConfigResult(True, "GNOME proxy disabled", warnings)
