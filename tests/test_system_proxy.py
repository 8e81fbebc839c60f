import subprocess
import unittest

from engine.system_proxy import SystemProxyConfig, ConfigResult


class FakeRunner:
    """Records commands; *fail* maps a predicate to a failing result."""

    def __init__(self, services_output: str | None = None,
                 fail=None, missing: bool = False, get_output: str = ""):
        self.commands: list[list[str]] = []
        self.services_output = services_output
        self.fail = fail or (lambda cmd: False)
        self.missing = missing
        self.get_output = get_output

    def __call__(self, cmd):
        self.commands.append(cmd)
        if self.missing:
            raise FileNotFoundError(2, "No such file or directory", cmd[0])
        if cmd[:2] == ["networksetup", "-listallnetworkservices"]:
            if self.services_output is None:
                return subprocess.CompletedProcess(cmd, 1, "", "error")
            return subprocess.CompletedProcess(
                cmd, 0, self.services_output, "")
        if cmd[:2] == ["gsettings", "get"]:
            return subprocess.CompletedProcess(cmd, 0, self.get_output, "")
        if self.fail(cmd):
            return subprocess.CompletedProcess(cmd, 1, "", "denied")
        return subprocess.CompletedProcess(cmd, 0, "", "")


MAC_SERVICES = (
    "An asterisk (*) denotes that a network service is disabled.\n"
    "Wi-Fi\n"
    "Thunderbolt Bridge\n"
    "*Bluetooth PAN\n"
)


class TestConfigResult(unittest.TestCase):

    def test_truthiness_and_dict(self):
        ok = ConfigResult(True, "done", ["w"])
        self.assertTrue(ok)
        self.assertFalse(ConfigResult(False, "nope"))
        self.assertEqual(ok.as_dict(),
                         {"ok": True, "message": "done", "warnings": ["w"]})


class TestPlatformSelection(unittest.TestCase):

    def test_detect_os_is_known(self):
        self.assertIn(SystemProxyConfig.detect_os(),
                      SystemProxyConfig.PLATFORMS)

    def test_unknown_platform_rejected(self):
        with self.assertRaises(ValueError):
            SystemProxyConfig("amiga", runner=FakeRunner())


class TestMacOS(unittest.TestCase):

    def test_enable_sets_every_active_service(self):
        runner = FakeRunner(MAC_SERVICES)
        result = SystemProxyConfig("macos", runner=runner).enable(8081)

        self.assertTrue(result.ok)
        self.assertEqual(result.warnings, [])
        self.assertIn(["networksetup", "-setwebproxy", "Wi-Fi",
                       "127.0.0.1", "8081"], runner.commands)
        self.assertIn(["networksetup", "-setsecurewebproxy",
                       "Thunderbolt Bridge", "127.0.0.1", "8081"],
                      runner.commands)
        self.assertFalse(any("Bluetooth PAN" in " ".join(c)
                             for c in runner.commands))

    def test_one_failing_service_is_a_warning(self):
        runner = FakeRunner(MAC_SERVICES,
                            fail=lambda cmd: "Wi-Fi" in cmd)
        result = SystemProxyConfig("macos", runner=runner).enable(8080)

        self.assertTrue(result.ok)
        self.assertEqual(len(result.warnings), 2)
        self.assertIn("1/2", result.message)
        # the other service was still configured
        self.assertIn(["networksetup", "-setwebproxy", "Thunderbolt Bridge",
                       "127.0.0.1", "8080"], runner.commands)

    def test_listing_failure_fails_the_operation(self):
        result = SystemProxyConfig("macos", runner=FakeRunner()).enable(8080)
        self.assertFalse(result.ok)

    def test_no_services_fails_the_operation(self):
        runner = FakeRunner("An asterisk (*) denotes ...\n")
        self.assertFalse(SystemProxyConfig("macos", runner=runner).disable())

    def test_disable_turns_proxies_off(self):
        runner = FakeRunner(MAC_SERVICES)
        result = SystemProxyConfig("macos", runner=runner).disable()

        self.assertTrue(result.ok)
        self.assertIn(["networksetup", "-setwebproxystate", "Wi-Fi", "off"],
                      runner.commands)
        self.assertIn(["networksetup", "-setsecurewebproxystate",
                       "Thunderbolt Bridge", "off"], runner.commands)

    def test_missing_tool_fails_the_operation(self):
        runner = FakeRunner(MAC_SERVICES, missing=True)
        result = SystemProxyConfig("macos", runner=runner).enable(8080)
        self.assertFalse(result.ok)
        self.assertIn("Cannot enable", result.message)


class TestWindows(unittest.TestCase):

    def test_enable_writes_registry_values(self):
        runner = FakeRunner()
        result = SystemProxyConfig("windows", runner=runner).enable(8085)

        self.assertTrue(result.ok)
        flat = [" ".join(c) for c in runner.commands]
        self.assertTrue(any("ProxyServer" in c and
                            "http=127.0.0.1:8085;https=127.0.0.1:8085" in c
                            for c in flat))
        self.assertTrue(any("ProxyEnable" in c and c.endswith("/d 1 /f")
                            for c in flat))
        self.assertTrue(all(c[:2] == ["reg", "add"] for c in runner.commands))

    def test_failed_value_is_a_warning(self):
        runner = FakeRunner(fail=lambda cmd: "ProxyOverride" in cmd)
        result = SystemProxyConfig("windows", runner=runner).enable(8080)
        self.assertTrue(result.ok)
        self.assertEqual(len(result.warnings), 1)
        self.assertIn("ProxyOverride", result.warnings[0])

    def test_disable_clears_proxy_enable(self):
        runner = FakeRunner()
        result = SystemProxyConfig("windows", runner=runner).disable()
        self.assertTrue(result.ok)
        self.assertEqual(len(runner.commands), 1)
        self.assertTrue(" ".join(runner.commands[0]).endswith(
            "ProxyEnable /t REG_DWORD /d 0 /f"))

    def test_missing_reg_fails(self):
        result = SystemProxyConfig(
            "windows", runner=FakeRunner(missing=True)).disable()
        self.assertFalse(result.ok)


class TestLinux(unittest.TestCase):

    def test_enable_sets_gnome_keys(self):
        runner = FakeRunner()
        result = SystemProxyConfig("linux", runner=runner).enable(8090)

        self.assertTrue(result.ok)
        self.assertIn(["gsettings", "set", "org.gnome.system.proxy.http",
                       "port", "8090"], runner.commands)
        self.assertIn(["gsettings", "set", "org.gnome.system.proxy.https",
                       "host", "'127.0.0.1'"], runner.commands)
        # mode switches last, once host and port are in place
        self.assertEqual(runner.commands[-1],
                         ["gsettings", "set", "org.gnome.system.proxy",
                          "mode", "'manual'"])

    def test_disable_sets_mode_none(self):
        runner = FakeRunner()
        result = SystemProxyConfig("linux", runner=runner).disable()
        self.assertTrue(result.ok)
        self.assertEqual(runner.commands, [
            ["gsettings", "set", "org.gnome.system.proxy", "mode", "'none'"],
        ])

    def test_disable_restores_previous_ignore_hosts(self):
        previous = "['localhost', '*.corp.example']"
        runner = FakeRunner(get_output=previous + "\n")
        proxy = SystemProxyConfig("linux", runner=runner)

        proxy.enable(8090)
        proxy.enable(8091)
        runner.commands.clear()
        result = proxy.disable()

        self.assertTrue(result.ok)
        self.assertEqual(runner.commands, [
            ["gsettings", "set", "org.gnome.system.proxy", "mode", "'none'"],
            ["gsettings", "set", "org.gnome.system.proxy",
             "ignore-hosts", previous],
        ])
        # restored only once
        runner.commands.clear()
        proxy.disable()
        self.assertEqual(len(runner.commands), 1)

    def test_enable_reads_ignore_hosts_once(self):
        runner = FakeRunner(get_output="['localhost']")
        proxy = SystemProxyConfig("linux", runner=runner)
        proxy.enable(8090)
        proxy.enable(8091)
        gets = [c for c in runner.commands if c[:2] == ["gsettings", "get"]]
        self.assertEqual(len(gets), 1)

    def test_timeout_is_a_warning(self):
        def runner(cmd):
            raise subprocess.TimeoutExpired(cmd, 15)

        result = SystemProxyConfig("linux", runner=runner).disable()
        self.assertTrue(result.ok)
        self.assertEqual(len(result.warnings), 1)
        self.assertIn("timed out", result.warnings[0])

    def test_missing_gsettings_fails(self):
        result = SystemProxyConfig(
            "linux", runner=FakeRunner(missing=True)).enable(8080)
        self.assertFalse(result.ok)


if __name__ == '__main__':
    unittest.main()
