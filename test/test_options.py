from unittest import TestCase

from libdeps.options import DEFAULT_TRUSTED_HOSTS, InstallOptions


class TestInstallOptions(TestCase):
    def test_defaults(self) -> None:
        options = InstallOptions("flask")
        self.assertTrue(options.is_valid())
        self.assertTrue(options.is_wildcard_python())
        self.assertIsNone(options.target_python)
        self.assertFalse(options.has_advanced_options())
        self.assertEqual(
            ["pip", "install", "--upgrade", "--user", "--no-warn-script-location", "flask"],
            options.build_install_command(),
        )

    def test_validity(self) -> None:
        self.assertFalse(InstallOptions("").is_valid())
        self.assertFalse(InstallOptions("   ").is_valid())

    def test_version_pin_only_applies_to_target(self) -> None:
        options = InstallOptions("flask", version="2.0.1", upgrade_if_installed=False, install_as_user=False)
        self.assertEqual(["pip", "install", "flask==2.0.1"], options.build_install_command())
        self.assertEqual(["pip", "install", "click"], options.for_dependency("click").build_install_command())

    def test_package_name_is_stripped(self) -> None:
        options = InstallOptions(" flask ", version="2.0", upgrade_if_installed=False, install_as_user=False)
        self.assertEqual("flask", options.package_name)
        self.assertEqual(["pip", "install", "flask==2.0"], options.build_install_command())
        self.assertEqual(["pip", "uninstall", "-y", "flask"], options.build_uninstall_command())

    def test_flag_order(self) -> None:
        options = InstallOptions(
            "requests",
            force_reinstall=True,
            no_cache=True,
            pre_release=True,
            verbose=True,
            verify_ssl=False,
            cert_path="/etc/ca.pem",
            use_proxy=True,
            proxy_host="proxy.local",
            proxy_port=3128,
            proxy_user="me",
            proxy_password="secret",
            target_directory="/tmp/site",
            extra_index_url="https://mirror.local/simple",
            trusted_host="mirror.local",
        )
        trusted = [arg for host in DEFAULT_TRUSTED_HOSTS for arg in ("--trusted-host", host)]
        self.assertEqual(
            [
                "pip",
                "install",
                "--upgrade",
                "--force-reinstall",
                "--no-cache-dir",
                "--pre",
                "--user",
                "--no-warn-script-location",
                "--verbose",
                *trusted,
                "--cert",
                "/etc/ca.pem",
                "--proxy",
                "me:secret@proxy.local:3128",
                "--target",
                "/tmp/site",
                "--extra-index-url",
                "https://mirror.local/simple",
                "--trusted-host",
                "mirror.local",
                "requests",
            ],
            options.build_install_command(),
        )
        self.assertTrue(options.has_advanced_options())

    def test_proxy_url(self) -> None:
        self.assertIsNone(InstallOptions("x", proxy_host="proxy").proxy_url())
        self.assertIsNone(InstallOptions("x", use_proxy=True).proxy_url())
        self.assertEqual("proxy", InstallOptions("x", use_proxy=True, proxy_host="proxy").proxy_url())
        self.assertEqual(
            "me@proxy:8080",
            InstallOptions("x", use_proxy=True, proxy_host="proxy", proxy_port=8080, proxy_user="me").proxy_url(),
        )

    def test_python_version(self) -> None:
        for wildcard in (None, "all", "ALL", " "):
            self.assertIsNone(InstallOptions("x", python_version=wildcard).target_python, wildcard)
        self.assertEqual("3.11", InstallOptions("x", python_version=" 3.11 ").target_python)

    def test_uninstall_command(self) -> None:
        options = InstallOptions("flask")
        self.assertEqual(["pip", "uninstall", "-y", "flask"], options.build_uninstall_command())
        self.assertEqual(["pip", "uninstall", "-y", "click"], options.build_uninstall_command("click"))

    def test_summary(self) -> None:
        self.assertEqual(
            "Install flask v2.0 with upgrade + dependencies + compatibility check (Python 3.11)",
            InstallOptions("flask", version="2.0", python_version="3.11").summary(),
        )
        self.assertEqual(
            "Install six",
            InstallOptions(
                "six", upgrade_if_installed=False, install_dependencies=False, check_compatibility=False
            ).summary(),
        )

    def test_for_dependency(self) -> None:
        options = InstallOptions("flask", version="2.0", no_cache=True, python_version="3.11")
        dependency = options.for_dependency("click")
        self.assertEqual("click", dependency.package_name)
        self.assertIsNone(dependency.version)
        self.assertFalse(dependency.install_dependencies)
        self.assertFalse(dependency.check_compatibility)
        self.assertTrue(dependency.no_cache)
        self.assertEqual("3.11", dependency.python_version)
        self.assertEqual("2.0", options.version)
