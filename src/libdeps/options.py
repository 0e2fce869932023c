"""Options controlling a single installation, and the pip commands they translate to."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass

WILDCARD_PYTHON_VERSION = "all"

DEFAULT_TRUSTED_HOSTS: tuple[str, ...] = ("pypi.org", "pypi.python.org", "files.pythonhosted.org")
"""Hosts trusted when SSL verification is disabled."""


@dataclass
class InstallOptions:
    """What to install and how.

    The version pin only ever applies to `package_name`; dependencies installed in
    the same run get the same flags but no pin (see `for_dependency`).
    """

    package_name: str
    version: str | None = None
    upgrade_if_installed: bool = True
    install_dependencies: bool = True
    check_compatibility: bool = True
    python_version: str | None = None

    install_as_user: bool = True
    no_cache: bool = False
    force_reinstall: bool = False
    pre_release: bool = False
    verbose: bool = False
    target_directory: str | None = None
    extra_index_url: str | None = None
    trusted_host: str | None = None

    use_proxy: bool = False
    proxy_host: str | None = None
    proxy_port: int | None = None
    proxy_user: str | None = None
    proxy_password: str | None = None

    verify_ssl: bool = True
    cert_path: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.package_name, str):
            self.package_name = self.package_name.strip()

    def is_valid(self) -> bool:
        return bool(self.package_name and self.package_name.strip())

    def is_wildcard_python(self) -> bool:
        """Whether no specific interpreter version was requested."""
        return self.python_version is None or self.python_version.strip().lower() in (WILDCARD_PYTHON_VERSION, "")

    @property
    def target_python(self) -> str | None:
        """The requested interpreter version, or None for the wildcard."""
        if self.is_wildcard_python():
            return None
        return self.python_version.strip()  # type: ignore[union-attr]

    def proxy_url(self) -> str | None:
        if not self.use_proxy or not self.proxy_host:
            return None
        credentials = ""
        if self.proxy_user:
            credentials = self.proxy_user
            if self.proxy_password:
                credentials = f"{credentials}:{self.proxy_password}"
            credentials = f"{credentials}@"
        port = f":{self.proxy_port}" if self.proxy_port else ""
        return f"{credentials}{self.proxy_host}{port}"

    def build_install_command(self) -> list[str]:
        """Build the ``pip install`` argument vector, starting with ``pip``."""
        command = ["pip", "install"]
        if self.upgrade_if_installed:
            command.append("--upgrade")
        if self.force_reinstall:
            command.append("--force-reinstall")
        if self.no_cache:
            command.append("--no-cache-dir")
        if self.pre_release:
            command.append("--pre")
        if self.install_as_user:
            command.extend(("--user", "--no-warn-script-location"))
        if self.verbose:
            command.append("--verbose")
        if not self.verify_ssl:
            for host in DEFAULT_TRUSTED_HOSTS:
                command.extend(("--trusted-host", host))
        if self.cert_path:
            command.extend(("--cert", self.cert_path))
        proxy = self.proxy_url()
        if proxy is not None:
            command.extend(("--proxy", proxy))
        if self.target_directory:
            command.extend(("--target", self.target_directory))
        if self.extra_index_url:
            command.extend(("--extra-index-url", self.extra_index_url))
        if self.trusted_host:
            command.extend(("--trusted-host", self.trusted_host))

        if self.version:
            command.append(f"{self.package_name}=={self.version}")
        else:
            command.append(self.package_name)
        return command

    def build_uninstall_command(self, package: str | None = None) -> list[str]:
        return ["pip", "uninstall", "-y", package or self.package_name]

    def has_advanced_options(self) -> bool:
        return bool(
            self.target_directory
            or self.extra_index_url
            or self.trusted_host
            or self.use_proxy
            or not self.verify_ssl
            or self.cert_path
        )

    def summary(self) -> str:
        """A one-line human readable description, e.g. ``Install flask v2.0 with upgrade + dependencies``."""
        text = f"Install {self.package_name}"
        if self.version:
            text += f" v{self.version}"
        if self.upgrade_if_installed:
            text += " with upgrade"
        if self.install_dependencies:
            text += " + dependencies"
        if self.check_compatibility:
            text += " + compatibility check"
        if not self.is_wildcard_python():
            text += f" (Python {self.python_version})"
        return text

    def for_dependency(self, name: str) -> InstallOptions:
        """Copy these options for installing dependency `name` (no pin, no nested dependencies)."""
        return dataclasses.replace(
            self,
            package_name=name,
            version=None,
            install_dependencies=False,
            check_compatibility=False,
        )
