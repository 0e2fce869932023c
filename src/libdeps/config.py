"""Configuration settings for libdeps."""

from __future__ import annotations

from enum import Enum
from pathlib import Path  # noqa: TC003

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    CliImplicitFlag,
    SettingsConfigDict,
)

from .db import DEFAULT_DB_PATH
from .options import InstallOptions
from .registry import DEFAULT_CACHE_TTL, DEFAULT_TIMEOUT, PYPI_URL
from .resolution import DEFAULT_DEPTH_LIMIT


class Action(str, Enum):
    """What the command line should do."""

    install = "install"
    uninstall = "uninstall"
    upgrade = "upgrade"
    outdated = "outdated"
    list = "list"
    refresh = "refresh"
    resolve = "resolve"
    order = "order"
    conflicts = "conflicts"
    cycles = "cycles"
    affected = "affected"
    prune = "prune"
    stats = "stats"
    graph = "graph"
    logs = "logs"


class OutputFormat(str, Enum):
    """Output formats for libdeps."""

    json = "json"
    dot = "dot"
    text = "text"


class Settings(BaseSettings):
    """Settings for libdeps."""

    action: Action = Field(
        default=Action.list,
        description="""What to do. `install`, `uninstall` and `upgrade` change
            the environment; `resolve`, `order`, `conflicts`, `cycles`,
            `affected`, `prune`, `stats` and `graph` inspect the dependency
            graph; `list`, `outdated`, `refresh` and `logs` inspect the
            installation records.""",
    )
    target: str = Field(
        default="",
        description="""The library to act on, e.g. `flask`. For `uninstall`
            and `prune` several libraries may be given, separated by commas.""",
    )
    pin: str | None = Field(
        default=None,
        description="""Install exactly this version of the target library.""",
    )
    python: str | None = Field(
        default=None,
        description="""Interpreter version to install for, e.g. `3.11`.
            Omit it (or use `all`) for the running interpreter.""",
    )
    install_dependencies: CliImplicitFlag[bool] = Field(
        default=True,
        description="""Also install the target's direct dependencies.""",
    )
    check_compatibility: CliImplicitFlag[bool] = Field(
        default=True,
        description="""Refuse to install a library that does not declare
            support for `--python`.""",
    )
    upgrade: CliImplicitFlag[bool] = Field(default=True, description="Upgrade libraries that are already installed.")
    user: CliImplicitFlag[bool] = Field(default=True, description="Install into the user site directory.")
    cache: CliImplicitFlag[bool] = Field(default=True, description="Use pip's cache; `--no-cache` disables it.")
    force_reinstall: CliImplicitFlag[bool] = Field(default=False, description="Reinstall even if up to date.")
    pre: CliImplicitFlag[bool] = Field(default=False, description="Allow pre-release versions.")
    verbose: CliImplicitFlag[bool] = Field(default=False, description="Run pip verbosely.")
    install_target: str | None = Field(default=None, description="Install into this directory (`pip --target`).")
    extra_index_url: str | None = Field(default=None, description="An additional package index.")
    trusted_host: str | None = Field(default=None, description="An additional trusted host.")
    proxy_host: str | None = Field(default=None, description="Proxy host; setting it enables the proxy.")
    proxy_port: int | None = Field(default=None, description="Proxy port.")
    proxy_user: str | None = Field(default=None, description="Proxy user name.")
    proxy_password: str | None = Field(default=None, description="Proxy password.")
    verify_ssl: CliImplicitFlag[bool] = Field(
        default=True,
        description="""Verify TLS certificates. Disabling it trusts the PyPI
            hosts unconditionally.""",
    )
    cert: str | None = Field(default=None, description="Path to an alternate CA bundle.")
    database: Path = Field(
        default=DEFAULT_DB_PATH,
        description="""Alternative path to load/store the installation
        records, or ':memory:' to keep them in memory only.""",
    )
    graph_file: Path | None = Field(
        default=None,
        description="""JSON file mapping library names to lists of
            requirements, loaded into the dependency graph.""",
    )
    common_packages: CliImplicitFlag[bool] = Field(
        default=True,
        description="""Seed the dependency graph with a table of well-known
            packages.""",
    )
    registry_url: str = Field(default=PYPI_URL, description="Root of the PyPI JSON API.")
    cache_ttl: float = Field(default=DEFAULT_CACHE_TTL, description="Seconds registry responses stay cached.")
    timeout: float = Field(default=DEFAULT_TIMEOUT, description="Registry request timeout in seconds.")
    max_workers: int = Field(default=2, description="Maximum number of installations to run concurrently.")
    depth_limit: int = Field(default=DEFAULT_DEPTH_LIMIT, description="Depth limit for resolving dependencies.")
    keep_failed_records: CliImplicitFlag[bool] = Field(
        default=False,
        description="""Keep the installation record of a library whose
            (re)installation failed instead of deleting it.""",
    )
    prune_graph: CliImplicitFlag[bool] = Field(
        default=False,
        description="""After uninstalling, remove the libraries no installed
            library requires from the dependency graph.""",
    )
    break_cycles: CliImplicitFlag[bool] = Field(
        default=False,
        description="""For `order` and `graph`, break dependency cycles
            first (the removed edges are reported).""",
    )
    output_file: Path | None = Field(
        default=None,
        description="""Output file path. If not provided, the output will be
        written to stdout.""",
    )
    output_format: OutputFormat = Field(default=OutputFormat.json, description="Output format.")
    force: CliImplicitFlag[bool] = Field(
        default=False,
        description="""Force the overwrite of the output file if it already
        exists.""",
    )
    log_level: str = Field(default="info", description="Log level")
    log_file: Path | None = Field(default=None, description="Write the log to this file instead of stderr.")
    version: CliImplicitFlag[bool] = Field(
        default=False,
        description="""Show the version of libdeps and exit.""",
    )

    model_config = SettingsConfigDict(
        env_prefix="LIBDEPS_",
        cli_kebab_case=True,
        nested_model_default_partial_update=True,
    )

    @property
    def targets(self) -> list[str]:
        return [name.strip() for name in self.target.split(",") if name.strip()]

    def install_options(self) -> InstallOptions:
        """Translate the command line into the options of a single installation."""
        return InstallOptions(
            package_name=self.target.strip(),
            version=self.pin,
            upgrade_if_installed=self.upgrade,
            install_dependencies=self.install_dependencies,
            check_compatibility=self.check_compatibility,
            python_version=self.python,
            install_as_user=self.user,
            no_cache=not self.cache,
            force_reinstall=self.force_reinstall,
            pre_release=self.pre,
            verbose=self.verbose,
            target_directory=self.install_target,
            extra_index_url=self.extra_index_url,
            trusted_host=self.trusted_host,
            use_proxy=self.proxy_host is not None,
            proxy_host=self.proxy_host,
            proxy_port=self.proxy_port,
            proxy_user=self.proxy_user,
            proxy_password=self.proxy_password,
            verify_ssl=self.verify_ssl,
            cert_path=self.cert,
        )
