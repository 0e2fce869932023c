"""Installer tools: the collaborators that actually install and remove packages."""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import sys
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from .models import normalize_name

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

_WILDCARD_INTERPRETERS = ("", "all", "*")


def parse_show_output(text: str) -> dict[str, str]:
    """Parse the ``Key: value`` report printed by ``pip show``.

    Keys are returned as printed (``Name``, ``Version``, ``Requires``, ...). Indented
    continuation lines are appended to the previous key; only the first package of a
    multi-package report is parsed.

        >>> parse_show_output("Name: six\\nVersion: 1.16.0\\n")
        {'Name': 'six', 'Version': '1.16.0'}

    """
    fields: dict[str, str] = {}
    last_key: str | None = None
    for line in text.splitlines():
        if line.strip() == "---":
            break
        if line[:1].isspace() and last_key is not None:
            fields[last_key] = f"{fields[last_key]}\n{line.strip()}".strip()
            continue
        key, sep, value = line.partition(":")
        if not sep or not key.strip():
            continue
        last_key = key.strip()
        fields[last_key] = value.strip()
    return fields


def split_requires(value: str | None) -> list[str]:
    """Split the comma separated ``Requires`` field of ``pip show``."""
    if not value:
        return []
    return [name.strip() for name in value.split(",") if name.strip()]


class InstallerTool(ABC):
    """Runs installer commands such as ``pip install six``."""

    @abstractmethod
    def run(self, argv: Sequence[str], interpreter_version: str | None = None) -> int:
        """Run a command and return its exit code (``-1`` if it could not be started)."""
        raise NotImplementedError

    @abstractmethod
    def run_capture(self, argv: Sequence[str], interpreter_version: str | None = None) -> tuple[str, int]:
        """Run a command and return its standard output and exit code."""
        raise NotImplementedError

    def show(self, package: str, interpreter_version: str | None = None) -> dict[str, str] | None:
        """Describe an installed package, or return None if it is not installed."""
        output, code = self.run_capture(["pip", "show", package], interpreter_version)
        if code != 0:
            return None
        fields = parse_show_output(output)
        if normalize_name(fields.get("Name")) != normalize_name(package):
            return None
        return fields

    def list_installed(self, interpreter_version: str | None = None) -> list[dict[str, str]]:
        """List installed distributions as ``{"name": ..., "version": ...}`` dicts."""
        output, code = self.run_capture(["pip", "list", "--format=json"], interpreter_version)
        if code != 0:
            logger.warning("`pip list` exited with code %d", code)
            return []
        try:
            entries = json.loads(output or "[]")
        except ValueError:
            logger.warning("Could not parse the output of `pip list --format=json`")
            return []
        return [
            {"name": str(entry["name"]), "version": str(entry.get("version", ""))}
            for entry in entries
            if isinstance(entry, dict) and entry.get("name")
        ]


class PipInstaller(InstallerTool):
    """Runs pip as a module of a Python interpreter (``python -m pip ...``)."""

    def __init__(self, timeout: float | None = None) -> None:
        self.timeout: float | None = timeout

    @staticmethod
    def interpreter(interpreter_version: str | None = None) -> str:
        """Find the interpreter for `interpreter_version`, defaulting to the running one."""
        if interpreter_version is None or interpreter_version.strip().lower() in _WILDCARD_INTERPRETERS:
            return sys.executable
        executable = shutil.which(f"python{interpreter_version.strip()}")
        if executable is None:
            logger.warning("python%s was not found on PATH; using %s", interpreter_version, sys.executable)
            return sys.executable
        return executable

    def command(self, argv: Sequence[str], interpreter_version: str | None = None) -> list[str]:
        args = list(argv)
        if args and args[0] == "pip":
            return [self.interpreter(interpreter_version), "-m", "pip", *args[1:]]
        return args

    def run(self, argv: Sequence[str], interpreter_version: str | None = None) -> int:
        cmd = self.command(argv, interpreter_version)
        logger.info("Running `%s`", " ".join(cmd))
        try:
            completed = subprocess.run(  # noqa: S603
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("Could not run `%s`: %s", " ".join(cmd), e)
            return -1
        if completed.returncode != 0:
            logger.warning("`%s` exited with code %d:\n%s", " ".join(cmd), completed.returncode, completed.stdout)
        else:
            logger.debug(completed.stdout)
        return completed.returncode

    def run_capture(self, argv: Sequence[str], interpreter_version: str | None = None) -> tuple[str, int]:
        cmd = self.command(argv, interpreter_version)
        logger.debug("Running `%s`", " ".join(cmd))
        try:
            completed = subprocess.run(  # noqa: S603
                cmd,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("Could not run `%s`: %s", " ".join(cmd), e)
            return "", -1
        return completed.stdout, completed.returncode
