"""Configuration utilities for libdeps."""

from platformdirs import PlatformDirs

APP_DIRS = PlatformDirs("libdeps", "libdeps")
