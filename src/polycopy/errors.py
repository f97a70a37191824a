"""Exception hierarchy for polycopy."""

from __future__ import annotations


class PolycopyError(Exception):
    """Base class for polycopy errors."""


class ConfigError(PolycopyError):
    """Fatal configuration problem (e.g. no enabled wallet)."""
