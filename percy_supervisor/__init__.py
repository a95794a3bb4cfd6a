"""
Supervisor for the Percy visual-testing CLI.

This package exposes typed helpers for fetching a BrowserStack Percy token,
writing the runtime config, launching the Percy binary and polling its local
health endpoint, composed behind the :class:`percy_supervisor.percy.Percy`
facade.
"""

from __future__ import annotations

__all__ = [
    "binary",
    "config",
    "health",
    "launcher",
    "main",
    "percy",
    "percy_config",
    "project_token",
    "types",
]
