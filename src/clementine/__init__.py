"""Clementine: a terminal coding assistant."""

from importlib.metadata import version as _v

try:
    __version__ = _v("clementine")
except Exception:
    __version__ = "0.0.0"
