"""Desired-state layer.

Holds the single, atomically replaced snapshot of what every device's
attributes should be, and the loaders that refresh it.
"""

from pyreconcile.state.sources import (
    DesiredStateSource,
    FileDesiredStateSource,
    HttpDesiredStateSource,
    parse_document,
    source_for,
)
from pyreconcile.state.store import DesiredStateStore

__all__ = [
    "DesiredStateSource",
    "DesiredStateStore",
    "FileDesiredStateSource",
    "HttpDesiredStateSource",
    "parse_document",
    "source_for",
]
