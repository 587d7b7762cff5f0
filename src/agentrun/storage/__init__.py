"""Embedded key/value store and output file storage."""

from .kv import EmbeddedKVStore
from .outputs import LocalOutputStorage, gather_output_files, resolve_output_path

__all__ = [
    "EmbeddedKVStore",
    "LocalOutputStorage",
    "gather_output_files",
    "resolve_output_path",
]
