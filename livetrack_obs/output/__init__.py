"""
Output module.

Persists raw payloads and rendered templates to the output folder.
"""
from .file_writer import FileWriter, flatten

__all__ = [
    "FileWriter",
    "flatten",
]
