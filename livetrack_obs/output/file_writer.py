"""
File writer for rendered output.

Writes the raw provider payload and one text file per rendered template
leaf into the output folder.
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from ..config import LiveTrackSettings, get_settings

logger = logging.getLogger(__name__)


class FileWriter:
    """
    Persists rendered output to disk.

    Files are replaced atomically so a reader such as an OBS text source
    never sees a half-written value. Nested template entries are written
    as dotted names, e.g. ``fitnessPointData.distanceInMiles.txt``.
    """

    def __init__(
        self,
        settings: Optional[LiveTrackSettings] = None,
    ):
        """
        Initialize the writer.

        Args:
            settings: Application settings.
        """
        self.settings = settings or get_settings()
        self.output_folder = Path(self.settings.output.output_folder)
        self.file_extension = self.settings.output.file_extension

    def write_json(self, name: str, payload: Any) -> Path:
        """
        Write a JSON document.

        Args:
            name: File name inside the output folder.
            payload: JSON serializable data.

        Returns:
            Path of the written file.
        """
        text = json.dumps(payload, indent=2, ensure_ascii=False)
        return self._write(self.output_folder / _safe_name(name), text)

    def write_rendered(self, rendered: Mapping[str, Any]) -> List[Path]:
        """
        Write one file per leaf of a rendered tree.

        Args:
            rendered: Rendered output tree.

        Returns:
            Paths of the written files.
        """
        written = []
        for name, text in flatten(rendered).items():
            path = self.output_folder / f"{_safe_name(name)}{self.file_extension}"
            written.append(self._write(path, text))

        logger.debug(f"Wrote {len(written)} template files to {self.output_folder}")
        return written

    def _write(self, path: Path, text: str) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

        return path


def flatten(tree: Mapping[str, Any], prefix: str = "") -> Dict[str, str]:
    """Flatten a rendered tree into ``{"a.b": text}``."""
    flat: Dict[str, str] = {}
    for key, value in tree.items():
        name = f"{prefix}{key}"
        if isinstance(value, Mapping):
            flat.update(flatten(value, f"{name}."))
        else:
            flat[name] = "" if value is None else str(value)
    return flat


def _safe_name(name: str) -> str:
    return name.replace("/", "_").replace("\\", "_").replace(os.sep, "_")
