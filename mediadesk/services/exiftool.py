"""ExifTool service - the external metadata tool as an injected capability.

Locating the tool is a one-time ``initialize`` step owned by the application
context; afterwards the service only answers "ready to execute commands".
There is no process-wide instance.
"""
import json
import logging
import shutil
import subprocess
from pathlib import Path
from typing import Any, Optional

from mediadesk.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


class ExifToolService:
    """Run ExifTool commands for metadata read/write.

    Usage:
        exiftool = ExifToolService()
        if exiftool.initialize():
            meta = exiftool.read_metadata(path)
            exiftool.write_tags(path, {"XMP:Subject": ["beach", "sunset"]})
        exiftool.shutdown()
    """

    def __init__(self, executable: Optional[Path] = None, timeout: float = 60.0):
        """Initialize ExifTool service.

        Args:
            executable: Explicit path to exiftool; searched on PATH when None
            timeout: Seconds allowed per command
        """
        self._configured_path = executable
        self._timeout = timeout
        self._executable: Optional[str] = None
        self._version: Optional[str] = None

    @property
    def is_ready(self) -> bool:
        return self._executable is not None

    @property
    def version(self) -> Optional[str]:
        return self._version

    def initialize(self) -> bool:
        """Locate and verify the exiftool binary.

        Returns:
            True if commands can be executed. A missing tool is not an error;
            callers degrade by checking ``is_ready``.
        """
        if self.is_ready:
            return True

        candidate = str(self._configured_path) if self._configured_path else shutil.which("exiftool")
        if not candidate:
            logger.warning("ExifTool not found on PATH - metadata writing disabled")
            return False

        try:
            completed = subprocess.run(
                [candidate, "-ver"],
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=True,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"ExifTool at {candidate} is not usable: {e}")
            return False

        self._executable = candidate
        self._version = completed.stdout.strip()
        logger.info(f"ExifTool {self._version} ready at {candidate}")
        return True

    def execute(self, args: list[str]) -> str:
        """Run one exiftool command and return its stdout.

        Raises:
            ConfigurationError: tool not initialized
            RuntimeError: exiftool exited with an error
        """
        if self._executable is None:
            raise ConfigurationError("ExifTool is not initialized")

        logger.debug(f"exiftool {' '.join(args)}")
        try:
            completed = subprocess.run(
                [self._executable, *args],
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise RuntimeError(f"ExifTool timed out after {self._timeout}s") from e

        if completed.returncode != 0:
            raise RuntimeError(f"ExifTool failed ({completed.returncode}): {completed.stderr.strip()}")
        return completed.stdout

    def read_metadata(self, path: Path) -> dict[str, Any]:
        """Read all metadata of a file as a dict."""
        output = self.execute(["-json", "-charset", "UTF8", str(path)])
        data = json.loads(output or "[]")
        if isinstance(data, list) and data:
            return data[0]
        return {}

    def write_tags(self, path: Path, tags: dict[str, Any]) -> None:
        """Write tags in place. List values are appended as separate entries.

        Raises:
            ValueError: no tags given
        """
        if not tags:
            raise ValueError("No tags to write")

        args = ["-overwrite_original", "-charset", "UTF8"]
        for tag, value in tags.items():
            if isinstance(value, (list, tuple)):
                args.extend(f"-{tag}+={v}" for v in value)
            else:
                args.append(f"-{tag}={value}")
        args.append(str(path))
        self.execute(args)

    def shutdown(self) -> None:
        """Release the tool. ``initialize`` may be called again afterwards."""
        if self._executable is not None:
            logger.debug("ExifToolService shut down")
        self._executable = None
        self._version = None

    def __enter__(self) -> "ExifToolService":
        self.initialize()
        return self

    def __exit__(self, *args) -> None:
        self.shutdown()
