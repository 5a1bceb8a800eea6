"""Metadata writer using the exiftool command line tool."""
import asyncio
import json
from typing import List, Sequence, Tuple

from facegroups.core.config import settings
from facegroups.core.exceptions import MetadataWriteError
from facegroups.core.logging import get_logger
from facegroups.domain.interfaces.metadata.metadata_writer import MetadataWriter

logger = get_logger(__name__)

LIST_SEPARATOR = ", "


class ExifToolMetadataWriter(MetadataWriter):
    """Reads and writes image tags by running exiftool.

    List tags are written as one separated string and split by exiftool
    (``-sep ", "``), so ``"Alice, Bob"`` becomes two list entries.
    """

    def __init__(self, executable: str = settings.EXIFTOOL_PATH) -> None:
        self.executable = executable

    async def _run(self, *args: str) -> Tuple[int, str, str]:
        try:
            process = await asyncio.create_subprocess_exec(
                self.executable,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise MetadataWriteError(f"Cannot run exiftool: {e}", details={"executable": self.executable}) from e
        stdout, stderr = await process.communicate()
        return process.returncode, stdout.decode("utf-8", "replace"), stderr.decode("utf-8", "replace")

    async def write_field(self, key: str, value: str, paths: Sequence[str]) -> List[str]:
        written: List[str] = []
        for path in paths:
            code, _, stderr = await self._run(
                "-overwrite_original", "-sep", LIST_SEPARATOR, f"-{key}={value}", path
            )
            if code != 0:
                logger.warning("exiftool write failed", path=path, key=key, error=stderr.strip())
                continue
            written.append(path)
        logger.debug("Wrote metadata field", key=key, files=len(written), requested=len(paths))
        return written

    async def read_list_field(self, key: str, path: str) -> List[str]:
        code, stdout, stderr = await self._run("-json", f"-{key}", path)
        if code != 0:
            logger.warning("exiftool read failed", path=path, key=key, error=stderr.strip())
            return []
        try:
            records = json.loads(stdout or "[]")
        except json.JSONDecodeError:
            logger.warning("Unexpected exiftool output", path=path, key=key)
            return []

        tag = key.split(":")[-1]
        value = records[0].get(tag) if records else None
        if value is None:
            return []
        if isinstance(value, list):
            return [str(item) for item in value]
        return [str(value)]
