"""Image metadata writer interface."""
from abc import ABC, abstractmethod
from typing import List, Sequence


class MetadataWriter(ABC):
    """Interface for writing tags into image files."""

    @abstractmethod
    async def write_field(self, key: str, value: str, paths: Sequence[str]) -> List[str]:
        """
        Write one tag value to several images.

        Args:
            key: Tag name, e.g. ``XMP-iptcExt:PersonInImage``
            value: Value to write
            paths: Images to update

        Returns:
            Paths that were written successfully. Per-file failures are logged
            and skipped.
        """
        pass

    @abstractmethod
    async def read_list_field(self, key: str, path: str) -> List[str]:
        """Read a list-valued tag from one image, empty if absent or unreadable."""
        pass
