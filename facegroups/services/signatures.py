"""File signatures and incremental scan diffing."""
import os
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple
from uuid import UUID

from facegroups.core.logging import get_logger
from facegroups.domain.entities.folder import FileSignature, FolderFaceData
from facegroups.domain.value_objects.recognition import FileDiff
from facegroups.services.mutations import purge_faces

logger = get_logger(__name__)

SignatureReader = Callable[[str], Optional[FileSignature]]


def read_file_signature(path: str) -> Optional[FileSignature]:
    """Return the (size, mtime) signature of a file, or None if it cannot be stat'ed."""
    try:
        stat = os.stat(path)
    except OSError:
        return None
    return FileSignature(file_size=stat.st_size, modified_at=stat.st_mtime)


def compute_file_diff(
    paths: Iterable[str],
    scanned_files: Dict[str, FileSignature],
    reader: SignatureReader = read_file_signature,
) -> FileDiff:
    """Split the current image list into files to scan, drop and keep.

    - ``to_scan``: new files and files whose signature changed or cannot be read
    - ``to_remove``: scanned files that disappeared, plus scanned files that changed
    - ``unchanged``: files whose signature matches the recorded one
    """
    current = list(dict.fromkeys(paths))
    current_set = set(current)
    to_scan: List[str] = []
    unchanged: List[str] = []

    for path in current:
        recorded = scanned_files.get(path)
        if recorded is None:
            to_scan.append(path)
            continue
        signature = reader(path)
        if signature is not None and signature == recorded:
            unchanged.append(path)
        else:
            to_scan.append(path)

    deleted = [path for path in scanned_files if path not in current_set]
    modified = [path for path in to_scan if path in scanned_files]
    diff = FileDiff(to_scan=to_scan, to_remove=deleted + modified, unchanged=unchanged)

    logger.debug(
        "Computed file diff",
        to_scan=len(diff.to_scan),
        to_remove=len(diff.to_remove),
        unchanged=len(diff.unchanged),
    )
    return diff


def carry_forward(data: FolderFaceData, diff: FileDiff) -> Tuple[FolderFaceData, Set[UUID]]:
    """Keep only faces of unchanged files and forget files that will be rescanned.

    Returns:
        The purged aggregate and the ids of the faces that were dropped
    """
    keep = set(diff.unchanged)
    dropped = {face.id for face in data.faces if face.image_path not in keep}
    result = purge_faces(data, dropped)
    removed_paths = set(diff.to_remove)
    result.scanned_files = {
        path: signature
        for path, signature in result.scanned_files.items()
        if path not in removed_paths
    }
    if dropped:
        logger.info("Dropped faces of changed files", folder=data.folder_path, faces=len(dropped))
    return result, dropped
