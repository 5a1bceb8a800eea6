"""Face library facade used by the presentation layer."""
import asyncio
import re
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set
from uuid import UUID

from send2trash import send2trash

from facegroups.core.exceptions import (
    DetectionError,
    InvalidMutationError,
    MetadataWriteError,
    PersistenceError,
    RegistryError,
)
from facegroups.core.logging import get_logger
from facegroups.domain.entities.face import DetectedFace, FaceGroup
from facegroups.domain.entities.folder import FolderFaceData
from facegroups.domain.entities.person import KnownPerson, PersonEmbedding
from facegroups.domain.interfaces.metadata.metadata_writer import MetadataWriter
from facegroups.domain.interfaces.registry.known_people import KnownPeopleRegistry
from facegroups.domain.interfaces.storage.face_data_store import FaceDataStore
from facegroups.domain.value_objects.recognition import (
    FaceCleanupPolicy,
    KnownPeopleMode,
    KnownPersonMatchRecord,
    MergeSuggestion,
    RecognitionConfig,
    RecognitionMode,
)
from facegroups.services import mutations
from facegroups.services.known_people import KnownPersonMatcher, verified_match
from facegroups.services.scanning import CheckpointCallback, ProgressCallback, ScanOrchestrator
from facegroups.services.suggestions import compute_merge_suggestions, compute_refinement_suggestions

logger = get_logger(__name__)

PERSON_SHOWN_TAG = "XMP-iptcExt:PersonInImage"

TrashFile = Callable[[str], None]


def merge_person_names(existing: Iterable[str], name: str) -> str:
    """Add a name to a person list tag, keeping the existing order.

    Existing values may themselves hold several names separated by commas or
    semicolons. Duplicates are dropped ignoring case.
    """
    names: List[str] = []
    seen: Set[str] = set()
    for value in list(existing) + [name]:
        for part in re.split(r"[,;]", value or ""):
            part = part.strip()
            if part and part.lower() not in seen:
                seen.add(part.lower())
                names.append(part)
    return ", ".join(names)


class FaceLibrary:
    """Coordinates the face data of one folder.

    Holds the loaded aggregate and applies scans, group mutations,
    suggestions and known people matching to it. Every successful change is
    written through the store; a failed write is kept as
    :attr:`persistence_warning` and retried on the next change or on
    :meth:`flush`.

    Example:
        ```python
        library = FaceLibrary("/photos/trip", store, orchestrator, config)
        await library.load()
        await library.scan(list_image_files("/photos/trip"))
        await library.merge_groups(source_id, target_id)
        ```
    """

    def __init__(
        self,
        folder_path: str,
        store: FaceDataStore,
        orchestrator: Optional[ScanOrchestrator],
        config: RecognitionConfig,
        registry: Optional[KnownPeopleRegistry] = None,
        metadata_writer: Optional[MetadataWriter] = None,
        cleanup_policy: FaceCleanupPolicy = FaceCleanupPolicy.NEVER,
        trash_file: TrashFile = send2trash,
        person_tag: str = PERSON_SHOWN_TAG,
    ) -> None:
        self.folder_path = folder_path
        self.store = store
        self.orchestrator = orchestrator
        self.config = config
        self.registry = registry
        self.matcher = KnownPersonMatcher(registry) if registry is not None else None
        self.metadata_writer = metadata_writer
        self.cleanup_policy = cleanup_policy
        self.trash_file = trash_file
        self.person_tag = person_tag

        self.data: FolderFaceData = FolderFaceData(folder_path=folder_path)
        self.has_stored_data = False
        self.merge_suggestions: List[MergeSuggestion] = []
        self.persistence_warning: Optional[str] = None
        self._dirty = False
        self._dismissed: Set[frozenset] = set()
        self._thumbnails: Dict[UUID, bytes] = {}

    # Loading and state

    async def load(self) -> FolderFaceData:
        """Load stored face data, dropping it if the cleanup policy says it expired."""
        stored = await self.store.load_aggregate(self.folder_path)
        if stored is not None and self._expired(stored):
            logger.info("Face data expired, deleting", folder=self.folder_path, policy=self.cleanup_policy.value)
            await self.store.delete_aggregate(self.folder_path)
            stored = None

        self.has_stored_data = stored is not None
        self.data = stored or FolderFaceData(folder_path=self.folder_path)
        self._thumbnails.clear()
        self.merge_suggestions = []

        problems = mutations.find_inconsistencies(self.data)
        if problems:
            logger.warning("Loaded face data is inconsistent", folder=self.folder_path, problems=problems[:10])
        return self.data

    def _expired(self, data: FolderFaceData) -> bool:
        max_age = self.cleanup_policy.max_age_seconds
        if max_age is None or data.last_scan_date is None:
            return False
        last_scan = data.last_scan_date
        if last_scan.tzinfo is None:
            last_scan = last_scan.replace(tzinfo=timezone.utc)
        return (datetime.now(timezone.utc) - last_scan).total_seconds() > max_age

    @property
    def faces(self) -> List[DetectedFace]:
        return self.data.faces

    @property
    def groups(self) -> List[FaceGroup]:
        """Groups in display order."""
        return mutations.sorted_groups(self.data.groups)

    def faces_in_group(self, group_id: UUID) -> List[DetectedFace]:
        return self.data.faces_in_group(group_id)

    def needs_rescan(self, config: Optional[RecognitionConfig] = None) -> bool:
        """True when stored data was built with a different recognition mode.

        Data written before modes were recorded counts as vision mode.
        """
        config = config or self.config
        if not self.has_stored_data or not self.data.faces:
            return False
        recorded = self.data.recognition_mode or RecognitionMode.VISION
        return recorded is not config.mode

    async def thumbnail(self, face_id: UUID) -> Optional[bytes]:
        """Thumbnail of a face, cached after the first load."""
        if face_id in self._thumbnails:
            return self._thumbnails[face_id]
        data = await self.store.load_thumbnail(face_id, self.folder_path)
        if data is not None:
            self._thumbnails[face_id] = data
        return data

    # Persistence

    async def _save(self) -> bool:
        try:
            await self.store.save_aggregate(self.data)
        except PersistenceError as e:
            self._dirty = True
            self.persistence_warning = str(e)
            logger.error("Failed to save face data, will retry", folder=self.folder_path, error=str(e))
            return False
        self._dirty = False
        self.persistence_warning = None
        self.has_stored_data = True
        return True

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    async def flush(self) -> bool:
        """Retry a failed write. Returns True when the stored data is current."""
        if not self._dirty:
            return True
        return await self._save()

    async def _commit(self, data: FolderFaceData) -> None:
        self.data = data
        await self._save()

    async def _apply(self, operation: Callable[..., FolderFaceData], *args) -> bool:
        try:
            result = operation(self.data, *args)
        except InvalidMutationError as e:
            logger.debug("Ignored invalid group change", operation=operation.__name__, reason=str(e), **e.details)
            return False
        await self._commit(result)
        return True

    async def _forget_faces(self, face_ids: Iterable[UUID]) -> None:
        for face_id in face_ids:
            self._thumbnails.pop(face_id, None)
            try:
                await self.store.delete_thumbnail(face_id, self.folder_path)
            except PersistenceError as e:
                logger.debug("Failed to delete thumbnail", face_id=str(face_id), error=str(e))

    # Scanning

    async def scan(
        self,
        image_paths: Sequence[str],
        force_full_scan: bool = False,
        on_progress: Optional[ProgressCallback] = None,
        on_checkpoint: Optional[CheckpointCallback] = None,
    ) -> bool:
        """Scan the folder. Returns False if a scan is already running.

        Unsaved changes are written first. If the write still fails, the scan
        builds on the in-memory data so those changes are kept.

        Raises:
            DetectionError: If the library was built without a scan orchestrator
        """
        if self.orchestrator is None:
            raise DetectionError("No face detector configured", details={"folder": self.folder_path})
        if not force_full_scan and not await self.flush():
            logger.warning("Scanning on top of unsaved changes", folder=self.folder_path)
        previous_ids = {face.id for face in self.data.faces}
        result = await self.orchestrator.scan(
            image_paths,
            self.folder_path,
            self.config,
            force_full_scan=force_full_scan,
            on_progress=on_progress,
            on_checkpoint=on_checkpoint,
            base=self.data if self._dirty and not force_full_scan else None,
        )
        if result is None:
            return False

        self.data = result
        self.has_stored_data = True
        current_ids = {face.id for face in result.faces}
        for face_id in previous_ids - current_ids:
            self._thumbnails.pop(face_id, None)

        error = self.orchestrator.last_persistence_error
        self._dirty = error is not None
        self.persistence_warning = str(error) if error is not None else None
        return True

    # Group changes

    async def merge_groups(self, source_id: UUID, target_id: UUID) -> bool:
        return await self._apply(mutations.merge_groups, source_id, target_id)

    async def ungroup_face(self, face_id: UUID) -> bool:
        return await self._apply(mutations.ungroup_face, face_id)

    async def merge_multiple_groups(self, group_ids: Sequence[UUID]) -> bool:
        return await self._apply(mutations.merge_multiple_groups, group_ids)

    async def ungroup_multiple(self, group_ids: Sequence[UUID]) -> bool:
        return await self._apply(mutations.ungroup_multiple, group_ids)

    async def move_face(self, face_id: UUID, target_id: UUID) -> bool:
        return await self._apply(mutations.move_face, face_id, target_id)

    async def move_faces(self, face_ids: Sequence[UUID], target_id: UUID) -> bool:
        return await self._apply(mutations.move_faces, face_ids, target_id)

    async def name_group(self, group_id: UUID, name: Optional[str]) -> bool:
        return await self._apply(mutations.name_group, group_id, name)

    async def set_representative(self, group_id: UUID, face_id: UUID) -> bool:
        return await self._apply(mutations.set_representative, group_id, face_id)

    async def create_new_group(self, face_ids: Sequence[UUID]) -> Optional[UUID]:
        """Put faces into a new group; returns its id, or None if nothing changed."""
        try:
            result, group_id = mutations.create_new_group(self.data, face_ids)
        except InvalidMutationError as e:
            logger.debug("Ignored invalid group change", operation="create_new_group", reason=str(e))
            return None
        await self._commit(result)
        return group_id

    async def delete_faces(self, face_ids: Sequence[UUID]) -> bool:
        doomed = [face_id for face_id in face_ids if self.data.get_face(face_id) is not None]
        if not await self._apply(mutations.delete_faces, face_ids):
            return False
        await self._forget_faces(doomed)
        return True

    async def delete_group(self, group_id: UUID, include_photos: bool = False) -> Set[str]:
        """Delete a group's faces and optionally move their photos to the trash.

        Photos that cannot be trashed are skipped; the face data is removed
        regardless.

        Returns:
            Paths of the photos that were trashed
        """
        try:
            result, face_ids, image_paths = mutations.delete_group(self.data, group_id)
        except InvalidMutationError as e:
            logger.debug("Ignored invalid group change", operation="delete_group", reason=str(e))
            return set()

        trashed: Set[str] = set()
        if include_photos:
            for path in image_paths:
                try:
                    await asyncio.to_thread(self.trash_file, path)
                except OSError as e:
                    logger.warning("Failed to move photo to trash", path=path, error=str(e))
                    continue
                trashed.add(path)
            result.scanned_files = {
                path: signature for path, signature in result.scanned_files.items() if path not in trashed
            }

        await self._commit(result)
        await self._forget_faces(face_ids)
        logger.info("Deleted group", group_id=str(group_id), faces=len(face_ids), trashed=len(trashed))
        return trashed

    async def delete_face_data(self) -> None:
        """Remove all stored face data of the folder."""
        await self.store.delete_aggregate(self.folder_path)
        self.data = FolderFaceData(folder_path=self.folder_path)
        self.has_stored_data = False
        self.merge_suggestions = []
        self._thumbnails.clear()
        self._dirty = False
        self.persistence_warning = None

    # Suggestions

    def _visible(self, suggestions: List[MergeSuggestion]) -> List[MergeSuggestion]:
        return [s for s in suggestions if s.pair not in self._dismissed]

    def update_merge_suggestions(self, threshold: Optional[float] = None) -> List[MergeSuggestion]:
        """Recompute merge suggestions, hiding the ones dismissed this session."""
        threshold = self.config.merge_suggestion_threshold if threshold is None else threshold
        self.merge_suggestions = self._visible(
            compute_merge_suggestions(self.data.groups, self.data.faces, threshold, self.config)
        )
        return self.merge_suggestions

    def update_refinement_suggestions(self, threshold: Optional[float] = None) -> List[MergeSuggestion]:
        """Add named/unnamed pair suggestions to the current list."""
        threshold = self.config.merge_suggestion_threshold if threshold is None else threshold
        self.merge_suggestions = self._visible(
            compute_refinement_suggestions(
                self.data.groups, self.data.faces, threshold, self.config, existing=self.merge_suggestions
            )
        )
        return self.merge_suggestions

    def dismiss_merge_suggestion(self, suggestion: MergeSuggestion) -> None:
        self.dismiss_merge_suggestions([suggestion])

    def dismiss_merge_suggestions(self, suggestions: Iterable[MergeSuggestion]) -> None:
        self._dismissed.update(s.pair for s in suggestions)
        self.merge_suggestions = self._visible(self.merge_suggestions)

    async def apply_merge_suggestion(self, suggestion: MergeSuggestion) -> bool:
        """Merge the suggestion's second group into its first."""
        applied = await self.merge_groups(suggestion.group2_id, suggestion.group1_id)
        self.merge_suggestions = [
            s for s in self.merge_suggestions
            if suggestion.group2_id not in s.pair and s.pair != suggestion.pair
        ]
        return applied

    async def apply_merge_suggestions(self, suggestions: Sequence[MergeSuggestion]) -> int:
        applied = 0
        for suggestion in suggestions:
            if await self.apply_merge_suggestion(suggestion):
                applied += 1
        return applied

    # Known people

    async def match_known_people(self) -> bool:
        """Run known people matching on the current groups."""
        if self.matcher is None or self.config.known_people_mode is KnownPeopleMode.OFF:
            logger.debug("Known people matching is disabled", folder=self.folder_path)
            return False
        await self._commit(await self.matcher.match_known_people(self.data, self.config))
        return True

    def verified_match(self, group_id: UUID) -> Optional[KnownPersonMatchRecord]:
        return verified_match(self.data, group_id)

    async def add_group_to_known_people(
        self,
        group_id: UUID,
        role: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Optional[KnownPerson]:
        """Store a named group's faces in the registry, merging by name."""
        group = self.data.get_group(group_id)
        if self.registry is None or group is None or not group.name:
            return None

        embeddings = [
            PersonEmbedding(
                embedding=face.embedding,
                source_description=face.image_path,
                recognition_mode=self.config.mode,
            )
            for face in self.faces_in_group(group_id)
        ]
        try:
            person = await self.registry.find_by_name(group.name)
            if person is None:
                person = await self.registry.add_person(group.name, embeddings, role=role, notes=notes)
                added = len(person.embeddings)
            else:
                added = await self.registry.add_embeddings(person.id, embeddings)
        except RegistryError as e:
            logger.error("Failed to add group to known people", group_id=str(group_id), error=str(e))
            return None

        logger.info("Added group to known people", person=group.name, embeddings_added=added)
        return await self.registry.lookup_person(person.id)

    # Metadata

    async def apply_name_to_metadata(self, group_id: UUID) -> List[str]:
        """Write a named group's name into the person tag of its photos.

        Returns:
            Paths that were updated
        """
        group = self.data.get_group(group_id)
        if self.metadata_writer is None or group is None or not group.name:
            return []

        paths = list(dict.fromkeys(face.image_path for face in self.faces_in_group(group_id)))
        written: List[str] = []
        for path in paths:
            try:
                existing = await self.metadata_writer.read_list_field(self.person_tag, path)
                value = merge_person_names(existing, group.name)
                written.extend(await self.metadata_writer.write_field(self.person_tag, value, [path]))
            except MetadataWriteError as e:
                logger.warning("Failed to write person name", path=path, error=str(e))
        logger.info("Applied name to metadata", person=group.name, files=len(written), total=len(paths))
        return written
