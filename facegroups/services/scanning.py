"""Incremental folder scanning with bounded concurrent detection."""
import asyncio
from datetime import datetime, timezone
from itertools import islice
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set
from uuid import UUID

from facegroups.core.exceptions import PersistenceError
from facegroups.core.logging import get_logger
from facegroups.domain.entities.face import DetectedFace, FaceGroup
from facegroups.domain.entities.folder import FolderFaceData
from facegroups.domain.interfaces.detection.face_detector import FaceDetector
from facegroups.domain.interfaces.storage.face_data_store import FaceDataStore
from facegroups.domain.value_objects.recognition import (
    FaceDetection,
    KnownPeopleMode,
    RecognitionConfig,
    ScanPhase,
    ScanProgress,
)
from facegroups.services.clustering import ClusteringEngine, assign_group_ids
from facegroups.services.known_people import KnownPersonMatcher
from facegroups.services.signatures import (
    SignatureReader,
    carry_forward,
    compute_file_diff,
    read_file_signature,
)

logger = get_logger(__name__)

MAX_CONCURRENT_DETECTIONS = 4
CHECKPOINT_INTERVAL = 10

ProgressCallback = Callable[[ScanProgress], None]
CheckpointCallback = Callable[[List[FaceGroup]], None]


class ScanOrchestrator:
    """Scans a folder incrementally and clusters faces as detections arrive.

    The scan coroutine is the only writer of the folder aggregate. Detection
    runs in a sliding window of at most ``max_concurrency`` tasks; each
    finished image is folded in immediately (faces minted, thumbnails saved,
    faces clustered) and every ``checkpoint_interval`` finished images the
    partial aggregate is persisted.

    Example:
        ```python
        orchestrator = ScanOrchestrator(detector, store, matcher=matcher)
        data = await orchestrator.scan(paths, "/photos/trip", settings.recognition_config())
        ```
    """

    def __init__(
        self,
        detector: FaceDetector,
        store: FaceDataStore,
        clustering: Optional[ClusteringEngine] = None,
        matcher: Optional[KnownPersonMatcher] = None,
        signature_reader: SignatureReader = read_file_signature,
        max_concurrency: int = MAX_CONCURRENT_DETECTIONS,
        checkpoint_interval: int = CHECKPOINT_INTERVAL,
    ) -> None:
        self.detector = detector
        self.store = store
        self.clustering = clustering or ClusteringEngine()
        self.matcher = matcher
        self.signature_reader = signature_reader
        self.max_concurrency = max_concurrency
        self.checkpoint_interval = checkpoint_interval
        self.last_persistence_error: Optional[PersistenceError] = None
        self._active: Set[str] = set()

    def is_scanning(self, folder_path: str) -> bool:
        return folder_path in self._active

    async def scan(
        self,
        image_paths: Sequence[str],
        folder_path: str,
        config: RecognitionConfig,
        force_full_scan: bool = False,
        on_progress: Optional[ProgressCallback] = None,
        on_checkpoint: Optional[CheckpointCallback] = None,
        base: Optional[FolderFaceData] = None,
    ) -> Optional[FolderFaceData]:
        """Scan a folder's images and update its face groups.

        Args:
            image_paths: Images currently in the folder
            folder_path: Folder the aggregate belongs to
            config: Recognition parameters for this scan
            force_full_scan: Discard stored data and reprocess every image
            on_progress: Called with start, progress, checkpoint and completion signals
            on_checkpoint: Called with a snapshot of the groups at each checkpoint
            base: In-memory aggregate to build on instead of the stored one

        Returns:
            The final aggregate, or None if a scan of this folder is already running
        """
        if folder_path in self._active:
            logger.warning("Scan already running, ignoring request", folder=folder_path)
            return None

        self._active.add(folder_path)
        self.last_persistence_error = None
        try:
            return await self._run(
                image_paths, folder_path, config, force_full_scan, on_progress, on_checkpoint, base
            )
        finally:
            self._active.discard(folder_path)

    async def _run(
        self,
        image_paths: Sequence[str],
        folder_path: str,
        config: RecognitionConfig,
        force_full_scan: bool,
        on_progress: Optional[ProgressCallback],
        on_checkpoint: Optional[CheckpointCallback],
        base: Optional[FolderFaceData] = None,
    ) -> FolderFaceData:
        if force_full_scan:
            await self.store.delete_aggregate(folder_path)
            previous = None
        elif base is not None:
            previous = base.model_copy(deep=True)
        else:
            previous = await self.store.load_aggregate(folder_path)

        base = previous or FolderFaceData(folder_path=folder_path)
        diff = compute_file_diff(image_paths, base.scanned_files, self.signature_reader)
        data, dropped = carry_forward(base, diff)
        await self._delete_thumbnails(dropped, folder_path)

        total = len(diff.to_scan)
        logger.info(
            "Starting scan",
            folder=folder_path,
            to_scan=total,
            unchanged=len(diff.unchanged),
            removed=len(diff.to_remove),
            mode=config.mode.value,
            forced=force_full_scan,
        )
        self._emit(on_progress, ScanPhase.STARTED, 0, total)

        if not diff.to_scan:
            data.scan_complete = True
            data.last_scan_date = datetime.now(timezone.utc)
            if previous is None:
                data.recognition_mode = config.mode
            await self._persist(data)
            self._emit(on_progress, ScanPhase.COMPLETED, 0, 0)
            return data

        completed = 0
        pending = iter(diff.to_scan)
        in_flight: Dict["asyncio.Task[List[FaceDetection]]", str] = {}

        def launch() -> None:
            for path in islice(pending, self.max_concurrency - len(in_flight)):
                in_flight[asyncio.create_task(self._detect(path, config))] = path

        launch()
        while in_flight:
            done, _ = await asyncio.wait(in_flight.keys(), return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                path = in_flight.pop(task)
                data = await self._fold(data, path, task.result(), config)
                completed += 1
                self._emit(on_progress, ScanPhase.PROGRESS, completed, total)

                if completed % self.checkpoint_interval == 0 and completed < total:
                    data.scan_complete = False
                    await self._persist(data)
                    if on_checkpoint is not None:
                        on_checkpoint([group.model_copy(deep=True) for group in data.groups])
                    self._emit(on_progress, ScanPhase.CHECKPOINT, completed, total)
            launch()

        data.scan_complete = True
        data.recognition_mode = config.mode
        data.last_scan_date = datetime.now(timezone.utc)
        await self._persist(data)

        if config.known_people_mode is KnownPeopleMode.ALWAYS_ON and self.matcher is not None:
            data = await self.matcher.match_known_people(data, config)
            await self._persist(data)

        logger.info(
            "Scan completed",
            folder=folder_path,
            images=total,
            faces=len(data.faces),
            groups=len(data.groups),
        )
        self._emit(on_progress, ScanPhase.COMPLETED, completed, total)
        return data

    async def _detect(self, path: str, config: RecognitionConfig) -> List[FaceDetection]:
        """Run detection for one image, treating any failure as no faces."""
        try:
            return await self.detector.detect(path, config)
        except Exception as e:
            logger.warning("Face detection failed, recording no faces", path=path, error=str(e))
            return []

    async def _fold(
        self,
        data: FolderFaceData,
        path: str,
        detections: List[FaceDetection],
        config: RecognitionConfig,
    ) -> FolderFaceData:
        """Merge one image's detections into the aggregate and cluster them."""
        new_faces = [
            DetectedFace(
                image_path=path,
                bounding_box=detection.bounding_box,
                embedding=detection.embedding,
                context_embedding=detection.context_embedding,
                quality_score=detection.quality_score,
                confidence=detection.confidence,
                face_size=detection.face_size,
                blur_score=detection.blur_score,
            )
            for detection in detections
        ]
        for face, detection in zip(new_faces, detections):
            try:
                await self.store.save_thumbnail(detection.thumbnail, face.id, data.folder_path)
            except PersistenceError as e:
                logger.warning("Failed to save thumbnail", face_id=str(face.id), error=str(e))

        if new_faces:
            faces = data.faces + new_faces
            groups = self.clustering.cluster(new_faces, faces, data.groups, config)
            data.faces = assign_group_ids(faces, groups)
            data.groups = groups

        signature = self.signature_reader(path)
        if signature is not None:
            data.scanned_files[path] = signature
        return data

    async def _persist(self, data: FolderFaceData) -> None:
        try:
            await self.store.save_aggregate(data)
        except PersistenceError as e:
            self.last_persistence_error = e
            logger.error("Failed to persist face data", folder=data.folder_path, error=str(e))

    async def _delete_thumbnails(self, face_ids: Iterable[UUID], folder_path: str) -> None:
        for face_id in face_ids:
            try:
                await self.store.delete_thumbnail(face_id, folder_path)
            except PersistenceError as e:
                logger.debug("Failed to delete thumbnail", face_id=str(face_id), error=str(e))

    @staticmethod
    def _emit(callback: Optional[ProgressCallback], phase: ScanPhase, completed: int, total: int) -> None:
        if callback is not None:
            callback(ScanProgress(phase=phase, completed=completed, total=total))
