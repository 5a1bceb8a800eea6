"""Tests for the InsightFace detector."""
from pathlib import Path
from types import SimpleNamespace

import cv2
import numpy as np
import pytest

pytest.importorskip("insightface")

from facegroups.core.exceptions import InvalidImageError  # noqa: E402
from facegroups.domain.value_objects.recognition import RecognitionConfig, RecognitionMode  # noqa: E402
from facegroups.services.recognition.insight_face import InsightFaceDetector  # noqa: E402

# Test fixtures directory
FIXTURES_DIR = Path(__file__).parent.parent.parent / "fixtures" / "images"


def fixture_image(name: str) -> str:
    path = FIXTURES_DIR / name
    if not path.exists():
        pytest.skip(f"Fixture image {name} not available")
    return str(path)


@pytest.fixture
def bare_detector():
    """Detector without a loaded model, for the conversion helpers."""
    detector = InsightFaceDetector.__new__(InsightFaceDetector)
    detector.model = None
    detector.thumbnail_size = 120
    return detector


@pytest.fixture
def photo():
    rng = np.random.default_rng(0)
    image = rng.integers(0, 255, size=(400, 300, 3), dtype=np.uint8)
    image[250:, :] = (40, 40, 200)
    return image


def insight_face(bbox, score=0.9, dim=512):
    embedding = np.ones(dim, dtype=np.float32)
    return SimpleNamespace(
        bbox=np.array(bbox, dtype=np.float32),
        det_score=score,
        embedding=embedding,
        normed_embedding=embedding / np.linalg.norm(embedding),
    )


class TestConversion:
    """Test suite for turning model output into detections."""

    def test_vision_detection(self, bare_detector, photo):
        detection = bare_detector._convert_to_detection(
            insight_face((100, 100, 200, 220)), photo, RecognitionConfig()
        )

        assert detection.bounding_box.left == pytest.approx(100 / 300)
        assert detection.bounding_box.width == pytest.approx(100 / 300)
        assert detection.bounding_box.height == pytest.approx(120 / 400)
        assert detection.face_size == 100
        assert detection.confidence == pytest.approx(0.9)
        assert np.linalg.norm(detection.embedding) == pytest.approx(1.0, abs=1e-5)
        assert detection.context_embedding is None
        assert 0.0 <= detection.quality_score <= 1.0
        assert detection.thumbnail[:2] == b"\xff\xd8"

    def test_fused_mode_adds_clothing(self, bare_detector, photo):
        config = RecognitionConfig(mode=RecognitionMode.FACE_AND_CLOTHING)
        detection = bare_detector._convert_to_detection(insight_face((100, 100, 200, 220)), photo, config)
        assert detection.context_embedding is not None

    @pytest.mark.parametrize("bbox,score", [((100, 100, 200, 220), 0.5), ((100, 100, 130, 130), 0.9)])
    def test_filters_weak_and_small_faces(self, bare_detector, photo, bbox, score):
        assert bare_detector._convert_to_detection(insight_face(bbox, score), photo, RecognitionConfig()) is None

    def test_unreadable_image(self, bare_detector, tmp_path):
        with pytest.raises(InvalidImageError):
            bare_detector._load_and_validate_image(str(tmp_path / "missing.jpg"))
        broken = tmp_path / "broken.jpg"
        broken.write_bytes(b"not an image")
        with pytest.raises(InvalidImageError):
            bare_detector._load_and_validate_image(str(broken))

    def test_large_image_is_downscaled(self, bare_detector, tmp_path):
        path = tmp_path / "large.png"
        cv2.imwrite(str(path), np.zeros((2000, 3000, 3), dtype=np.uint8))
        image = bare_detector._load_and_validate_image(str(path))
        assert image.shape[0] * image.shape[1] <= 1920 * 1080


@pytest.fixture
async def detector():
    """Provide a detector with the real model."""
    if not FIXTURES_DIR.exists():
        pytest.skip("Fixture images not available")
    service = InsightFaceDetector()
    yield service
    await service.__aexit__(None, None, None)


class TestInsightFaceDetection:
    """Test suite for detection with the real model."""

    async def test_detect_single_face(self, detector):
        """Should detect exactly one face in single face image."""
        faces = await detector.detect(fixture_image("single_face.jpg"), RecognitionConfig())

        assert len(faces) == 1
        face = faces[0]
        assert face.confidence > 0.8
        face_area = face.bounding_box.width * face.bounding_box.height
        assert 0.05 < face_area < 0.9, "Face size seems unreasonable"

    async def test_detect_multiple_faces(self, detector):
        faces = await detector.detect(fixture_image("multiple_faces.jpg"), RecognitionConfig())
        assert len(faces) > 1
        for face in faces:
            assert face.confidence > 0.7

    async def test_no_face_detected(self, detector):
        """Should handle images without faces."""
        faces = await detector.detect(fixture_image("no_faces.jpg"), RecognitionConfig())
        assert faces == []
