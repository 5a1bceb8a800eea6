from .face_data_store import FaceDataStore

__all__ = ["FaceDataStore"]
