from .metadata_writer import MetadataWriter

__all__ = ["MetadataWriter"]
