"""Dataset exporters for backup/restore operations."""

from .collection_exporter import CollectionExporter

__all__ = ["CollectionExporter"]
