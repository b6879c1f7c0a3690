from .filesystem import SnapshotDirectory

__all__ = ["SnapshotDirectory"]
