import os
import logging
from typing import Iterable, Iterator, Optional

logger = logging.getLogger(__name__)


class MediaStorage:
    def __init__(self, root: str, allowed_extensions: Iterable[str] = (".mp3", ".mp4", ".m4a", ".webm")):
        """Filesystem access for retained copies, confined to one managed root.

        :param root: The managed storage root; created when missing.
        :param allowed_extensions: Extensions (with leading dot) a retained copy may have.
        """
        os.makedirs(root, exist_ok=True)
        self.root = os.path.realpath(root)
        self.allowed_extensions = tuple(ext.lower() for ext in allowed_extensions)
        logger.info("MediaStorage initialized with storage root: %s", self.root)

    def resolve(self, file_path: str) -> str:
        # Relative paths are interpreted against the storage root
        return os.path.realpath(os.path.join(self.root, file_path))

    def validate_path(self, file_path: Optional[str]) -> Optional[str]:
        """Return the reason a path violates the storage policy, or None when it is safe."""
        if not file_path:
            return "empty file path"
        parts = file_path.replace("\\", "/").split("/")
        if ".." in parts or file_path.startswith("~"):
            return f"path traversal attempt: {file_path}"
        resolved = self.resolve(file_path)
        try:
            inside = os.path.commonpath([self.root, resolved]) == self.root
        except ValueError:
            inside = False
        if not inside or resolved == self.root:
            return f"path outside managed storage: {file_path}"
        extension = os.path.splitext(resolved)[1].lower()
        if extension not in self.allowed_extensions:
            return f"invalid file extension: {extension or '(none)'}"
        return None

    def is_safe(self, file_path: Optional[str]) -> bool:
        return self.validate_path(file_path) is None

    def exists(self, file_path: str) -> bool:
        return os.path.isfile(self.resolve(file_path))

    def size_of(self, file_path: str) -> int:
        """Current size in bytes; raises OSError when the file cannot be stat'ed."""
        return os.path.getsize(self.resolve(file_path))

    def delete(self, file_path: str) -> bool:
        """Delete a retained copy.

        Returns False when the file was already gone. Raises ValueError for a
        path outside the storage policy and OSError for filesystem failures.
        """
        reason = self.validate_path(file_path)
        if reason:
            raise ValueError(reason)
        try:
            os.remove(self.resolve(file_path))
        except FileNotFoundError:
            return False
        logger.info("Deleted retained copy %s", file_path)
        self._prune_empty_parents(os.path.dirname(self.resolve(file_path)))
        return True

    def iter_media_files(self) -> Iterator[str]:
        """Yield resolved paths of every media file below the storage root."""
        for root, _dirs, files in os.walk(self.root):
            for name in files:
                if os.path.splitext(name)[1].lower() in self.allowed_extensions:
                    yield os.path.realpath(os.path.join(root, name))

    def _prune_empty_parents(self, directory: str) -> None:
        # Remove empty directories bottom-up, never the root itself
        while directory and directory != self.root and directory.startswith(self.root + os.sep):
            try:
                if os.listdir(directory):
                    return
                os.rmdir(directory)
            except OSError:
                logger.debug("Could not prune directory %s", directory, exc_info=True)
                return
            directory = os.path.dirname(directory)


__all__ = ["MediaStorage"]
