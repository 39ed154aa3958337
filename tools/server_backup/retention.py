"""Retention: keep only the most recent backup files of a folder."""

import os
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from shared.logger import get_logger

from .errors import RetentionError

logger = get_logger(__name__)

HIDDEN_PREFIX = "."


class RetentionManager:
    """Prune backup folders down to a number of files."""

    def prune(
        self,
        folder: Union[str, Path],
        keep: int,
        protected: Optional[Iterable[Union[str, Path]]] = None,
    ) -> List[str]:
        """
        Delete all but the ``keep`` most recently changed files of a folder.

        Only regular files whose name does not start with a dot are candidates.
        Files are ordered by change time (``st_ctime``), newest first. Paths in
        ``protected`` count as kept and are never deleted.

        Args:
            folder: Folder to prune
            keep: Number of files to keep
            protected: Paths that must survive (e.g. the file just written)

        Returns:
            Paths of the deleted files

        Raises:
            RetentionError: If the folder cannot be listed or some files could not
                be deleted; ``deleted`` still lists what was removed
        """
        folder = Path(folder)
        keep_paths = {str(p) for p in (protected or ())}

        try:
            entries = list(os.scandir(folder))
        except OSError as e:
            raise RetentionError(str(folder), [(str(folder), str(e))]) from e

        candidates: List[Tuple[float, str]] = []
        failures: List[Tuple[str, str]] = []
        for entry in entries:
            if entry.name.startswith(HIDDEN_PREFIX):
                continue
            try:
                if not entry.is_file(follow_symlinks=False):
                    continue
                candidates.append((entry.stat(follow_symlinks=False).st_ctime, entry.path))
            except OSError as e:
                failures.append((entry.path, str(e)))

        # protected files rank first so they take up the kept slots
        candidates.sort(key=lambda c: (c[1] in keep_paths, c[0]), reverse=True)
        stale = [path for _, path in candidates[keep:] if path not in keep_paths]

        deleted: List[str] = []
        for path in stale:
            try:
                os.unlink(path)
                deleted.append(path)
                logger.debug(f"Deleted old backup {path}")
            except OSError as e:
                logger.warning(f"Failed to delete old backup {path}: {e}")
                failures.append((path, str(e)))

        if failures:
            raise RetentionError(str(folder), failures, deleted)

        if deleted:
            logger.info(f"Pruned {len(deleted)} file(s) from {folder}, kept {keep}")
        return deleted
