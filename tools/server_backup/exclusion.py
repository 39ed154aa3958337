"""Compute the paths a gitignore would exclude from a folder sync."""

import os
from pathlib import Path
from typing import Iterable, List, Set, Union

import git
from git import Repo

from shared.logger import get_logger

from .errors import SyncError

logger = get_logger(__name__)

GIT_DIR = ".git"


class GitIgnoreChecker:
    """
    Ask git which paths are ignored.

    Attributes:
        root: Directory inside a git working tree
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.repo = self._load_repo()
        self.calls = 0

    def _load_repo(self) -> Repo:
        """
        Load the git repository containing the root.

        Raises:
            SyncError: If the root is not inside a git repository
        """
        try:
            return Repo(self.root, search_parent_directories=True)
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError):
            raise SyncError(f"Not a git repository: {self.root}")

    def check(self, paths: Iterable[str]) -> Set[str]:
        """
        Return the subset of paths ignored by git.

        Args:
            paths: Absolute paths to check

        Returns:
            Ignored paths
        """
        paths = list(paths)
        if not paths:
            return set()

        self.calls += 1
        try:
            output = self.repo.git.check_ignore(*paths)
        except git.exc.GitCommandError as e:
            # check-ignore exits 1 when nothing matches
            if e.status == 1:
                return set()
            raise SyncError(f"git check-ignore failed in {self.root}: {e.stderr}") from e

        return {line for line in output.splitlines() if line}


class ExclusionResolver:
    """
    Walk a folder and collect everything its ignore rules exclude.

    Each directory's children are checked in one batch. Ignored directories
    are excluded as a whole and not descended into.
    """

    def __init__(self, checker_factory=GitIgnoreChecker):
        self.checker_factory = checker_factory

    def compute_excluded(self, root: Union[str, Path]) -> List[str]:
        """
        Compute the excluded paths below root.

        Args:
            root: Folder to walk

        Returns:
            Sorted paths relative to root
        """
        root = Path(root)
        checker = self.checker_factory(root)
        excluded: Set[str] = set()
        self._collect(root, checker, excluded)

        relative = sorted(os.path.relpath(path, root) for path in excluded)
        logger.debug(f"{len(relative)} ignored path(s) under {root}")
        return relative

    def _collect(self, directory: Path, checker, excluded: Set[str]) -> None:
        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError as e:
            raise SyncError(f"Cannot list {directory}: {e}") from e

        entries = [e for e in entries if e.name != GIT_DIR]
        ignored = checker.check(entry.path for entry in entries)
        excluded.update(ignored)

        for entry in entries:
            if entry.is_dir(follow_symlinks=False) and entry.path not in ignored:
                self._collect(Path(entry.path), checker, excluded)
