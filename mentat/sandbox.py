"""Workspace sandbox: confine model-supplied paths to a single root directory.

Every file tool routes its path argument through a PathValidator. The
validator rejects absolute paths and any ``..`` component outright, then
canonicalizes the candidate (resolving symlinks in the existing prefix)
and checks that it still lies inside the canonical workspace root.

The check and the later read/write are not atomic: a symlink swapped in
between validation and use is not detected.
"""

import logging
import os
from pathlib import Path, PurePosixPath, PureWindowsPath

logger = logging.getLogger(__name__)


class PathValidationError(ValueError):
    """Base class for paths rejected by the sandbox."""


class AbsolutePathNotAllowed(PathValidationError):
    def __init__(self):
        super().__init__("Absolute paths are not allowed")


class PathTraversalDetected(PathValidationError):
    def __init__(self):
        super().__init__("Path traversal not allowed")


class PathNotFound(PathValidationError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Path not found: {path}")


class WorkspaceDirError(PathValidationError):
    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Failed to get workspace directory: {detail}")


class CanonicalizationFailed(PathValidationError):
    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Invalid path: {detail}")


def is_absolute_path(path: str) -> bool:
    """True if *path* is absolute on the host platform.

    On Windows, drive-relative ("C:foo") and rooted ("\\foo") paths count
    as absolute too, since neither is anchored at the workspace root.
    Elsewhere those strings are ordinary relative names: "c:notes.txt" is
    a file called "c:notes.txt" inside the workspace.
    """
    if os.name == "nt":
        win = PureWindowsPath(path)
        return bool(win.drive or win.root)
    return PurePosixPath(path).is_absolute()


def has_parent_component(path: str) -> bool:
    """True if any component of *path* is "..", splitting on both / and \\."""
    return ".." in PurePosixPath(path).parts or ".." in PureWindowsPath(path).parts


class PathValidator:
    """Validate relative paths against a fixed workspace root.

    The root is captured once at construction: the process working
    directory unless *workspace_root* is given. It is never re-read, so
    a later os.chdir() does not move the sandbox.
    """

    def __init__(self, workspace_root: str | os.PathLike | None = None):
        if workspace_root is None:
            try:
                workspace_root = os.getcwd()
            except OSError as exc:
                raise WorkspaceDirError(str(exc)) from exc
        self._workspace_root = Path(os.path.abspath(workspace_root))

    @property
    def workspace_root(self) -> Path:
        return self._workspace_root

    def validate_for_read(self, path: str) -> Path:
        """Validate *path* for reading; the target must exist.

        Returns the canonical absolute path. Raises a PathValidationError
        subclass on rejection.
        """
        validated = self._validate(path)
        if not validated.exists():
            logger.debug("rejected %r: not found", path)
            raise PathNotFound(path)
        return validated

    def validate_for_write(self, path: str) -> Path:
        """Validate *path* for writing; the target may not exist yet."""
        return self._validate(path)

    def _validate(self, path: str) -> Path:
        if not isinstance(path, str):
            raise CanonicalizationFailed(f"expected a string, got {type(path).__name__}")
        if is_absolute_path(path):
            logger.debug("rejected %r: absolute", path)
            raise AbsolutePathNotAllowed()

        # Structural check first: "a/../a/b.txt" is refused even though it
        # would canonicalize to a path inside the root.
        if has_parent_component(path):
            logger.debug("rejected %r: parent component", path)
            raise PathTraversalDetected()

        if not path.strip():
            raise CanonicalizationFailed("empty path")
        if "\x00" in path:
            raise CanonicalizationFailed("path contains a NUL byte")

        candidate = self._workspace_root / path
        canonical = self._canonicalize(candidate)
        root = self._canonical_root()

        if not canonical.is_relative_to(root):
            logger.debug("rejected %r: resolves to %s outside %s", path, canonical, root)
            raise PathTraversalDetected()
        return canonical

    def _canonical_root(self) -> Path:
        try:
            return self._workspace_root.resolve(strict=True)
        except (OSError, RuntimeError) as exc:
            raise WorkspaceDirError(str(exc)) from exc

    @staticmethod
    def _canonicalize(candidate: Path) -> Path:
        """Resolve symlinks in *candidate*, tolerating a missing tail.

        An existing path is resolved strictly. Otherwise we walk up to the
        nearest ancestor that exists (a dangling symlink counts, so its
        target is followed), resolve it, and re-append the missing parts.
        """
        try:
            if candidate.exists():
                return candidate.resolve(strict=True)

            missing: list[str] = []
            ancestor = candidate
            while not os.path.lexists(ancestor):
                parent = ancestor.parent
                if parent == ancestor:
                    break
                missing.append(ancestor.name)
                ancestor = parent
            return ancestor.resolve().joinpath(*reversed(missing))
        except (OSError, RuntimeError, ValueError) as exc:
            raise CanonicalizationFailed(str(exc)) from exc
