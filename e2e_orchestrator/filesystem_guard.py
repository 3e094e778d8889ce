"""
Filesystem access for artifact storage with typed errors and permission repair
"""

import os
import stat
from pathlib import Path
from typing import List, Optional, Sequence, Union
import logging

from e2e_orchestrator.models import (
    EnvironmentInfo, FilesystemErrorCode, OperatingSystem, PermissionResult
)

logger = logging.getLogger(__name__)


class FilesystemError(Exception):
    """Filesystem failure carrying a code, the path and the operation"""

    def __init__(self, code: FilesystemErrorCode, message: str, path: str,
                 operation: str, original_error: Optional[BaseException] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.path = path
        self.operation = operation
        self.original_error = original_error

    def detailed_message(self) -> str:
        """Multi-line description suitable for logs and failure reports"""
        lines = [
            f"FilesystemError [{self.code.value}] during {self.operation}",
            f"Path: {self.path}",
            f"Message: {self.message}",
        ]
        if self.original_error is not None:
            lines.append(f"Original error: {type(self.original_error).__name__}: {self.original_error}")
        return "\n".join(lines)

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message} ({self.path})"


def _code_for(error: OSError, default: FilesystemErrorCode) -> FilesystemErrorCode:
    """Map a builtin OSError subclass onto a filesystem error code"""
    if isinstance(error, FileNotFoundError):
        return FilesystemErrorCode.PATH_NOT_FOUND
    if isinstance(error, PermissionError):
        return FilesystemErrorCode.PERMISSION_DENIED
    if isinstance(error, NotADirectoryError):
        return FilesystemErrorCode.PATH_NOT_DIRECTORY
    if isinstance(error, FileExistsError):
        return FilesystemErrorCode.PATH_ALREADY_EXISTS
    return default


class FilesystemGuard:
    """Creates directories and writes artifacts, repairing permissions once"""

    def __init__(self, default_permissions: int = 0o755):
        """
        Initialize filesystem guard

        Args:
            default_permissions: Mode applied to created or repaired directories
        """
        self.default_permissions = default_permissions

    @staticmethod
    def absolute_path(path: Union[str, Path]) -> Path:
        """Resolve a path against the working directory, following symlinks"""
        if path is None or str(path).strip() == "" or "\x00" in str(path):
            raise FilesystemError(
                FilesystemErrorCode.INVALID_PATH,
                "Path is empty or contains invalid characters",
                str(path),
                'absolute_path'
            )
        return Path(os.path.realpath(os.fspath(path)))

    def path_exists(self, path: Union[str, Path]) -> bool:
        try:
            return self.absolute_path(path).exists()
        except (FilesystemError, OSError):
            return False

    def check_permissions(self, path: Union[str, Path]) -> PermissionResult:
        """
        Probe access rights for a path. Results are never cached.

        Args:
            path: File or directory to inspect

        Returns:
            PermissionResult; a missing path yields all flags False and an error
        """
        abs_path = self.absolute_path(path)
        try:
            st = abs_path.stat()
        except FileNotFoundError:
            return PermissionResult(path=str(abs_path), error="Path does not exist")
        except OSError as e:
            return PermissionResult(path=str(abs_path), error=str(e))

        return PermissionResult(
            path=str(abs_path),
            readable=os.access(abs_path, os.R_OK),
            writable=os.access(abs_path, os.W_OK),
            executable=os.access(abs_path, os.X_OK),
            is_directory=stat.S_ISDIR(st.st_mode),
            is_file=stat.S_ISREG(st.st_mode),
        )

    def ensure_directory(self, path: Union[str, Path], permissions: Optional[int] = None) -> Path:
        """
        Make sure a readable and writable directory exists at path.

        Args:
            path: Directory to create or validate
            permissions: Mode for creation and repair (defaults to guard setting)

        Returns:
            Absolute path of the directory

        Raises:
            FilesystemError: PATH_NOT_DIRECTORY, PERMISSION_DENIED or UNKNOWN_ERROR
        """
        mode = permissions if permissions is not None else self.default_permissions
        abs_path = self.absolute_path(path)

        if abs_path.exists():
            if not abs_path.is_dir():
                raise FilesystemError(
                    FilesystemErrorCode.PATH_NOT_DIRECTORY,
                    "Path exists but is not a directory",
                    str(abs_path),
                    'ensure_directory'
                )
            result = self.check_permissions(abs_path)
            if result.has_permission:
                return abs_path

            logger.warning(f"Repairing permissions on {abs_path} (mode {oct(mode)})")
            try:
                os.chmod(abs_path, mode)
            except OSError as e:
                raise FilesystemError(
                    FilesystemErrorCode.PERMISSION_DENIED,
                    "Directory lacks read/write permission and could not be repaired",
                    str(abs_path),
                    'ensure_directory',
                    e
                ) from e

            if not self.check_permissions(abs_path).has_permission:
                raise FilesystemError(
                    FilesystemErrorCode.PERMISSION_DENIED,
                    "Directory still lacks read/write permission after repair",
                    str(abs_path),
                    'ensure_directory'
                )
            return abs_path

        try:
            abs_path.mkdir(mode=mode, parents=True, exist_ok=True)
            logger.debug(f"Created directory {abs_path}")
        except OSError as e:
            raise FilesystemError(
                _code_for(e, FilesystemErrorCode.UNKNOWN_ERROR),
                f"Failed to create directory: {e}",
                str(abs_path),
                'ensure_directory',
                e
            ) from e
        return abs_path

    def write_file(self, path: Union[str, Path], data: Union[str, bytes],
                   ensure_dir: bool = True, exclusive: bool = False) -> Path:
        """
        Write text or bytes to a file

        Args:
            path: Destination file
            data: Content; str is written as UTF-8
            ensure_dir: Create the parent directory first
            exclusive: Refuse to overwrite an existing file

        Returns:
            Absolute path written
        """
        abs_path = self.absolute_path(path)
        if ensure_dir:
            self.ensure_directory(abs_path.parent)

        mode = 'x' if exclusive else 'w'
        try:
            if isinstance(data, bytes):
                with open(abs_path, mode + 'b') as f:
                    f.write(data)
            else:
                with open(abs_path, mode, encoding='utf-8') as f:
                    f.write(data)
        except OSError as e:
            raise FilesystemError(
                _code_for(e, FilesystemErrorCode.WRITE_ERROR),
                f"Failed to write file: {e}",
                str(abs_path),
                'write_file',
                e
            ) from e
        return abs_path

    def list_directory(self, path: Union[str, Path]) -> List[str]:
        """Return sorted entry names of a directory"""
        abs_path = self.absolute_path(path)
        if not abs_path.exists():
            raise FilesystemError(
                FilesystemErrorCode.PATH_NOT_FOUND,
                "Directory does not exist",
                str(abs_path),
                'list_directory'
            )
        if not abs_path.is_dir():
            raise FilesystemError(
                FilesystemErrorCode.PATH_NOT_DIRECTORY,
                "Path is not a directory",
                str(abs_path),
                'list_directory'
            )
        try:
            return sorted(entry.name for entry in abs_path.iterdir())
        except OSError as e:
            raise FilesystemError(
                _code_for(e, FilesystemErrorCode.READ_ERROR),
                f"Failed to read directory: {e}",
                str(abs_path),
                'list_directory',
                e
            ) from e

    def validate_artifact_structure(self, root: Union[str, Path],
                                    subdirs: Sequence[str] = (),
                                    auto_fix: bool = True) -> List[PermissionResult]:
        """
        Check the artifact root and its subdirectories, creating them on demand

        Args:
            root: Artifact root directory
            subdirs: Required subdirectories relative to root
            auto_fix: Create or repair directories that fail the check

        Returns:
            One PermissionResult per directory, root first
        """
        results = []
        for target in [Path(root)] + [Path(root) / d for d in subdirs]:
            result = self.check_permissions(target)
            if auto_fix and not (result.is_directory and result.has_permission):
                self.ensure_directory(target)
                result = self.check_permissions(target)
            results.append(result)
        return results

    def apply_ci_optimizations(self, root: Union[str, Path], environment: EnvironmentInfo):
        """Widen artifact root permissions on Linux CI runners; warn on failure"""
        if not environment.is_ci:
            return
        abs_path = self.ensure_directory(root)
        if environment.os == OperatingSystem.LINUX:
            try:
                os.chmod(abs_path, 0o777)
            except OSError as e:
                logger.warning(f"Could not set 777 permissions on {abs_path}: {e}")
