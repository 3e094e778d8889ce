"""
Pre-run validation of artifact directories and required variables
"""

import os
import platform
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Sequence, Union
import logging

from e2e_orchestrator.environment_probe import EnvironmentProbe
from e2e_orchestrator.filesystem_guard import FilesystemError, FilesystemGuard

logger = logging.getLogger(__name__)

DEFAULT_REQUIRED_SUBDIRS = ('screenshots', 'videos', 'traces', 'downloads')
OPTIONAL_VARS = ('RUN_ALL_BROWSERS', 'CI', 'TEST_MODE')


class EnvironmentValidationError(Exception):
    """The run environment cannot hold artifacts or lacks required variables"""

    def __init__(self, result: 'ValidationResult'):
        super().__init__(f"Environment validation failed: {', '.join(result.errors)}")
        self.result = result


@dataclass
class ValidationResult:
    success: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class EnvironmentValidator:
    """Checks that artifact directories are writable and CI variables present"""

    def __init__(self, probe: EnvironmentProbe, fs: FilesystemGuard,
                 artifacts_root: Union[str, Path],
                 required_subdirs: Sequence[str] = DEFAULT_REQUIRED_SUBDIRS,
                 required_ci_vars: Sequence[str] = ()):
        """
        Initialize environment validator

        Args:
            probe: Environment probe
            fs: Filesystem guard
            artifacts_root: Artifact root directory
            required_subdirs: Subdirectories that must be writable
            required_ci_vars: Variables that must be set when running in CI
        """
        self.probe = probe
        self.fs = fs
        self.artifacts_root = Path(artifacts_root)
        self.required_subdirs = tuple(required_subdirs)
        self.required_ci_vars = tuple(required_ci_vars)

    def validate(self) -> ValidationResult:
        result = ValidationResult(details={
            'is_ci': self.probe.is_ci(),
            'runtime_version': platform.python_version(),
            'platform': self.probe.platform,
            'validated_at': datetime.now().isoformat(),
        })
        self._validate_directories(result)
        self._validate_variables(result)
        result.success = not result.errors
        if result.success:
            logger.info(f"Environment validation passed ({len(result.warnings)} warnings)")
        else:
            logger.error(f"Environment validation failed: {'; '.join(result.errors)}")
        return result

    def validate_or_raise(self) -> ValidationResult:
        result = self.validate()
        if not result.success:
            raise EnvironmentValidationError(result)
        return result

    def _validate_directories(self, result: ValidationResult):
        directories: Dict[str, Dict[str, bool]] = {}
        targets = [self.artifacts_root] + [self.artifacts_root / d for d in self.required_subdirs]
        for target in targets:
            existed = target.exists()
            try:
                self.fs.ensure_directory(target)
                if not existed:
                    result.warnings.append(f"Directory created: {target}")
                probe_file = self.fs.write_file(target / '.write-test', 'test', ensure_dir=False)
                os.unlink(probe_file)
                directories[str(target)] = {'exists': True, 'writable': True}
            except (FilesystemError, OSError) as e:
                result.errors.append(f"Directory validation failed for '{target}': {e}")
                directories[str(target)] = {'exists': target.exists(), 'writable': False}
        result.details['directories'] = directories

        if self.probe.is_ci():
            try:
                result.details['directory_listing'] = self.fs.list_directory(self.artifacts_root)
            except FilesystemError as e:
                result.warnings.append(f"Failed to list artifact directory: {e}")

    def _validate_variables(self, result: ValidationResult):
        variables: Dict[str, Any] = {}
        if self.probe.is_ci():
            for name in self.required_ci_vars:
                value = self.probe.get(name)
                if not value:
                    result.errors.append(f"Missing required environment variable: {name}")
                variables[name] = value or '<missing>'
        for name in OPTIONAL_VARS:
            variables[name] = self.probe.get(name)
        result.details['environment_variables'] = variables
