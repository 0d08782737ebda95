"""Base class of source importers: checkout or update, then patch."""

import logging
import shutil
from typing import Any, Callable, List, Optional, Sequence, TYPE_CHECKING

from .errors import BuildSyncError, ConfigException
from .patching import PatchApplicator
from .performance_logger import PerformanceLogger

if TYPE_CHECKING:
    from .package import Package


# handler(error, package, operation, *args) -> replacement result, or None to decline
FallbackHandler = Callable[..., Any]


class Importer:
    """
    Imports a package's source code into its import directory.

    Subclasses implement ``checkout`` (the directory does not exist yet) and
    ``update`` (it does). Patches are re-applied after every import.
    """

    def __init__(self, patches: Optional[Sequence[str]] = None,
                 patch_applicator: Optional[PatchApplicator] = None,
                 performance_logger: Optional[PerformanceLogger] = None):
        """
        Args:
            patches: Patch files (relative to the package's srcdir) applied in order
            patch_applicator: Applies and unapplies patches
            performance_logger: Records timing of the import phases
        """
        self.patches: List[str] = list(patches or [])
        self.patch_applicator = patch_applicator or PatchApplicator()
        self.perf_logger = performance_logger or PerformanceLogger()
        self.logger = logging.getLogger('buildsync.importer')
        self._fallback_handlers: List[FallbackHandler] = []

    def checkout(self, package: "Package") -> None:
        raise NotImplementedError

    def update(self, package: "Package", only_local: bool = False) -> None:
        raise NotImplementedError

    def add_fallback(self, handler: FallbackHandler) -> None:
        """Register a handler given a chance to recover from a failed operation."""
        self._fallback_handlers.append(handler)

    def fallback(self, error: BaseException, package: "Package", operation: str, *args: Any) -> Any:
        """
        Try the registered handlers in order; the first non-None result wins.

        Raises:
            error: when no handler provides a result
        """
        for handler in self._fallback_handlers:
            result = handler(error, package, operation, *args)
            if result is not None:
                self.logger.info(f"{package.name}: recovered from failed {operation} using fallback")
                return result
        raise error

    def patch(self, package: "Package") -> None:
        with self.perf_logger.time_phase(package.name, "patch"):
            self.patch_applicator.patch(package, self.patches)

    def import_package(self, package: "Package", update: bool = True, only_local: bool = False) -> None:
        """
        Check out or update the package, then apply its patches.

        Args:
            package: Package to import
            update: Update an existing working copy (if False, leave it alone)
            only_local: Do not access the network while updating

        Raises:
            ConfigException: the import directory exists but is not a directory
            BuildSyncError: the import failed; a failed first checkout is removed
        """
        importdir = package.importdir

        with package.lock():
            if importdir.is_dir():
                if not update:
                    package.message("%s: not updating")
                    return
                with self.perf_logger.time_phase(package.name, "update"):
                    self.update(package, only_local)
                self.patch(package)

            elif importdir.exists():
                raise ConfigException(package, "import", f"{importdir} exists but is not a directory")

            else:
                try:
                    with self.perf_logger.time_phase(package.name, "checkout"):
                        self.checkout(package)
                    self.patch(package)
                except BuildSyncError:
                    # Start from scratch on the next attempt
                    self.logger.debug(f"{package.name}: removing partial checkout {importdir}")
                    shutil.rmtree(importdir, ignore_errors=True)
                    raise
