"""Base archive transfer interface."""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from ..cancellation import CancellationToken
from ..models.replication import ArchiveArtifact

logger = logging.getLogger(__name__)

# Called with (progress, message) whenever output implies new progress
ProgressCallback = Callable[[int, str], None]


class ArchiveTransfer(ABC):
    """
    Base class for archive transfer adapters.

    Adapters move a whole database through a portable archive file:
    ``export`` writes the archive from a source database and
    ``import_archive`` restores it into an empty target database.
    """

    @abstractmethod
    def export(
        self,
        connection_string: str,
        output_dir: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ArchiveArtifact:
        """
        Export a database to an archive file.

        Args:
            connection_string: Source connection string; must name a database
            output_dir: Directory for the archive (adapter default if None)
            on_progress: Receives progress inferred from tool output
            cancel_token: Cancelling terminates the export

        Returns:
            ArchiveArtifact describing the written file
        """
        pass

    @abstractmethod
    def import_archive(
        self,
        artifact: ArchiveArtifact,
        target_connection_string: str,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> None:
        """
        Import an archive into the target database.

        Args:
            artifact: Archive produced by ``export``
            target_connection_string: Connection string naming the target database
            on_progress: Receives progress inferred from tool output
            cancel_token: Cancelling terminates the import
        """
        pass

    def cleanup(self, artifact: ArchiveArtifact) -> bool:
        """
        Delete an archive file, best-effort.

        Returns:
            True if the file is gone afterwards
        """
        try:
            artifact.path.unlink()
            logger.info(f"Deleted archive: {artifact.path}")
            return True
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.warning(f"Could not delete archive {artifact.path}: {e}")
            return False
