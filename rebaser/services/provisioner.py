"""Target database provisioning with collision-safe naming."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ..cancellation import CancellationToken
from ..errors import FormatError, JobCancelled, ProvisionError
from ..logging_utils import redact_connection_string
from ..models.replication import TargetDescriptor, TargetType
from .connection import ConnectionResolver, extract_database_name, replace_database

logger = logging.getLogger(__name__)

ADMIN_DATABASE = "master"
DATABASE_EXISTS_QUERY = "SELECT database_id FROM sys.databases WHERE name = ?"
MAX_NAME_ATTEMPTS = 120


def quote_identifier(name: str) -> str:
    """Bracket-quote a SQL Server identifier."""
    return "[" + name.replace("]", "]]") + "]"


def timestamp_suffix(moment: datetime) -> str:
    """Compact second-resolution suffix, e.g. 20240131235959."""
    return moment.strftime("%Y%m%d%H%M%S")


@dataclass
class ProvisionResult:
    """The database actually created and a connection string pointing at it."""
    database_name: str
    connection_string: str
    requested_name: str

    @property
    def renamed(self) -> bool:
        return self.database_name != self.requested_name


class TargetProvisioner:
    """
    Ensures a usable, non-colliding target database exists.

    Existing databases are never dropped or overwritten. When the requested
    name is taken, a new database ``<name>_<YYYYMMDDHHMMSS>`` is created
    instead, even if the caller asked to overwrite.
    """

    def __init__(
        self,
        resolver: ConnectionResolver,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.resolver = resolver
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def ensure_target(
        self,
        target: TargetDescriptor,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ProvisionResult:
        """
        Create the target database and return its final name.

        Args:
            target: Target descriptor; its connection string names the
                requested database
            cancel_token: Checked before connecting

        Returns:
            ProvisionResult with the provisioned name and a rewritten
            connection string

        Raises:
            ProvisionError: If the admin database is unreachable or the
                database could not be created
        """
        if target.target_type == TargetType.SQLSERVER:
            return self._ensure_sqlserver(target, cancel_token)
        raise ProvisionError(f"Unsupported target type: {target.target_type}")

    def _ensure_sqlserver(
        self,
        target: TargetDescriptor,
        cancel_token: Optional[CancellationToken],
    ) -> ProvisionResult:
        try:
            requested = extract_database_name(target.connection_string)
        except FormatError as e:
            raise ProvisionError(f"Target database setup failed: {e}") from e
        if not requested:
            raise ProvisionError("Could not extract database name from target connection string")

        if target.overwrite_existing:
            logger.info("Overwrite requested; existing databases are preserved and a new one is created instead")
        if target.backup_before:
            logger.info("Backup requested; no backup is needed because the existing database is never modified")
        if not target.create_new_database:
            logger.info("Archive import requires an empty database; provisioning a new one")

        admin_connection_string = replace_database(target.connection_string, ADMIN_DATABASE)
        logger.info(
            f"Setting up target database '{requested}' via {redact_connection_string(admin_connection_string)}"
        )

        try:
            with self.resolver.open(admin_connection_string, autocommit=True, cancel_token=cancel_token) as connection:
                cursor = connection.cursor()
                try:
                    final_name = self._choose_name(cursor, requested)
                    if cancel_token is not None:
                        cancel_token.raise_if_cancelled()
                    self._create_database(cursor, final_name)
                finally:
                    cursor.close()
        except (JobCancelled, ProvisionError):
            raise
        except Exception as e:
            raise ProvisionError(f"Target database setup failed: {e}") from e

        return ProvisionResult(
            database_name=final_name,
            connection_string=replace_database(target.connection_string, final_name),
            requested_name=requested,
        )

    def _exists(self, cursor, name: str) -> bool:
        cursor.execute(DATABASE_EXISTS_QUERY, name)
        return cursor.fetchone() is not None

    def _choose_name(self, cursor, requested: str) -> str:
        if not self._exists(cursor, requested):
            return requested

        moment = self._clock()
        for _ in range(MAX_NAME_ATTEMPTS):
            candidate = f"{requested}_{timestamp_suffix(moment)}"
            if not self._exists(cursor, candidate):
                logger.info(
                    f"Database exists, creating new database with timestamp: {requested} -> {candidate}"
                )
                return candidate
            moment += timedelta(seconds=1)

        raise ProvisionError(f"Could not find a free database name for '{requested}'")

    def _create_database(self, cursor, name: str) -> None:
        try:
            cursor.execute(f"CREATE DATABASE {quote_identifier(name)}")
        except Exception as e:
            raise ProvisionError(f"CREATE DATABASE {quote_identifier(name)} failed: {e}") from e
        logger.info(f"Created target database: {name}")
