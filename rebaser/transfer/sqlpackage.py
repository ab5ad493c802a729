"""BACPAC export and import through the sqlpackage command-line tool."""

import logging
import subprocess
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..cancellation import CancellationToken
from ..errors import ExternalToolError, FormatError, JobCancelled
from ..logging_utils import redact_arguments, redact_connection_string
from ..models.replication import ArchiveArtifact
from ..services.connection import extract_database_name
from ..settings import ReplicatorSettings, default_temp_dir
from .base import ArchiveTransfer, ProgressCallback
from .progress import ProgressStrategy, export_progress, import_progress

logger = logging.getLogger(__name__)

ARCHIVE_EXTENSION = ".bacpac"


def archive_file_name(database_name: str, moment: Optional[datetime] = None) -> str:
    """``<database>_<ISO timestamp with ':' and '.' replaced by '-'>.bacpac``"""
    moment = moment or datetime.now(timezone.utc)
    stamp = moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    stamp = stamp.replace(":", "-").replace(".", "-")
    return f"{database_name}_{stamp}{ARCHIVE_EXTENSION}"


class _ProcessRun:
    """Output collected from one tool invocation."""

    def __init__(self):
        self.stdout: List[str] = []
        self.stderr: List[str] = []
        self.returncode: Optional[int] = None

    @property
    def stdout_text(self) -> str:
        return "".join(self.stdout)

    @property
    def stderr_text(self) -> str:
        return "".join(self.stderr)


class SqlPackageTransfer(ArchiveTransfer):
    """
    Archive adapter backed by ``sqlpackage``.

    The tool runs as a child process. Its stdout and stderr are read on
    background threads as they arrive; each stdout line is fed to a
    ProgressStrategy so progress is reported while the tool is still
    running. Cancelling the token terminates the child, then kills it if it
    has not exited within the grace period.
    """

    def __init__(
        self,
        tool_command: Optional[Sequence[str]] = None,
        temp_dir: Optional[str] = None,
        kill_grace_seconds: float = 5.0,
        export_strategy: Callable[[], ProgressStrategy] = export_progress,
        import_strategy: Callable[[], ProgressStrategy] = import_progress,
    ):
        """
        Initialize the adapter.

        Args:
            tool_command: Command prefix used to launch the tool
            temp_dir: Default directory for exported archives
            kill_grace_seconds: Wait between terminate and kill on cancellation
            export_strategy: Factory for export progress inference
            import_strategy: Factory for import progress inference
        """
        self.tool_command = list(tool_command or ["sqlpackage"])
        self.temp_dir = temp_dir or default_temp_dir()
        self.kill_grace_seconds = kill_grace_seconds
        self.export_strategy = export_strategy
        self.import_strategy = import_strategy

    @classmethod
    def from_settings(cls, settings: ReplicatorSettings) -> "SqlPackageTransfer":
        return cls(
            tool_command=[settings.sqlpackage_path],
            temp_dir=settings.temp_dir,
            kill_grace_seconds=settings.process_kill_grace_seconds,
        )

    def archive_path(self, database_name: str, output_dir: Optional[str] = None) -> Path:
        directory = Path(output_dir or self.temp_dir)
        directory.mkdir(parents=True, exist_ok=True)
        return directory / archive_file_name(database_name)

    def export(
        self,
        connection_string: str,
        output_dir: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ArchiveArtifact:
        database_name = extract_database_name(connection_string)
        if not database_name:
            raise FormatError("Could not extract database name from connection string")

        path = self.archive_path(database_name, output_dir)
        logger.info(f"Starting BACPAC export of '{database_name}' to {path}")

        artifact = ArchiveArtifact(path=path, database_name=database_name)
        try:
            run = self._run(
                [
                    "/Action:Export",
                    f"/SourceConnectionString:{connection_string}",
                    f"/TargetFile:{path}",
                    "/OverwriteFiles:True",
                    "/Quiet:True",
                ],
                self.export_strategy(),
                on_progress,
                cancel_token,
            )
            self._check(run, "BACPAC export")
        except BaseException:
            # Remove any partial archive
            self.cleanup(artifact)
            raise

        logger.info(f"BACPAC export completed successfully: {path}")
        return artifact

    def import_archive(
        self,
        artifact: ArchiveArtifact,
        target_connection_string: str,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> None:
        logger.info(
            f"Starting BACPAC import from {artifact.path} into {redact_connection_string(target_connection_string)}"
        )

        run = self._run(
            [
                "/Action:Import",
                f"/SourceFile:{artifact.path}",
                f"/TargetConnectionString:{target_connection_string}",
                "/Quiet:True",
            ],
            self.import_strategy(),
            on_progress,
            cancel_token,
        )
        self._check(run, "BACPAC import")

        logger.info("BACPAC import completed successfully")

    def _check(self, run: _ProcessRun, action: str) -> None:
        if run.returncode == 0:
            return

        stdout, stderr = run.stdout_text, run.stderr_text
        detail = redact_connection_string(stderr.strip() or stdout.strip() or "no output")
        logger.error(f"{action} failed with exit code {run.returncode}: {detail}")
        raise ExternalToolError(
            f"{action} failed (exit code {run.returncode}): {detail}",
            exit_code=run.returncode,
            stdout=redact_connection_string(stdout),
            stderr=redact_connection_string(stderr),
        )

    def _run(
        self,
        args: List[str],
        strategy: ProgressStrategy,
        on_progress: Optional[ProgressCallback],
        cancel_token: Optional[CancellationToken],
    ) -> _ProcessRun:
        """Run the tool to completion, streaming its output."""
        command = self.tool_command + args
        logger.info(f"Running: {' '.join(redact_arguments(command))}")

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as e:
            logger.error(f"Failed to start sqlpackage process: {e}")
            raise ExternalToolError(
                f"Failed to start sqlpackage: {e}. Make sure SQL Server tools are installed.",
                tool_missing=True,
            ) from e

        run = _ProcessRun()

        def read_stdout():
            for line in iter(process.stdout.readline, ""):
                run.stdout.append(line)
                logger.debug(f"sqlpackage: {redact_connection_string(line.rstrip())}")
                try:
                    update = strategy.feed(line)
                    if update is not None and on_progress is not None:
                        on_progress(update.progress, update.message)
                except Exception as e:
                    # The pipe is drained even when progress reporting fails
                    logger.warning(f"Progress reporting failed: {e}")

        def read_stderr():
            for line in iter(process.stderr.readline, ""):
                run.stderr.append(line)

        readers = [
            threading.Thread(target=read_stdout, name="sqlpackage-stdout", daemon=True),
            threading.Thread(target=read_stderr, name="sqlpackage-stderr", daemon=True),
        ]
        for reader in readers:
            reader.start()

        def terminate():
            self._terminate(process)

        if cancel_token is not None:
            cancel_token.on_cancel(terminate)
        try:
            run.returncode = process.wait()
            for reader in readers:
                reader.join()
        finally:
            if cancel_token is not None:
                cancel_token.remove(terminate)
            process.stdout.close()
            process.stderr.close()

        if cancel_token is not None and cancel_token.cancelled:
            logger.info(f"sqlpackage stopped by cancellation (exit code {run.returncode})")
            raise JobCancelled("Replication cancelled by user")

        return run

    def _terminate(self, process: subprocess.Popen) -> None:
        """Terminate the child now and kill it if still alive after the grace period."""
        if process.poll() is not None:
            return

        logger.info(f"Terminating sqlpackage process {process.pid}")
        process.terminate()

        def kill_if_alive():
            if process.poll() is None:
                logger.warning(f"sqlpackage process {process.pid} ignored terminate, killing")
                process.kill()

        timer = threading.Timer(self.kill_grace_seconds, kill_if_alive)
        timer.daemon = True
        timer.start()
