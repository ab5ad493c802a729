"""Sequential execution of post-migration configuration scripts."""

import logging
from typing import Optional, Sequence

from ..cancellation import CancellationToken
from ..errors import JobCancelled, ScriptExecutionError
from .connection import ConnectionResolver

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 100


def script_preview(script: str, length: int = PREVIEW_LENGTH) -> str:
    if len(script) > length:
        return script[:length] + "..."
    return script


class ScriptRunner:
    """
    Runs SQL scripts one after another on a single connection.

    Scripts may depend on each other (DDL before DML), so they never run
    in parallel. The first failure stops the run; scripts that already ran
    keep their effects.
    """

    def __init__(self, resolver: ConnectionResolver):
        self.resolver = resolver

    def run(
        self,
        connection_string: str,
        scripts: Sequence[str],
        cancel_token: Optional[CancellationToken] = None,
    ) -> None:
        """
        Execute scripts in order.

        Raises:
            ScriptExecutionError: On the first failing script
            JobCancelled: If the token fires between scripts
        """
        if not scripts:
            return

        total = len(scripts)
        with self.resolver.open(connection_string, autocommit=True, cancel_token=cancel_token) as connection:
            cursor = connection.cursor()
            try:
                for index, script in enumerate(scripts, 1):
                    if cancel_token is not None:
                        cancel_token.raise_if_cancelled()

                    preview = script_preview(script)
                    logger.info(f"Executing script {index}/{total} ({len(script)} chars): {preview}")
                    try:
                        cursor.execute(script)
                        # Drain every result set so errors in later batches surface
                        while cursor.nextset():
                            pass
                    except JobCancelled:
                        raise
                    except Exception as e:
                        logger.error(f"Script {index}/{total} failed: {e}")
                        raise ScriptExecutionError(
                            f"Configuration script {index} failed: {e} (script: {preview})",
                            index=index,
                            preview=preview,
                        ) from e
                    logger.info(f"Script {index}/{total} completed successfully")
            finally:
                cursor.close()
