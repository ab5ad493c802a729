"""Command-line interface for the replication engine."""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .errors import ReplicatorError
from .models.replication import JobState
from .orchestrator import ReplicationOrchestrator
from .services.crypto import get_cipher
from .services.storage import JsonFileStorage
from .settings import ReplicatorSettings

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Rebaser - Replicate SQL Server databases through BACPAC archives"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--storage", help="Path to the storage JSON file")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Test connection
    test_parser = subparsers.add_parser("test", help="Test a database connection")
    target = test_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--connection-string", help="Connection string to test")
    target.add_argument("--connection-id", help="Id of a saved connection")

    # Run stored replication
    run_parser = subparsers.add_parser("run", help="Run a saved replication configuration")
    run_parser.add_argument("--config-id", required=True, help="Replication configuration id")
    run_parser.add_argument("--poll-interval", type=float, default=2.0, help="Seconds between status updates")

    # Secrets
    subparsers.add_parser("encrypt", help="Encrypt a value read from stdin")
    subparsers.add_parser("decrypt", help="Decrypt a token read from stdin")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    settings = ReplicatorSettings.from_env()
    if args.storage:
        settings.storage_path = args.storage

    try:
        if args.command == "test":
            return run_test(args, settings)
        elif args.command == "run":
            return run_replication(args, settings)
        elif args.command == "encrypt":
            return run_encrypt(settings)
        elif args.command == "decrypt":
            return run_decrypt(settings)
    except ReplicatorError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    parser.print_help()
    return 2


def _orchestrator(settings: ReplicatorSettings) -> ReplicationOrchestrator:
    storage = JsonFileStorage(settings.storage_path, get_cipher(settings))
    return ReplicationOrchestrator(settings=settings, storage=storage)


def run_test(args, settings: ReplicatorSettings) -> int:
    """Test a connection string or a saved connection."""
    if args.connection_string:
        orchestrator = ReplicationOrchestrator(settings=settings)
        result = orchestrator.test_connection(args.connection_string)
    else:
        orchestrator = _orchestrator(settings)
        result = orchestrator.test_stored_connection(args.connection_id)

    print(json.dumps(result.to_dict(), indent=2))
    return 0


def run_replication(args, settings: ReplicatorSettings) -> int:
    """Run a stored replication and follow it until it finishes."""
    orchestrator = _orchestrator(settings)
    job_id = orchestrator.start_stored_replication(args.config_id)
    print(f"Started replication job {job_id}")

    last = None
    try:
        while not orchestrator.wait(job_id, timeout=args.poll_interval):
            job = orchestrator.get_status(job_id)
            line = f"[{job.progress:3d}%] {job.message}"
            if line != last:
                print(line)
                last = line
    except KeyboardInterrupt:
        print("Cancelling...")
        orchestrator.cancel(job_id)
        orchestrator.wait(job_id)

    job = orchestrator.get_status(job_id)

    print("\n" + "=" * 60)
    print("REPLICATION FINISHED")
    print("=" * 60)
    print(f"Status: {job.state.value}")
    print(f"Message: {job.message}")
    if job.database_name:
        print(f"Target database: {job.database_name}")
    if job.error:
        print(f"Error: {job.error}")
    if job.duration_seconds:
        print(f"Duration: {job.duration_seconds:.2f} seconds")

    return 0 if job.state == JobState.COMPLETED else 1


def run_encrypt(settings: ReplicatorSettings) -> int:
    cipher = get_cipher(settings)
    value = sys.stdin.read().rstrip("\r\n")
    print(cipher.encrypt(value))
    return 0


def run_decrypt(settings: ReplicatorSettings) -> int:
    cipher = get_cipher(settings)
    token = sys.stdin.read().strip()
    print(cipher.decrypt(token))
    return 0


if __name__ == "__main__":
    sys.exit(main())
