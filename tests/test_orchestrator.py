"""Tests for the replication orchestrator and job lifecycle."""

import threading

import pytest

from rebaser.errors import NotFoundError, ValidationError
from rebaser.models.replication import (
    JobState,
    ReplicationJob,
    ReplicationRequest,
    ReplicationSettings,
    TargetDescriptor,
)
from rebaser.models.storage import StoredReplicationConfig
from rebaser.orchestrator import ReplicationOrchestrator
from rebaser.settings import ReplicatorSettings
from rebaser.transfer.sqlpackage import SqlPackageTransfer

from conftest import SOURCE, TARGET, FakeTransfer


class Gate:
    """Blocks a pipeline phase until the job is cancelled."""

    def __init__(self):
        self.entered = threading.Event()

    def __call__(self, on_progress, cancel_token):
        self.entered.set()
        assert cancel_token.wait(10)
        cancel_token.raise_if_cancelled()


@pytest.fixture
def transfer(tmp_path):
    return FakeTransfer(tmp_path)


@pytest.fixture
def orchestrator(resolver, transfer, storage, tmp_path):
    orchestrator = ReplicationOrchestrator(
        settings=ReplicatorSettings(temp_dir=str(tmp_path)),
        resolver=resolver,
        transfer=transfer,
        storage=storage,
    )
    yield orchestrator
    orchestrator.shutdown(timeout=10)


def make_request(scripts=(), target=TARGET):
    return ReplicationRequest(
        source_connection_string=SOURCE,
        target=TargetDescriptor(connection_string=target),
        scripts=list(scripts),
    )


def run_to_end(orchestrator, request):
    job_id = orchestrator.start_replication(request)
    assert orchestrator.wait(job_id, timeout=10)
    return orchestrator.get_status(job_id)


class TestReplicationPipeline:

    def test_successful_replication(self, orchestrator, transfer, fake_server):
        job = run_to_end(orchestrator, make_request(scripts=["CREATE TABLE settings(x int)"]))

        assert job.state == JobState.COMPLETED
        assert job.progress == 100
        assert job.message == "Database replication completed successfully"
        assert job.error is None
        assert job.ended_at is not None
        assert job.database_name == "SalesCopy"
        assert "SalesCopy" in fake_server.databases
        assert "settings" in fake_server.tables
        assert transfer.imported[0][1] == "Server=dst;Initial Catalog=SalesCopy;User Id=a;Password=b;"
        assert transfer.cleaned and not transfer.cleaned[0].path.exists()
        assert all(c.closed for c in fake_server.connections)

    def test_progress_checkpoints(self, orchestrator, transfer):
        seen = {}

        def export_hook(on_progress, cancel_token):
            seen["export"] = orchestrator.list_jobs()[0]

        def import_hook(on_progress, cancel_token):
            seen["import"] = orchestrator.list_jobs()[0]

        transfer.export_hook = export_hook
        transfer.import_hook = import_hook

        run_to_end(orchestrator, make_request())

        assert (seen["export"].progress, seen["export"].message) == (10, "Creating BACPAC export")
        assert seen["import"].progress == 70
        assert seen["import"].message == "Importing BACPAC to target database: SalesCopy"

    def test_existing_target_gets_suffixed_name(self, orchestrator, fake_server):
        fake_server.databases.add("SalesCopy")

        job = run_to_end(orchestrator, make_request())

        assert job.state == JobState.COMPLETED
        assert job.database_name.startswith("SalesCopy_")
        assert len(job.database_name) == len("SalesCopy_") + 14

    def test_export_exit_code_fails_job(self, resolver, make_tool, tmp_path, fake_server):
        tool = make_tool("""
            shout("*** Error exporting database: timeout waiting for data")
            sys.exit(3)
        """)
        orchestrator = ReplicationOrchestrator(
            resolver=resolver,
            transfer=SqlPackageTransfer(tool_command=tool, temp_dir=str(tmp_path)),
        )

        job = run_to_end(orchestrator, make_request())

        assert job.state == JobState.FAILED
        assert "exit code 3" in job.message
        assert "timeout waiting for data" in job.message
        assert "exit code 3" in job.error
        assert job.progress == 10
        assert job.ended_at is not None
        assert not fake_server.statements("CREATE DATABASE")
        assert all(c.closed for c in fake_server.connections)

    def test_tool_failure_keeps_secrets_out_of_job_and_logs(self, resolver, make_tool, tmp_path, caplog):
        tool = make_tool("""
            Path(args["TargetFile"]).write_text("partial")
            shout("*** Invalid value for /SourceConnectionString:" + args["SourceConnectionString"])
            sys.exit(1)
        """)
        orchestrator = ReplicationOrchestrator(
            resolver=resolver,
            transfer=SqlPackageTransfer(tool_command=tool, temp_dir=str(tmp_path)),
        )
        request = ReplicationRequest(
            source_connection_string="Server=src;Database=Sales;User Id=a;Password=TopSecret1;",
            target=TargetDescriptor(connection_string=TARGET),
        )

        with caplog.at_level("DEBUG"):
            job = run_to_end(orchestrator, request)

        assert job.state == JobState.FAILED
        assert "Password=***" in job.error
        assert "TopSecret1" not in job.error
        assert "TopSecret1" not in job.message
        assert "TopSecret1" not in caplog.text
        assert list(tmp_path.glob("*.bacpac")) == []

    def test_import_is_followed_by_90_checkpoint_without_scripts(self, orchestrator, monkeypatch):
        checkpoints = []
        advance = ReplicationJob.advance

        def recording(job, progress, message=None):
            checkpoints.append(progress)
            return advance(job, progress, message)

        monkeypatch.setattr(ReplicationJob, "advance", recording)

        job = run_to_end(orchestrator, make_request())

        assert job.state == JobState.COMPLETED
        assert checkpoints == [10, 20, 40, 60, 70, 80, 90, 95]

    def test_source_connection_failure(self, orchestrator, fake_server, transfer):
        fake_server.failing_attempts = {0, 1}

        job = run_to_end(orchestrator, make_request())

        assert job.state == JobState.FAILED
        assert job.progress == 0
        assert "Authentication failed" in job.error
        assert transfer.cleaned == []

    def test_script_failure_fails_job_and_removes_archive(self, orchestrator, transfer, fake_server):
        job = run_to_end(orchestrator, make_request(scripts=["CREATE TABLE t(x int)", "INVALID SQL"]))

        assert job.state == JobState.FAILED
        assert "Configuration script 2 failed" in job.error
        assert job.progress == 90
        assert "t" in fake_server.tables
        assert transfer.cleaned and not transfer.cleaned[0].path.exists()

    def test_provision_failure(self, orchestrator, fake_server, transfer):
        fake_server.fail_on = "CREATE DATABASE"

        job = run_to_end(orchestrator, make_request())

        assert job.state == JobState.FAILED
        assert job.progress == 60
        assert transfer.imported == []
        assert transfer.cleaned

    def test_requires_connection_strings(self, orchestrator):
        with pytest.raises(ValidationError):
            orchestrator.start_replication(make_request(target=""))


class TestCancellation:

    def test_cancel_running_job(self, orchestrator, transfer, fake_server):
        gate = Gate()
        transfer.export_hook = gate
        job_id = orchestrator.start_replication(make_request())
        assert gate.entered.wait(10)

        snapshot = orchestrator.cancel(job_id)

        assert snapshot.state == JobState.CANCELLED
        assert snapshot.message == "Replication cancelled by user"
        assert snapshot.ended_at is not None
        assert orchestrator.wait(job_id, timeout=10)
        final = orchestrator.get_status(job_id)
        assert final.state == JobState.CANCELLED
        assert final.ended_at == snapshot.ended_at
        assert not fake_server.statements("CREATE DATABASE")

    def test_cancel_during_import_removes_archive(self, orchestrator, transfer):
        gate = Gate()
        transfer.import_hook = gate
        job_id = orchestrator.start_replication(make_request(scripts=["CREATE TABLE never(x int)"]))
        assert gate.entered.wait(10)

        orchestrator.cancel(job_id)
        assert orchestrator.wait(job_id, timeout=10)

        assert orchestrator.get_status(job_id).state == JobState.CANCELLED
        assert transfer.cleaned and not transfer.cleaned[0].path.exists()

    def test_cancel_pending_job_is_noop(self, orchestrator):
        job = ReplicationJob()
        orchestrator.registry.add(job)

        snapshot = orchestrator.cancel(job.id)

        assert snapshot.state == JobState.PENDING
        assert snapshot.ended_at is None

    @pytest.mark.parametrize("scripts, expected", [
        ([], JobState.COMPLETED),
        (["INVALID SQL"], JobState.FAILED),
    ])
    def test_cancel_finished_job_is_noop(self, orchestrator, scripts, expected):
        job = run_to_end(orchestrator, make_request(scripts=scripts))
        assert job.state == expected

        snapshot = orchestrator.cancel(job.id)

        assert snapshot.state == expected
        assert snapshot.message == job.message
        assert snapshot.ended_at == job.ended_at

    def test_unknown_job_ids(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.get_status("no-such-job")
        with pytest.raises(NotFoundError):
            orchestrator.cancel("no-such-job")
        with pytest.raises(NotFoundError):
            orchestrator.wait("no-such-job")

    def test_shutdown_cancels_running_jobs(self, orchestrator, transfer):
        gate = Gate()
        transfer.export_hook = gate
        job_id = orchestrator.start_replication(make_request())
        assert gate.entered.wait(10)

        orchestrator.shutdown(timeout=10)

        assert orchestrator.get_status(job_id).state == JobState.CANCELLED


class TestStoredReplication:

    def _config(self, storage, include_schema=True, target_flag=True, scripts=()):
        source_id = storage.add_connection("source", SOURCE)
        target_id = storage.add_connection("target", TARGET, is_target=target_flag)
        script_ids = [storage.add_script(f"script {i}", content) for i, content in enumerate(scripts)]
        return storage.add_config(StoredReplicationConfig(
            id="config-1",
            name="Nightly copy",
            source_connection_id=source_id,
            target_id=target_id,
            config_script_ids=script_ids,
            settings=ReplicationSettings(include_schema=include_schema),
        ))

    def test_runs_and_records_last_run(self, orchestrator, storage, fake_server):
        config_id = self._config(storage, scripts=["CREATE TABLE cfg(x int)"])

        job_id = orchestrator.start_stored_replication(config_id)
        assert orchestrator.wait(job_id, timeout=10)
        job = orchestrator.get_status(job_id)

        assert job.state == JobState.COMPLETED
        assert job.config_id == "config-1"
        assert job.config_name == "Nightly copy"
        assert "cfg" in fake_server.tables
        assert storage.last_run_updates == ["config-1"]

    @pytest.mark.parametrize("include_schema, create_new", [(True, True), (False, False)])
    def test_builds_target_descriptor(self, orchestrator, storage, monkeypatch, include_schema, create_new):
        config_id = self._config(storage, include_schema=include_schema)
        captured = []
        start = orchestrator.start_replication

        def capture(request, on_success=None):
            captured.append(request)
            return start(request, on_success=on_success)

        monkeypatch.setattr(orchestrator, "start_replication", capture)
        job_id = orchestrator.start_stored_replication(config_id)
        orchestrator.wait(job_id, timeout=10)

        target = captured[0].target
        assert target.create_new_database is create_new
        assert target.overwrite_existing is True
        assert target.backup_before is False
        assert target.connection_string == TARGET

    def test_target_must_be_flagged(self, orchestrator, storage):
        config_id = self._config(storage, target_flag=False)

        with pytest.raises(ValidationError):
            orchestrator.start_stored_replication(config_id)
        assert orchestrator.list_jobs() == []

    def test_unknown_config(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.start_stored_replication("missing")

    def test_last_run_failure_keeps_job_completed(self, orchestrator, storage, monkeypatch):
        config_id = self._config(storage)

        def broken(config_id):
            raise OSError("disk full")

        monkeypatch.setattr(storage, "update_replication_config_last_run", broken)
        job_id = orchestrator.start_stored_replication(config_id)
        assert orchestrator.wait(job_id, timeout=10)

        assert orchestrator.get_status(job_id).state == JobState.COMPLETED

    def test_stored_connection_test(self, orchestrator, storage):
        connection_id = storage.add_connection("source", SOURCE)

        result = orchestrator.test_stored_connection(connection_id)

        assert result.database_name == "Sales"

    def test_stored_operations_need_storage(self, resolver, transfer):
        orchestrator = ReplicationOrchestrator(resolver=resolver, transfer=transfer)

        with pytest.raises(ValidationError):
            orchestrator.test_stored_connection("any")
