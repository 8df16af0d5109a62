"""Unit tests for the replication and backup schedulers."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from vault_service.core.settings import BackupPolicy, OptimizationPolicy, SecurityPolicy
from vault_service.infra.metrics.prometheus import REGISTRY
from vault_service.infra.storage import CopyStatus, StorageEventType
from vault_service.infra.storage.backup import backup_key
from vault_service.infra.storage.optimizer import REFERENCE_MAGIC

from tests.utils import SECONDARY, SECONDARY_BUCKET, make_request, make_settings


def _terminal_failures(kind: str) -> float:
    value = REGISTRY.get_sample_value(
        "vault_storage_copy_terminal_failures_total",
        {"kind": kind, "region": SECONDARY},
    )
    return value or 0.0


@pytest.mark.unit
class TestReplicationRetries:
    """Test bounded retries of failed replication."""

    @pytest.fixture
    async def engine(self, engine_factory):
        settings = make_settings(max_sweep_attempts=3, backup=BackupPolicy(enabled=False))
        engine = engine_factory(settings)
        await engine.initialize()
        return engine

    @pytest.mark.asyncio
    async def test_retry_ceiling_marks_copy_terminal(self, engine, backend):
        """Test that repeated failures end in a terminal failed state."""
        backend.fail_regions = {SECONDARY}
        before = _terminal_failures("replication")

        await engine.store_encrypted_object(make_request("doc.bin"))
        await engine.replication.wait_idle()

        target = engine.get_object_status("doc.bin").replication_targets[0]
        assert target.status is CopyStatus.FAILED
        assert target.attempts == 1
        assert not target.terminal

        first = await engine.replication.sweep()
        second = await engine.replication.sweep()

        assert (first.attempted, first.failed, first.terminal) == (1, 1, 0)
        assert (second.attempted, second.failed, second.terminal) == (1, 1, 1)

        target = engine.get_object_status("doc.bin").replication_targets[0]
        assert target.attempts == 3
        assert target.terminal
        assert "Simulated outage" in target.last_error
        assert _terminal_failures("replication") == before + 1

        # Terminal copies are skipped until an operator resets them
        third = await engine.replication.sweep()
        assert third.attempted == 0
        assert [r.object_key for r in engine.replication.failed_objects()] == ["doc.bin"]

        errors = engine.recent_events(event_type=StorageEventType.ERROR)
        assert len(errors) == 3
        assert errors[-1].metadata["terminal"] is True

    @pytest.mark.asyncio
    async def test_reset_failed_makes_copy_eligible_again(self, engine, backend):
        backend.fail_regions = {SECONDARY}
        await engine.store_encrypted_object(make_request("doc.bin"))
        await engine.replication.wait_idle()
        await engine.replication.sweep()
        await engine.replication.sweep()

        backend.fail_regions.clear()
        assert engine.replication.reset_failed("doc.bin") == 1

        report = await engine.replication.sweep()

        assert report.completed == 1
        status = engine.get_object_status("doc.bin")
        assert status.replication_status is CopyStatus.COMPLETED
        assert "doc.bin" in backend.keys(SECONDARY, SECONDARY_BUCKET)
        assert engine.replication.failed_objects() == []

    @pytest.mark.asyncio
    async def test_reset_failed_without_terminal_copies(self, engine):
        await engine.store_encrypted_object(make_request("doc.bin"))
        await engine.replication.wait_idle()

        assert engine.replication.reset_failed("doc.bin") == 0

    @pytest.mark.asyncio
    async def test_sweep_retries_failed_copy(self, engine, backend):
        """Test that a sweep completes a copy after the outage ends."""
        backend.fail_regions = {SECONDARY}
        await engine.store_encrypted_object(make_request("doc.bin"))
        await engine.replication.wait_idle()
        backend.fail_regions.clear()

        report = await engine.replication.sweep()

        assert report.completed == 1
        target = engine.get_object_status("doc.bin").replication_targets[0]
        assert target.status is CopyStatus.COMPLETED
        assert target.location == "doc.bin"
        replications = engine.recent_events(event_type=StorageEventType.REPLICATION)
        assert replications[-1].metadata["trigger"] == "sweep"

    @pytest.mark.asyncio
    async def test_stuck_copy_times_out(self, engine_factory, backend):
        """Test that a hanging backend call does not stall the sweep."""
        settings = make_settings(sweep_operation_timeout=0.05, backup=BackupPolicy(enabled=False))
        engine = engine_factory(settings)

        async def hang(*args, **kwargs):
            await asyncio.sleep(10)

        await engine.store_encrypted_object(make_request("doc.bin"))
        backend.get = hang
        await engine.replication.wait_idle()
        await engine.replication.sweep()

        target = engine.get_object_status("doc.bin").replication_targets[0]
        assert target.status is CopyStatus.FAILED
        assert target.last_error.startswith("StorageTimeoutError")


@pytest.mark.unit
class TestBackupRetention:
    """Test backup copies and retention enforcement."""

    @pytest.mark.asyncio
    async def test_backup_location_is_dated(self, engine_factory, backend):
        engine = engine_factory(make_settings(security=SecurityPolicy(replication=False)))
        await engine.store_encrypted_object(make_request("users/1/doc.bin"))
        await engine.backup.wait_idle()

        target = engine.get_object_status("users/1/doc.bin").backup_targets[0]

        assert target.status is CopyStatus.COMPLETED
        assert target.location == backup_key("users/1/doc.bin", target.completed_at)
        assert target.location in backend.keys(SECONDARY, SECONDARY_BUCKET)

    @pytest.mark.asyncio
    async def test_expired_backups_are_deleted(self, engine_factory, backend):
        """Test that retired backups are removed after the retention period."""
        settings = make_settings(
            security=SecurityPolicy(replication=False),
            optimization=OptimizationPolicy(lifecycle_management=False),
            backup=BackupPolicy(retention_days=90),
        )
        engine = engine_factory(settings)
        await engine.store_encrypted_object(make_request("doc.bin"))
        await engine.backup.wait_idle()
        location = engine.get_object_status("doc.bin").backup_targets[0].location
        await engine.delete_encrypted_object("doc.bin")
        now = datetime.now(UTC)

        await engine.backup.sweep(now=now + timedelta(days=10))
        assert location in backend.keys(SECONDARY, SECONDARY_BUCKET)
        assert len(engine.backup.retired_copies()) == 1

        await engine.backup.sweep(now=now + timedelta(days=91))
        assert location not in backend.keys(SECONDARY, SECONDARY_BUCKET)
        assert engine.backup.retired_copies() == []

    @pytest.mark.asyncio
    async def test_duplicate_backup_outlives_deleted_original(self, engine_factory, backend):
        """Test that a deduplicated object's backup holds its content, not a reference."""
        settings = make_settings(
            security=SecurityPolicy(replication=False),
            optimization=OptimizationPolicy(lifecycle_management=False),
            backup=BackupPolicy(retention_days=90),
        )
        engine = engine_factory(settings)
        payload = b"shared-content" * 100
        expected = make_request("b.bin", ciphertext=payload).payload()
        await engine.store_encrypted_object(make_request("a.bin", ciphertext=payload))
        await engine.store_encrypted_object(make_request("b.bin", ciphertext=payload))
        await engine.backup.wait_idle()
        original = engine.get_object_status("a.bin").backup_targets[0].location
        duplicate = engine.get_object_status("b.bin").backup_targets[0].location

        await engine.delete_encrypted_object("a.bin")
        await engine.backup.sweep(now=datetime.now(UTC) + timedelta(days=91))

        keys = backend.keys(SECONDARY, SECONDARY_BUCKET)
        assert original not in keys
        assert duplicate in keys
        stored = await backend.get(
            engine.registry.get(SECONDARY), duplicate, bucket=SECONDARY_BUCKET
        )
        assert not stored.startswith(REFERENCE_MAGIC)
        assert engine.optimizer.restore(stored, "deflate") == expected

    @pytest.mark.asyncio
    async def test_lifecycle_policy_owns_expiry(self, engine_factory, backend):
        """Test that native lifecycle management leaves deletion to the bucket."""
        settings = make_settings(
            security=SecurityPolicy(replication=False),
            optimization=OptimizationPolicy(lifecycle_management=True),
        )
        engine = engine_factory(settings)
        await engine.store_encrypted_object(make_request("doc.bin"))
        await engine.backup.wait_idle()
        location = engine.get_object_status("doc.bin").backup_targets[0].location
        await engine.delete_encrypted_object("doc.bin")

        expired = await engine.backup.enforce_retention(datetime.now(UTC) + timedelta(days=91))

        assert expired == 1
        assert engine.backup.retired_copies() == []
        assert location in backend.keys(SECONDARY, SECONDARY_BUCKET)

    @pytest.mark.asyncio
    async def test_live_backups_are_kept(self, engine_factory, backend):
        """Test that retention never removes the backup of a live object."""
        settings = make_settings(
            security=SecurityPolicy(replication=False),
            optimization=OptimizationPolicy(lifecycle_management=False),
        )
        engine = engine_factory(settings)
        await engine.store_encrypted_object(make_request("doc.bin"))
        await engine.backup.wait_idle()

        report = await engine.backup.sweep(now=datetime.now(UTC) + timedelta(days=365))

        assert report.attempted == 0
        location = engine.get_object_status("doc.bin").backup_targets[0].location
        assert location in backend.keys(SECONDARY, SECONDARY_BUCKET)

    @pytest.mark.asyncio
    async def test_disabled_backup_sweep_is_noop(self, engine_factory):
        engine = engine_factory(make_settings(backup=BackupPolicy(enabled=False)))
        await engine.store_encrypted_object(make_request("doc.bin"))

        report = await engine.backup.sweep()

        assert report.attempted == 0
        assert engine.get_object_status("doc.bin").backup_status is CopyStatus.PENDING
