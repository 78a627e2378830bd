"""Unit tests for the Redis lifecycle reconciler."""

import kopf
import pytest
from unittest.mock import Mock
from kubernetes_asyncio.client import ApiException
from redop.client.store import ObjectKey
from redop.controller import Controller, ReconcileResult, WatchDispatcher, WorkQueue
from redop.types.models import ConditionType, DatabasePhase, EventReason
from redop.types.settings import Settings
from redop.utils.helpers import get_condition

pytestmark = pytest.mark.asyncio

TLS = {"issuerRef": {"kind": "Issuer", "name": "ca"}}


def snapshot(harness):
    """Everything in the cluster except the Redis objects, without resource versions."""
    result = {}
    for key, obj in harness.cluster.objects.items():
        if key[0] == "redises":
            continue
        meta = {k: v for k, v in obj["metadata"].items() if k != "resourceVersion"}
        result[key] = {**obj, "metadata": meta}
    return result


class TestProvisioning:
    async def test_new_database_becomes_ready(self, harness):
        key = harness.add_redis()

        result = await harness.reconciler.reconcile(key)

        assert result == ReconcileResult.DONE
        db = harness.redis(key)
        assert db["metadata"]["finalizers"] == ["redop.io"]
        assert db["status"]["phase"] == DatabasePhase.READY
        assert db["status"]["observedGeneration"] == 1
        provisioned = get_condition(db["status"]["conditions"], ConditionType.PROVISIONED)
        assert provisioned["status"] == "True"
        assert harness.cluster.names("statefulsets") == {"cache"}
        assert harness.cluster.names("services") == {"cache", "cache-pods"}
        assert harness.cluster.names("secrets") == {"cache-auth"}
        assert harness.recorder.events == [
            ("Normal", EventReason.SUCCESSFUL, "Successfully created Redis")
        ]

    async def test_ensure_order(self, harness):
        key = harness.add_redis()

        await harness.reconciler.reconcile(key)

        assert harness.calls == [
            "ensure_governing_service",
            "ensure_rbac",
            "ensure_auth_secret",
            "ensure_service",
            "missing_certificate_secrets",
            "ensure_stateful_sets",
            "ensure_app_binding",
            "ensure_stats_service",
            "manage_monitor",
        ]

    async def test_cluster_mode_ensures_config(self, harness):
        key = harness.add_redis(mode="Cluster", cluster={"master": 3, "replicas": 1})

        await harness.reconciler.reconcile(key)

        assert harness.calls.index("ensure_config") == 1
        assert harness.phase(key) == DatabasePhase.READY

    async def test_second_pass_changes_nothing(self, harness):
        key = harness.add_redis()
        await harness.reconciler.reconcile(key)
        before = snapshot(harness)
        events = list(harness.recorder.events)
        status_writes = harness.store.status_writes

        result = await harness.reconciler.reconcile(key)

        assert result == ReconcileResult.DONE
        assert snapshot(harness) == before
        assert harness.recorder.events == events
        assert harness.store.status_writes == status_writes

    async def test_spec_change_is_patched(self, harness):
        key = harness.add_redis()
        await harness.reconciler.reconcile(key)

        harness.update_spec(key, version="7.4.0")
        await harness.reconciler.reconcile(key)

        db = harness.redis(key)
        assert db["status"]["observedGeneration"] == 2
        sts = harness.cluster.get("statefulsets", "default", "cache")
        assert sts["spec"]["image"] == "redis:7.4.0"
        assert harness.recorder.events[-1] == (
            "Normal",
            EventReason.SUCCESSFUL,
            "Successfully patched Redis",
        )

    async def test_sensor_sees_phase_transitions(self, harness):
        harness.reconciler.sensor = Mock()
        key = harness.add_redis()

        await harness.reconciler.reconcile(key)

        transitions = [c.args[2:] for c in harness.reconciler.sensor.on_phase_transition.call_args_list]
        assert transitions == [("", DatabasePhase.PROVISIONING), (DatabasePhase.PROVISIONING, DatabasePhase.READY)]
        harness.reconciler.sensor.on_status_update.assert_called_with(
            "cache", "default", ["phase", "observedGeneration", "conditions"]
        )

    async def test_missing_object_is_done(self, harness):
        result = await harness.reconciler.reconcile("default/ghost")

        assert result == ReconcileResult.DONE
        assert harness.calls == []

    async def test_finalizer_write_survives_conflict(self, harness):
        key = harness.add_redis()
        harness.store.conflicts = 2

        await harness.reconciler.reconcile(key)

        assert harness.redis(key)["metadata"]["finalizers"] == ["redop.io"]

    async def test_failed_step_is_rerun_from_scratch(self, harness):
        key = harness.add_redis()
        harness.failures["ensure_stateful_sets"] = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await harness.reconciler.reconcile(key)

        assert harness.phase(key) == DatabasePhase.PROVISIONING
        assert harness.recorder.events == [("Warning", EventReason.FAILURE, "boom")]
        versions = {
            name: harness.cluster.get("services", "default", name)["metadata"]["resourceVersion"]
            for name in ("cache", "cache-pods")
        }

        del harness.failures["ensure_stateful_sets"]
        harness.calls.clear()
        result = await harness.reconciler.reconcile(key)

        assert result == ReconcileResult.DONE
        assert harness.phase(key) == DatabasePhase.READY
        assert harness.calls[0] == "ensure_governing_service"
        assert harness.cluster.names("services") == {"cache", "cache-pods"}
        for name, version in versions.items():
            service = harness.cluster.get("services", "default", name)
            assert service["metadata"]["resourceVersion"] == version
        assert harness.cluster.names("statefulsets") == {"cache"}
        messages = [message for _, _, message in harness.recorder.events]
        assert "Successfully patched Redis" not in messages
        assert "Successfully created Redis" not in messages

    async def test_status_write_failure_is_reported(self, harness):
        key = harness.add_redis()
        await harness.reconciler.reconcile(key)
        harness.update_spec(key, version="7.4.0")
        harness.store.status_error = ApiException(status=500, reason="Internal")

        with pytest.raises(ApiException):
            await harness.reconciler.reconcile(key)

        assert EventReason.FAILED_TO_UPDATE in harness.recorder.reasons()
        assert harness.recorder.reasons()[-1] == EventReason.FAILURE

    @pytest.mark.parametrize(
        "step, status",
        [
            ("ensure_app_binding", 404),
            ("ensure_service", 403),
            ("ensure_stateful_sets", 503),
        ],
    )
    async def test_api_errors_are_retried_with_backoff(self, make_harness, step, status):
        conf = Settings(
            conflict_retries=3,
            max_requeues=5,
            queue_base_delay_seconds=0.5,
            queue_max_delay_seconds=10,
        )
        harness = make_harness(conf)
        queue = WorkQueue(conf)
        queue.add_after = Mock()
        controller = Controller(
            harness.reconciler, queue, WatchDispatcher(queue, harness.cache, conf), conf=conf
        )
        key = harness.add_redis()
        harness.failures[step] = ApiException(status=status, reason="Error")

        for _ in range(3):
            await controller.process_next_key(key)

        assert [c.args for c in queue.add_after.call_args_list] == [
            (key, 0.5),
            (key, 1.0),
            (key, 2.0),
        ]
        assert queue.num_requeues(key) == 3
        assert harness.recorder.reasons().count(EventReason.FAILURE) == 3

        del harness.failures[step]
        await controller.process_next_key(key)

        assert harness.phase(key) == DatabasePhase.READY
        assert queue.num_requeues(key) == 0

    async def test_monitoring_failure_does_not_fail_pass(self, harness):
        key = harness.add_redis(monitor={"agent": "prometheus.io/operator"})
        harness.failures["manage_monitor"] = RuntimeError("no CRD")

        result = await harness.reconciler.reconcile(key)

        assert result == ReconcileResult.DONE
        assert harness.phase(key) == DatabasePhase.READY
        assert ("Warning", EventReason.FAILED_TO_CREATE, "no CRD") in harness.recorder.events


class TestInvalidSpec:
    async def test_invalid_spec_is_reported_not_retried(self, harness):
        key = harness.add_redis(replicas=3)

        result = await harness.reconciler.reconcile(key)

        assert result == ReconcileResult.DONE
        assert harness.recorder.reasons() == [EventReason.INVALID]
        assert harness.phase(key) is None
        assert harness.calls == []

    async def test_cluster_without_enough_masters(self, harness):
        key = harness.add_redis(mode="Cluster", cluster={"master": 2, "replicas": 1})

        result = await harness.reconciler.reconcile(key)

        assert result == ReconcileResult.DONE
        assert harness.recorder.reasons() == [EventReason.INVALID]


class TestTLS:
    async def test_waits_for_every_certificate(self, harness):
        key = harness.add_redis(tls=TLS)
        harness.add_secret("cache-server-cert")
        harness.add_secret("cache-client-cert")

        result = await harness.reconciler.reconcile(key)

        assert result == ReconcileResult.PENDING
        assert harness.phase(key) == DatabasePhase.PROVISIONING
        assert "ensure_stateful_sets" not in harness.calls
        assert harness.cluster.names("statefulsets") == set()
        assert harness.cluster.names("services") == {"cache", "cache-pods"}

    async def test_proceeds_once_certificates_exist(self, harness):
        key = harness.add_redis(tls=TLS)
        assert await harness.reconciler.reconcile(key) == ReconcileResult.PENDING

        for alias in ("server", "client", "metrics-exporter"):
            harness.add_secret(f"cache-{alias}-cert")
        result = await harness.reconciler.reconcile(key)

        assert result == ReconcileResult.DONE
        assert harness.phase(key) == DatabasePhase.READY

    async def test_certificate_secret_override(self, harness):
        tls = {**TLS, "certificates": [{"alias": "server", "secretName": "custom"}]}
        key = harness.add_redis(tls=tls)
        for name in ("custom", "cache-client-cert", "cache-metrics-exporter-cert"):
            harness.add_secret(name)

        result = await harness.reconciler.reconcile(key)

        assert result == ReconcileResult.DONE


class TestInitialRestore:
    async def test_waits_for_restore(self, harness):
        key = harness.add_redis(init={"waitForInitialRestore": True})

        result = await harness.reconciler.reconcile(key)

        assert result == ReconcileResult.PENDING
        assert harness.phase(key) == DatabasePhase.PROVISIONING
        assert harness.cluster.names("statefulsets") == {"cache"}
        assert harness.cluster.names("appbindings") == {"cache"}

    async def test_restore_releases_wait(self, harness):
        key = harness.add_redis(init={"waitForInitialRestore": True})
        await harness.reconciler.reconcile(key)

        harness.set_condition(key, ConditionType.DATA_RESTORED, "True")
        result = await harness.reconciler.reconcile(key)

        assert result == ReconcileResult.DONE
        assert harness.phase(key) == DatabasePhase.READY

    async def test_provisioned_database_does_not_wait_again(self, harness):
        key = harness.add_redis(init={"waitForInitialRestore": True})
        harness.set_condition(key, ConditionType.DATA_RESTORED, "True")
        await harness.reconciler.reconcile(key)

        harness.set_condition(key, ConditionType.DATA_RESTORED, "False")
        result = await harness.reconciler.reconcile(key)

        assert result == ReconcileResult.DONE
        assert harness.phase(key) == DatabasePhase.READY


class TestPaused:
    async def test_paused_database_is_skipped(self, harness):
        key = harness.add_redis()
        harness.set_condition(key, ConditionType.PAUSED, "True")

        result = await harness.reconciler.reconcile(key)

        assert result == ReconcileResult.DONE
        assert harness.calls == []
        assert harness.phase(key) is None

    async def test_unpaused_database_resumes(self, harness):
        key = harness.add_redis()
        harness.set_condition(key, ConditionType.PAUSED, "False")

        await harness.reconciler.reconcile(key)

        assert harness.phase(key) == DatabasePhase.READY


class TestHalt:
    async def test_halt(self, harness):
        key = harness.add_redis(terminationPolicy="Halt")
        await harness.reconciler.reconcile(key)

        harness.update_spec(key, halted=True)
        result = await harness.reconciler.reconcile(key)

        assert result == ReconcileResult.DONE
        assert harness.phase(key) == DatabasePhase.HALTED
        assert harness.cluster.names("statefulsets") == set()
        assert harness.cluster.names("services") == set()
        assert harness.cluster.names("persistentvolumeclaims") == {"data-cache-0"}
        assert harness.cluster.names("secrets") == {"cache-auth"}
        assert harness.recorder.reasons()[-1] == EventReason.HALTED

    async def test_halted_event_only_on_transition(self, harness):
        key = harness.add_redis(terminationPolicy="Halt", halted=True)
        await harness.reconciler.reconcile(key)
        await harness.reconciler.reconcile(key)

        assert harness.recorder.reasons().count(EventReason.HALTED) == 1

    async def test_resume_after_halt(self, harness):
        key = harness.add_redis(terminationPolicy="Halt", halted=True)
        await harness.reconciler.reconcile(key)

        harness.update_spec(key, halted=False)
        await harness.reconciler.reconcile(key)

        assert harness.phase(key) == DatabasePhase.READY
        assert harness.cluster.names("statefulsets") == {"cache"}

    @pytest.mark.parametrize(
        "phase",
        [None, DatabasePhase.PROVISIONING, DatabasePhase.READY, DatabasePhase.HALTED],
    )
    @pytest.mark.parametrize("policy", ["Delete", "WipeOut"])
    async def test_halt_rejected_without_halt_policy(self, harness, phase, policy):
        key = harness.add_redis(terminationPolicy=policy, halted=True)
        if phase is not None:
            harness.set_status(key, phase=phase)

        with pytest.raises(kopf.PermanentError):
            await harness.reconciler.reconcile(key)

        assert harness.phase(key) == phase
        assert "halt_database" not in harness.calls
        assert harness.recorder.reasons() == [EventReason.FAILURE]

    async def test_halt_times_out_while_workload_runs(self, harness):
        key = harness.add_redis(terminationPolicy="Halt", halted=True)
        harness.workload_stuck = True

        with pytest.raises(kopf.TemporaryError):
            await harness.reconciler.reconcile(key)

        assert harness.phase(key) is None


class TestStatusWrites:
    async def test_null_status_is_written(self, harness):
        key = harness.add_redis()
        db = harness.redis(key)
        db["metadata"]["finalizers"] = ["redop.io"]
        db["status"] = None
        harness.store_object(db)

        result = await harness.reconciler.reconcile(key)

        assert result == ReconcileResult.DONE
        assert harness.phase(key) == DatabasePhase.READY
        assert harness.redis(key)["status"]["observedGeneration"] == 1

    async def test_stale_generation_does_not_overwrite_status(self, harness):
        key = harness.add_redis()
        await harness.reconciler.reconcile(key)
        harness.set_status(key, observedGeneration=5)
        stale = harness.cache.get(key)
        status_writes = harness.store.status_writes

        await harness.reconciler.write_phase(
            ObjectKey.from_str(key), stale, DatabasePhase.HALTED, observed_generation=1
        )

        assert harness.store.status_writes == status_writes
        assert harness.phase(key) == DatabasePhase.READY

    async def test_ready_does_not_regress_terminating(self, harness):
        key = harness.add_redis()
        harness.set_status(key, phase=DatabasePhase.TERMINATING)

        await harness.reconciler.write_phase(
            ObjectKey.from_str(key), harness.cache.get(key), DatabasePhase.READY
        )

        assert harness.phase(key) == DatabasePhase.TERMINATING


class TestDeletion:
    @pytest.mark.parametrize("policy", ["Halt", "Delete", "WipeOut"])
    async def test_no_references_remain(self, harness, policy):
        key = harness.add_redis(terminationPolicy=policy)
        await harness.reconciler.reconcile(key)
        uid = harness.redis(key)["metadata"]["uid"]

        harness.delete_redis(key)
        result = await harness.reconciler.reconcile(key)

        assert result == ReconcileResult.DONE
        assert harness.redis(key) is None
        assert harness.cluster.referencing(uid) == []
        assert harness.cluster.names("statefulsets") == set()

    async def test_halt_keeps_storage_and_secrets(self, harness):
        key = harness.add_redis(terminationPolicy="Halt")
        await harness.reconciler.reconcile(key)

        harness.delete_redis(key)
        await harness.reconciler.reconcile(key)

        assert harness.cluster.names("persistentvolumeclaims") == {"data-cache-0"}
        assert harness.cluster.names("secrets") == {"cache-auth"}

    async def test_delete_keeps_secrets_only(self, harness):
        key = harness.add_redis(terminationPolicy="Delete")
        await harness.reconciler.reconcile(key)

        harness.delete_redis(key)
        await harness.reconciler.reconcile(key)

        assert harness.cluster.names("persistentvolumeclaims") == set()
        assert harness.cluster.names("secrets") == {"cache-auth"}

    async def test_wipe_out_removes_everything(self, harness):
        key = harness.add_redis(terminationPolicy="WipeOut", configSecret={"name": "cfg"})
        harness.add_secret("cfg")
        await harness.reconciler.reconcile(key)

        harness.delete_redis(key)
        await harness.reconciler.reconcile(key)

        assert harness.cluster.names("persistentvolumeclaims") == set()
        assert harness.cluster.names("secrets") == set()
        assert harness.cluster.objects == {}

    async def test_delete_with_invalid_spec(self, harness):
        key = harness.add_redis(terminationPolicy="WipeOut", replicas=3)
        await harness.reconciler.reconcile(key)
        harness.add_secret("cache-auth", owner=harness.redis(key))

        harness.delete_redis(key)
        result = await harness.reconciler.reconcile(key)

        assert result == ReconcileResult.DONE
        assert harness.redis(key) is None
        assert harness.cluster.names("secrets") == set()

    async def test_deleted_object_without_finalizer(self, harness):
        key = harness.add_redis()
        harness.delete_redis(key)

        result = await harness.reconciler.reconcile(key)

        assert result == ReconcileResult.DONE
        assert harness.calls == []
