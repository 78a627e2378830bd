"""Lifecycle state machine of a Redis database.

One pass converges the cluster one step closer to what the object asks for and
is safe to re-run from any point: every dependent is ensured idempotently and
status writes are applied to a freshly read copy.
"""
import asyncio
import kopf
import time
import logging
from enum import Enum
from logging import Logger
from typing import Callable, Dict, Optional
from redop.client.events import EventRecorder
from redop.client.store import ObjectKey, ResourceStore
from redop.controller.dispatcher import ObjectCache
from redop.controller.termination import TerminationPolicyEngine
from redop.controller.validation import load_spec, load_spec_for_termination
from redop.resources import RedisResource, Verb
from redop.sensors import OperatorSensor
from redop.types.models import (
    ConditionStatus,
    ConditionType,
    DatabasePhase,
    EventReason,
    EventType,
    RedisMode,
    RedisSpec,
    TerminationPolicy,
)
from redop.types.settings import Settings
from redop.utils.errors import ValidationError
from redop.utils.helpers import has_condition, is_condition_true, upsert_condition
from redop.utils.meta import add_finalizer, has_finalizer, remove_finalizer

ResourceFactory = Callable[[Dict, RedisSpec], RedisResource]


class ReconcileResult(str, Enum):
    #: Converged, or nothing more can be done until the object changes
    DONE = "done"
    #: Waiting on something outside the operator; a watch event will resume it
    PENDING = "pending"


class LifecycleReconciler:
    """Drives one Redis at a time through provisioning, halting and termination."""

    FINALIZER = "redop.io"

    def __init__(
        self,
        cache: ObjectCache,
        store: ResourceStore,
        recorder: EventRecorder,
        termination: TerminationPolicyEngine,
        conf: Settings = None,
        resource_factory: ResourceFactory = None,
        sensor: OperatorSensor = None,
        logger: Logger = None,
    ):
        self.cache = cache
        self.store = store
        self.recorder = recorder
        self.termination = termination
        self.conf = conf or Settings()
        self.resource_factory = resource_factory or (
            lambda db, spec: RedisResource.from_spec(db, spec, self.conf)
        )
        self.sensor = sensor
        self.logger = logger or logging.getLogger(__name__)

    async def reconcile(self, key: str) -> ReconcileResult:
        db = self.cache.get(key)
        if db is None:
            self.logger.debug(f"Redis {key} no longer exists")
            return ReconcileResult.DONE
        object_key = ObjectKey.from_str(key)

        if db["metadata"].get("deletionTimestamp"):
            if has_finalizer(db, self.FINALIZER):
                return await self.finalize(object_key, db)
            return ReconcileResult.DONE

        if not has_finalizer(db, self.FINALIZER):
            db = await self.store.patch(
                object_key,
                lambda obj: obj if add_finalizer(obj, self.FINALIZER) else None,
            )
            if db is None:
                return ReconcileResult.DONE

        conditions = (db.get("status") or {}).get("conditions")
        if is_condition_true(conditions, ConditionType.PAUSED):
            self.logger.info(f"Reconciliation of {key} is paused")
            return ReconcileResult.DONE

        try:
            if (db.get("spec") or {}).get("halted"):
                return await self.halt(object_key, db)
            return await self.create(object_key, db)
        except Exception as e:
            self.recorder.event(db, EventType.WARNING, EventReason.FAILURE, str(e))
            raise

    def load_spec(self, db: Dict) -> Optional[RedisSpec]:
        """Load the spec, reporting user errors on the object instead of raising."""
        try:
            return load_spec(db)
        except ValidationError as e:
            self.logger.warning(f"Invalid Redis {db['metadata']['name']}: {e}")
            self.recorder.event(db, EventType.WARNING, EventReason.INVALID, str(e))
            return None

    async def create(self, key: ObjectKey, db: Dict) -> ReconcileResult:
        spec = self.load_spec(db)
        if spec is None:
            return ReconcileResult.DONE

        status = db.get("status") or {}
        if not status.get("phase"):
            db = await self.write_phase(key, db, DatabasePhase.PROVISIONING)

        resource = self.resource_factory(db, spec)
        await resource.ensure_governing_service()
        if spec.mode == RedisMode.CLUSTER:
            await resource.ensure_config()
        await resource.ensure_rbac()
        await resource.ensure_auth_secret()
        service_verb = await resource.ensure_service()

        missing = await resource.missing_certificate_secrets()
        if missing:
            self.logger.info(
                f"Waiting for certificate secrets of {key}: {', '.join(missing)}"
            )
            return ReconcileResult.PENDING

        stateful_set_verb = await resource.ensure_stateful_sets()
        if service_verb == Verb.CREATED and stateful_set_verb == Verb.CREATED:
            self.recorder.event(
                db,
                EventType.NORMAL,
                EventReason.SUCCESSFUL,
                "Successfully created Redis",
            )
        elif Verb.PATCHED in (service_verb, stateful_set_verb):
            self.recorder.event(
                db,
                EventType.NORMAL,
                EventReason.SUCCESSFUL,
                "Successfully patched Redis",
            )

        await resource.ensure_app_binding()

        conditions = (db.get("status") or {}).get("conditions")
        if (
            spec.init
            and spec.init.wait_for_initial_restore
            and not has_condition(conditions, ConditionType.PROVISIONED)
            and not is_condition_true(conditions, ConditionType.DATA_RESTORED)
        ):
            self.logger.info(f"Waiting for initial data restore of {key}")
            return ReconcileResult.PENDING

        try:
            db = await self.write_phase(
                key,
                db,
                DatabasePhase.READY,
                observed_generation=db["metadata"].get("generation"),
            )
        except Exception as e:
            self.recorder.event(
                db, EventType.WARNING, EventReason.FAILED_TO_UPDATE, str(e)
            )
            raise

        # Monitoring is best effort; the database is usable without it
        try:
            await resource.ensure_stats_service()
            await resource.manage_monitor()
        except Exception as e:
            self.recorder.event(
                db, EventType.WARNING, EventReason.FAILED_TO_CREATE, str(e)
            )
            self.logger.warning(f"Failed to manage monitoring of {key}: {e}")

        return ReconcileResult.DONE

    async def halt(self, key: ObjectKey, db: Dict) -> ReconcileResult:
        spec = self.load_spec(db)
        if spec is None:
            return ReconcileResult.DONE
        if spec.termination_policy != TerminationPolicy.HALT:
            raise kopf.PermanentError(
                f"Can't halt, since termination policy is '{spec.termination_policy}'"
            )

        resource = self.resource_factory(db, spec)
        await resource.halt_database()
        await self.wait_until_halted(key, resource)

        previous = (db.get("status") or {}).get("phase")
        await self.write_phase(
            key,
            db,
            DatabasePhase.HALTED,
            observed_generation=db["metadata"].get("generation"),
        )
        if previous != DatabasePhase.HALTED:
            self.recorder.event(
                db, EventType.NORMAL, EventReason.HALTED, "Successfully halted Redis"
            )
        return ReconcileResult.DONE

    async def wait_until_halted(self, key: ObjectKey, resource: RedisResource) -> None:
        deadline = time.monotonic() + self.conf.halt_timeout_seconds
        while not await resource.workload_gone():
            if time.monotonic() >= deadline:
                raise kopf.TemporaryError(
                    f"Workload of {key} still running after "
                    f"{self.conf.halt_timeout_seconds}s",
                    delay=self.conf.halt_poll_interval_seconds,
                )
            self.logger.debug(f"Waiting for workload of {key} to go away")
            await asyncio.sleep(self.conf.halt_poll_interval_seconds)

    async def finalize(self, key: ObjectKey, db: Dict) -> ReconcileResult:
        db = await self.write_phase(key, db, DatabasePhase.TERMINATING)
        spec = load_spec_for_termination(db)
        success = False
        try:
            await self.termination.terminate(db, spec)
            success = True
        finally:
            if self.sensor:
                meta = db["metadata"]
                self.sensor.on_termination(
                    meta["name"],
                    meta.get("namespace"),
                    spec.termination_policy,
                    success,
                )
        await self.store.patch(
            key, lambda obj: obj if remove_finalizer(obj, self.FINALIZER) else None
        )
        self.logger.info(f"Terminated {key}")
        return ReconcileResult.DONE

    async def write_phase(
        self,
        key: ObjectKey,
        db: Dict,
        phase: str,
        observed_generation: int = None,
    ) -> Dict:
        """Write `phase` to the status of a fresh copy of the object.

        The write is skipped when the stored status was computed for a newer
        generation than `db`, or when the phase can't move to `phase`.
        Returns the stored object, or `db` if it no longer exists.
        """
        generation = db["metadata"].get("generation")
        transition = {}

        def mutate(obj: Dict) -> Optional[Dict]:
            status = obj["status"] = obj.get("status") or {}
            current = status.get("phase") or DatabasePhase.NONE
            stored = status.get("observedGeneration")
            if stored is not None and generation is not None and stored > generation:
                return None
            if not DatabasePhase.can_transition(current, phase):
                self.logger.debug(
                    f"Not moving {key} from phase '{current}' to '{phase}'"
                )
                return None
            transition["from"] = current
            status["phase"] = phase
            if observed_generation is not None:
                status["observedGeneration"] = observed_generation
            if phase == DatabasePhase.READY:
                status["conditions"] = upsert_condition(
                    status.get("conditions"),
                    {
                        "type": ConditionType.PROVISIONED,
                        "status": ConditionStatus.TRUE,
                        "reason": "DatabaseProvisioned",
                        "message": "Redis is provisioned",
                    },
                )
            return obj

        updated = await self.store.patch_status(key, mutate)
        if self.sensor and transition:
            fields = ["phase"]
            if observed_generation is not None:
                fields.append("observedGeneration")
            if phase == DatabasePhase.READY:
                fields.append("conditions")
            self.sensor.on_status_update(key.name, key.namespace, fields)
            if transition["from"] != phase:
                self.sensor.on_phase_transition(
                    key.name, key.namespace, transition["from"], phase
                )
        return updated if updated is not None else db
