"""Decides what survives a deleted Redis, according to its termination policy.

Dependents that should die with the database get its controller owner
reference and are collected by the cluster's garbage collector. Dependents
that should survive lose every reference to it.
"""
import logging
from typing import Callable, Dict, Iterable
from redop.client.dependents import (
    DependentClient,
    SECRETS,
    PERSISTENT_VOLUME_CLAIMS,
)
from redop.common.models.labels import Labels
from redop.resources import BaseResource, RedisResource
from redop.types.models.redis_resources import RedisResources
from redop.types.models.redis_spec import RedisSpec, TerminationPolicy
from redop.utils.meta import (
    controller_ref,
    ensure_owner_reference,
    remove_owner_reference,
)

logger = logging.getLogger(__name__)

ResourceFactory = Callable[[Dict, RedisSpec], RedisResource]


class TerminationPolicyEngine:
    """Applies a termination policy to the dependents of a deleted Redis."""

    def __init__(
        self,
        dependents: DependentClient,
        resource_factory: ResourceFactory = None,
    ):
        self.dependents = dependents
        self.resource_factory = resource_factory or RedisResource.from_spec

    async def terminate(self, db: Dict, spec: RedisSpec) -> None:
        meta = db["metadata"]
        name, namespace = meta["name"], meta.get("namespace")
        policy = spec.termination_policy or TerminationPolicy.DELETE
        named_secrets = RedisResources.named_secret_names(name, spec)
        selector = (
            Labels.generate_offshoot_labels(name, BaseResource.OPERATOR_NAME)
            .offshoot_selectors()
            .as_dict()
        )
        logger.info(f"Terminating {namespace}/{name} with policy {policy}")

        if policy == TerminationPolicy.HALT:
            # Everything with state outlives the database
            await self.release(db, SECRETS, named_secrets)
            for kind in (SECRETS, PERSISTENT_VOLUME_CLAIMS):
                objs = await self.dependents.list(kind, namespace, selector)
                await self.release(db, kind, [obj["metadata"]["name"] for obj in objs])
        elif policy == TerminationPolicy.WIPE_OUT:
            await self.wipe_out(db, named_secrets)
            await self.adopt_volume_claims(db, selector)
        else:
            await self.release(db, SECRETS, named_secrets)
            await self.adopt_volume_claims(db, selector)

        if spec.monitor:
            try:
                await self.resource_factory(db, spec).delete_monitor()
            except Exception as e:
                logger.warning(
                    f"Failed to delete service monitor of {namespace}/{name}: {e}"
                )

    async def release(self, db: Dict, kind: str, names: Iterable[str]) -> None:
        """Remove owner references to `db` from the named objects of `kind`."""
        namespace, uid = db["metadata"].get("namespace"), db["metadata"]["uid"]
        for name in dict.fromkeys(names):
            if await self.dependents.update_owner_references(
                kind, namespace, name, lambda obj: remove_owner_reference(obj, uid)
            ):
                logger.debug(f"Released {kind} {namespace}/{name}")

    async def adopt_volume_claims(self, db: Dict, selector: Dict[str, str]) -> None:
        """Make `db` the controller of its volume claims so they are deleted with it."""
        namespace = db["metadata"].get("namespace")
        ref = controller_ref(db)
        claims = await self.dependents.list(
            PERSISTENT_VOLUME_CLAIMS, namespace, selector
        )
        for claim in claims:
            name = claim["metadata"]["name"]
            if await self.dependents.update_owner_references(
                PERSISTENT_VOLUME_CLAIMS,
                namespace,
                name,
                lambda obj: ensure_owner_reference(obj, ref),
            ):
                logger.debug(f"Adopted {PERSISTENT_VOLUME_CLAIMS} {namespace}/{name}")

    async def wipe_out(self, db: Dict, named_secrets: Iterable[str]) -> None:
        namespace = db["metadata"].get("namespace")
        for name in dict.fromkeys(named_secrets):
            if await self.dependents.delete(SECRETS, namespace, name):
                logger.info(f"Deleted secret {namespace}/{name}")
