"""Server-side re-check of a Redis spec.

Admission webhooks normally reject bad specs before they are stored; this
module repeats the checks the lifecycle logic depends on so a spec that slipped
through is reported instead of half-provisioned.
"""
from typing import Dict
from marshmallow import ValidationError as SchemaValidationError
from redop.types.models.redis_spec import (
    MonitorSpec,
    RedisMode,
    RedisSpec,
    RedisTLS,
    SecretReference,
    StorageType,
    TerminationPolicy,
)
from redop.types.models.redis_resources import RedisResources
from redop.types.schemas.redis_spec import RedisSpecSchema
from redop.utils.errors import ValidationError

MIN_CLUSTER_MASTERS = 3


def load_spec(db: Dict) -> RedisSpec:
    """Load `db.spec` into a RedisSpec and validate it.

    Raises:
        ValidationError: if the spec cannot be used as is.
    """
    try:
        spec: RedisSpec = RedisSpecSchema().load(db.get("spec") or {})
    except SchemaValidationError as e:
        raise ValidationError(f"Invalid spec: {e.messages}") from e
    validate_redis(spec)
    return spec


def validate_redis(spec: RedisSpec) -> None:
    if spec.mode == RedisMode.STANDALONE:
        if spec.replicas is not None and spec.replicas != 1:
            raise ValidationError(
                f"spec.replicas must be 1 in {RedisMode.STANDALONE} mode, got {spec.replicas}"
            )
    elif spec.mode == RedisMode.CLUSTER:
        if spec.cluster is None:
            raise ValidationError(
                f"spec.cluster is required in {RedisMode.CLUSTER} mode"
            )
        if spec.cluster.master < MIN_CLUSTER_MASTERS:
            raise ValidationError(
                f"spec.cluster.master must be at least {MIN_CLUSTER_MASTERS}, got {spec.cluster.master}"
            )
        if spec.cluster.replicas < 0:
            raise ValidationError(
                f"spec.cluster.replicas must not be negative, got {spec.cluster.replicas}"
            )
    if spec.tls:
        for cert in spec.tls.certificates or []:
            if cert.alias not in RedisResources.TLS_CERT_ALIASES:
                raise ValidationError(
                    f"Unknown certificate alias `{cert.alias}`, expected one of "
                    f"{', '.join(RedisResources.TLS_CERT_ALIASES)}"
                )


def load_spec_for_termination(db: Dict) -> RedisSpec:
    """Load just enough of a possibly invalid spec to run termination.

    A database whose spec never validated must still be deletable, so the
    fields termination depends on are read leniently with defaults.
    """
    try:
        return load_spec(db)
    except ValidationError:
        pass
    raw = db.get("spec") or {}
    policy = raw.get("terminationPolicy")
    if policy not in (
        TerminationPolicy.HALT,
        TerminationPolicy.DELETE,
        TerminationPolicy.WIPE_OUT,
    ):
        policy = TerminationPolicy.DELETE

    def secret_ref(field: str):
        value = raw.get(field)
        if isinstance(value, dict) and value.get("name"):
            return SecretReference(name=value["name"])
        return None

    return RedisSpec(
        version=raw.get("version") or "",
        mode=RedisMode.STANDALONE,
        replicas=None,
        cluster=None,
        storage_type=StorageType.EPHEMERAL,
        storage=None,
        auth_secret=secret_ref("authSecret"),
        config_secret=secret_ref("configSecret"),
        tls=RedisTLS(issuer_ref=None, certificates=[]) if raw.get("tls") else None,
        init=None,
        monitor=MonitorSpec(agent="", interval="") if raw.get("monitor") else None,
        halted=False,
        termination_policy=policy,
    )
