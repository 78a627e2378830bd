from .redis_spec import (
    RedisSpec,
    RedisClusterSpec,
    RedisStorage,
    SecretReference,
    IssuerReference,
    CertificateSpec,
    RedisTLS,
    InitSpec,
    MonitorSpec,
    RedisMode,
    StorageType,
    TerminationPolicy,
)
from .redis_resources import RedisResources
from .status import DatabasePhase, ConditionType, ConditionStatus, EventReason, EventType

__all__ = [
    "RedisSpec",
    "RedisClusterSpec",
    "RedisStorage",
    "SecretReference",
    "IssuerReference",
    "CertificateSpec",
    "RedisTLS",
    "InitSpec",
    "MonitorSpec",
    "RedisMode",
    "StorageType",
    "TerminationPolicy",
    "RedisResources",
    "DatabasePhase",
    "ConditionType",
    "ConditionStatus",
    "EventReason",
    "EventType",
]
