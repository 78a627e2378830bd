from .redis_spec import (
    RedisSpecSchema,
    RedisClusterSpecSchema,
    RedisStorageSchema,
    SecretReferenceSchema,
    IssuerReferenceSchema,
    CertificateSpecSchema,
    RedisTLSSchema,
    InitSpecSchema,
    MonitorSpecSchema,
)

__all__ = [
    "RedisSpecSchema",
    "RedisClusterSpecSchema",
    "RedisStorageSchema",
    "SecretReferenceSchema",
    "IssuerReferenceSchema",
    "CertificateSpecSchema",
    "RedisTLSSchema",
    "InitSpecSchema",
    "MonitorSpecSchema",
]
