from . import probes, redis

__all__ = ["probes", "redis"]
