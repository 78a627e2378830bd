from .base import BaseResource, Verb
from .redis import RedisResource

__all__ = ["BaseResource", "Verb", "RedisResource"]
