from budgetbuddy.core.cache import TimedCache
from budgetbuddy.core.config import settings

read_cache = TimedCache(redis_url=settings.redis_url, key_prefix=settings.redis_prefix)
