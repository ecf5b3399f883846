"""
Shared client instances — Redis.

redis.from_url() does not connect until the first command, so importing this
module is always safe (even when Redis is not running during tests).
"""
import redis

from gaeo_learning.config import REDIS_URL

# ── Redis ─────────────────────────────────────────────────────────────────────
# No decode_responses: RQ stores pickled job payloads as bytes.
redis_client = redis.from_url(REDIS_URL)
