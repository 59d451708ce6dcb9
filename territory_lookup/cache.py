"""Tiered read-through / write-through cache.

Tiers, fastest first:
    memory  per-process LRU map (bounded, swept for expired entries)
    redis   shared distributed cache (optional, REDIS_URL)
    sqlite  durable store shared by every instance on the host
    file    static JSON files, boundary_data / multi_operator_config only

A hit in a slower tier back-fills every faster tier above it. Writes go to
every enabled tier in parallel; a failing tier is logged and skipped.
"""

import copy
import json
import logging
import os
import sqlite3
import tempfile
import threading
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, as_completed
from hashlib import sha256
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import redis

from .config import FILE_CACHE_CATEGORIES, Config
from .models import CacheEntry, NormalizedAddress

logger = logging.getLogger(__name__)


def address_key(prefix: str, address: NormalizedAddress) -> str:
    """Deterministic key from the normalized address fields."""
    parts = [
        address.street_number,
        address.street_name,
        address.street_type,
        address.city,
        address.zip_code,
        address.zip4 or "",
        address.unit_type or "",
        address.unit_number or "",
    ]
    return f"{prefix}:" + "|".join(" ".join(p.split()).lower() for p in parts)


def postal_key(prefix: str, zip_code: str) -> str:
    return f"{prefix}:{zip_code.strip()}"


def _entry_to_json(entry: CacheEntry) -> str:
    return json.dumps({
        "value": entry.value,
        "category": entry.category,
        "ttl": entry.ttl,
        "created_at": entry.created_at,
        "access_count": entry.access_count,
        "last_accessed": entry.last_accessed,
    })


def _copy_entry(entry: CacheEntry) -> CacheEntry:
    return CacheEntry(
        value=copy.deepcopy(entry.value),
        category=entry.category,
        ttl=entry.ttl,
        created_at=entry.created_at,
        access_count=entry.access_count,
        last_accessed=entry.last_accessed,
    )


def _entry_from_json(raw: str) -> CacheEntry:
    d = json.loads(raw)
    return CacheEntry(
        value=d["value"],
        category=d.get("category", ""),
        ttl=d.get("ttl", 0),
        created_at=d.get("created_at", 0.0),
        access_count=d.get("access_count", 0),
        last_accessed=d.get("last_accessed", 0.0),
    )


# ---------------------------------------------------------------------------
# Tiers
# ---------------------------------------------------------------------------
class MemoryTier:
    """
    Bounded in-process LRU map guarded by a lock.

    Values are deep-copied on the way in and out so callers never share a
    stored object, matching the JSON snapshot the other tiers keep.

    Expired entries are swept lazily: the sweep runs from get()/set() once
    sweep_interval has elapsed, so an idle process keeps expired entries
    until its next access (or an explicit sweep()).
    """

    name = "memory"

    def __init__(self, max_size: int = 1000, sweep_interval: float = 300.0):
        self.max_size = max_size
        self.sweep_interval = sweep_interval
        self._data: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._last_sweep = time.time()
        self.evictions = 0
        self.expirations = 0

    def get(self, key: str) -> Optional[CacheEntry]:
        self._maybe_sweep()
        now = time.time()
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if entry.is_expired(now):
                del self._data[key]
                self.expirations += 1
                return None
            entry.touch(now)
            self._data.move_to_end(key)
            return _copy_entry(entry)

    def set(self, key: str, entry: CacheEntry):
        self._maybe_sweep()
        entry = _copy_entry(entry)
        now = time.time()
        with self._lock:
            self._data[key] = entry
            self._data.move_to_end(key)
            while len(self._data) > self.max_size:
                _, dropped = self._data.popitem(last=False)
                # An entry already past its TTL leaves by expiry, not eviction
                if dropped.is_expired(now):
                    self.expirations += 1
                else:
                    self.evictions += 1

    def delete(self, key: str):
        with self._lock:
            self._data.pop(key, None)

    def clear(self):
        with self._lock:
            self._data.clear()

    def sweep(self) -> int:
        """Remove expired entries. Returns the number removed."""
        now = time.time()
        with self._lock:
            expired = [k for k, e in self._data.items() if e.is_expired(now)]
            for k in expired:
                del self._data[k]
            self.expirations += len(expired)
            self._last_sweep = now
        if expired:
            logger.debug(f"Memory cache: swept {len(expired)} expired entries")
        return len(expired)

    def _maybe_sweep(self):
        if time.time() - self._last_sweep >= self.sweep_interval:
            self.sweep()

    @property
    def size(self) -> int:
        return len(self._data)


class RedisTier:
    """Shared distributed tier. Disabled (never raises) when Redis is unreachable at startup."""

    name = "redis"

    def __init__(self, url: str = "", client: Optional[redis.Redis] = None, prefix: str = "territory:"):
        self.prefix = prefix
        self.client = client
        self.available = False

        if client is None and url:
            self.client = redis.Redis.from_url(
                url,
                decode_responses=True,
                socket_timeout=5.0,
                socket_connect_timeout=5.0,
                health_check_interval=30,
            )
        if self.client is None:
            logger.info("Cache: no REDIS_URL configured, distributed tier disabled")
            return

        try:
            self.client.ping()
            self.available = True
            logger.info("Cache: Redis connected")
        except redis.RedisError as e:
            logger.warning(f"Cache: Redis unavailable ({e}), distributed tier disabled")

    def get(self, key: str) -> Optional[CacheEntry]:
        if not self.available:
            return None
        raw = self.client.get(self.prefix + key)
        if raw is None:
            return None
        entry = _entry_from_json(raw)
        if entry.is_expired():
            return None
        return entry

    def set(self, key: str, entry: CacheEntry):
        if not self.available:
            return
        remaining = int(entry.ttl - (time.time() - entry.created_at))
        if remaining <= 0:
            return
        self.client.setex(self.prefix + key, remaining, _entry_to_json(entry))

    def delete(self, key: str):
        if self.available:
            self.client.delete(self.prefix + key)

    def clear(self):
        # Shared instance: only remove our own keys
        if not self.available:
            return
        keys = list(self.client.scan_iter(match=f"{self.prefix}*"))
        if keys:
            self.client.delete(*keys)

    def close(self):
        if self.client is not None:
            self.client.close()


class SqliteTier:
    """Durable SQLite store."""

    name = "sqlite"

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS cache_entries (
                cache_key TEXT PRIMARY KEY,
                category TEXT NOT NULL,
                value_json TEXT NOT NULL,
                created_at REAL NOT NULL,
                expires_at REAL NOT NULL,
                access_count INTEGER NOT NULL DEFAULT 0,
                last_accessed REAL NOT NULL DEFAULT 0
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_cache_expires ON cache_entries(expires_at)
        """)
        self._conn.commit()

    def get(self, key: str) -> Optional[CacheEntry]:
        now = time.time()
        with self._lock:
            row = self._conn.execute(
                "SELECT category, value_json, created_at, expires_at, access_count "
                "FROM cache_entries WHERE cache_key = ? AND expires_at > ?",
                (key, now),
            ).fetchone()
            if not row:
                return None
            self._conn.execute(
                "UPDATE cache_entries SET access_count = access_count + 1, last_accessed = ? WHERE cache_key = ?",
                (now, key),
            )
            self._conn.commit()
        category, value_json, created_at, expires_at, access_count = row
        return CacheEntry(
            value=json.loads(value_json),
            category=category,
            ttl=expires_at - created_at,
            created_at=created_at,
            access_count=access_count + 1,
            last_accessed=now,
        )

    def set(self, key: str, entry: CacheEntry):
        value_json = json.dumps(entry.value)
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO cache_entries "
                "(cache_key, category, value_json, created_at, expires_at, access_count, last_accessed) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (key, entry.category, value_json, entry.created_at,
                 entry.created_at + entry.ttl, entry.access_count, entry.last_accessed),
            )
            self._conn.commit()

    def delete(self, key: str):
        with self._lock:
            self._conn.execute("DELETE FROM cache_entries WHERE cache_key = ?", (key,))
            self._conn.commit()

    def clear(self):
        with self._lock:
            self._conn.execute("DELETE FROM cache_entries")
            self._conn.commit()

    def clear_expired(self) -> int:
        """Remove all expired entries."""
        with self._lock:
            deleted = self._conn.execute(
                "DELETE FROM cache_entries WHERE expires_at <= ?", (time.time(),)
            ).rowcount
            self._conn.commit()
        if deleted:
            logger.info(f"Cache: cleared {deleted} expired entries")
        return deleted

    @property
    def size(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) FROM cache_entries").fetchone()
        return row[0] if row else 0

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None


class FileTier:
    """Static JSON file tier for long-lived boundary/config data."""

    name = "file"

    def __init__(self, directory: Path, categories: Iterable[str] = FILE_CACHE_CATEGORIES):
        self.directory = directory
        self.categories = set(categories)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / f"{sha256(key.encode()).hexdigest()[:32]}.json"

    def accepts(self, category: Optional[str]) -> bool:
        return category is None or category in self.categories

    def get(self, key: str) -> Optional[CacheEntry]:
        path = self._path(key)
        if not path.exists():
            return None
        entry = _entry_from_json(path.read_text())
        if entry.category not in self.categories or entry.is_expired():
            return None
        return entry

    def set(self, key: str, entry: CacheEntry):
        if entry.category not in self.categories:
            return
        # Write-then-rename so readers never see a partial file
        fd, tmp = tempfile.mkstemp(dir=str(self.directory), suffix=".tmp")
        with os.fdopen(fd, "w") as f:
            f.write(_entry_to_json(entry))
        os.replace(tmp, self._path(key))

    def delete(self, key: str):
        self._path(key).unlink(missing_ok=True)

    def clear(self):
        for path in self.directory.glob("*.json"):
            path.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Tiered cache
# ---------------------------------------------------------------------------
class TieredCache:
    """Read-through / write-through cache over the configured tiers."""

    def __init__(self, config: Optional[Config] = None, tiers: Optional[List[Any]] = None):
        self.config = config or Config()
        if tiers is None:
            tiers = [
                MemoryTier(self.config.memory_max_size, self.config.sweep_interval_s),
                RedisTier(self.config.redis_url),
                SqliteTier(self.config.cache_db),
                FileTier(self.config.file_cache_dir),
            ]
        self.tiers = tiers
        self.memory: Optional[MemoryTier] = next((t for t in tiers if isinstance(t, MemoryTier)), None)
        self._pool = ThreadPoolExecutor(max_workers=max(len(tiers), 1), thread_name_prefix="cache-write")

        self._stats_lock = threading.Lock()
        self._hits: Dict[str, int] = {t.name: 0 for t in tiers}
        self._misses = 0
        self._gets = 0
        self._total_get_ms = 0.0

    # ------------------------------------------------------------------
    def _enabled(self, tier, category: Optional[str]) -> bool:
        if getattr(tier, "available", True) is False:
            return False
        if isinstance(tier, FileTier):
            return tier.accepts(category)
        return True

    def lookup(self, key: str, category: Optional[str] = None) -> Optional[Tuple[Any, str]]:
        """Return (value, tier_name) for a hit, or None on a miss."""
        t0 = time.time()
        hit: Optional[CacheEntry] = None
        hit_index = -1
        for i, tier in enumerate(self.tiers):
            if not self._enabled(tier, category):
                continue
            try:
                hit = tier.get(key)
            except Exception as e:
                logger.warning(f"Cache: {tier.name} read failed for '{key}': {e}")
                continue
            if hit is not None:
                hit_index = i
                break

        if hit is not None:
            # Back-fill faster tiers
            for tier in self.tiers[:hit_index]:
                if not self._enabled(tier, hit.category):
                    continue
                try:
                    tier.set(key, CacheEntry(value=hit.value, category=hit.category,
                                             ttl=hit.ttl, created_at=hit.created_at))
                except Exception as e:
                    logger.warning(f"Cache: {tier.name} back-fill failed for '{key}': {e}")

        elapsed_ms = (time.time() - t0) * 1000
        with self._stats_lock:
            self._gets += 1
            self._total_get_ms += elapsed_ms
            if hit is None:
                self._misses += 1
            else:
                self._hits[self.tiers[hit_index].name] += 1

        if hit is None:
            return None
        return hit.value, self.tiers[hit_index].name

    def get(self, key: str, category: Optional[str] = None) -> Optional[Any]:
        found = self.lookup(key, category)
        return found[0] if found else None

    def set(self, key: str, value: Any, category: str):
        """Write to every enabled tier. Per-tier failures are logged, never raised."""
        ttl = self.config.ttl_for(category)
        created_at = time.time()
        tiers = [t for t in self.tiers if self._enabled(t, category)]

        futures = {
            # Each tier gets its own entry; the memory tier mutates access counters
            self._pool.submit(t.set, key, CacheEntry(value=value, category=category,
                                                     ttl=ttl, created_at=created_at)): t
            for t in tiers
        }
        for future in as_completed(futures):
            tier = futures[future]
            try:
                future.result()
            except Exception as e:
                logger.warning(f"Cache: {tier.name} write failed for '{key}': {e}")

    def delete(self, key: str):
        for tier in self.tiers:
            if getattr(tier, "available", True) is False:
                continue
            try:
                tier.delete(key)
            except Exception as e:
                logger.warning(f"Cache: {tier.name} delete failed for '{key}': {e}")

    def clear(self):
        for tier in self.tiers:
            if getattr(tier, "available", True) is False:
                continue
            try:
                tier.clear()
            except Exception as e:
                logger.warning(f"Cache: {tier.name} clear failed: {e}")
        with self._stats_lock:
            self._hits = {t.name: 0 for t in self.tiers}
            self._misses = 0
            self._gets = 0
            self._total_get_ms = 0.0
        logger.info("Cache: all tiers cleared")

    def sweep(self) -> int:
        removed = 0
        for tier in self.tiers:
            if isinstance(tier, MemoryTier):
                removed += tier.sweep()
            elif isinstance(tier, SqliteTier):
                removed += tier.clear_expired()
        return removed

    def warmup(self, entries: Iterable[Tuple[str, Any, str]]) -> int:
        """Pre-populate the cache with (key, value, category) triples."""
        count = 0
        for key, value, category in entries:
            self.set(key, value, category)
            count += 1
        logger.info(f"Cache: warmed {count} entries")
        return count

    # ------------------------------------------------------------------
    def stats(self) -> dict:
        with self._stats_lock:
            hits = dict(self._hits)
            total_hits = sum(hits.values())
            gets = self._gets
            avg_ms = self._total_get_ms / gets if gets else 0.0
            misses = self._misses
        return {
            "hits": hits,
            "total_hits": total_hits,
            "misses": misses,
            "hit_ratio": round(total_hits / gets, 4) if gets else 0.0,
            "average_response_ms": round(avg_ms, 3),
            "evictions": self.memory.evictions if self.memory else 0,
            "expirations": self.memory.expirations if self.memory else 0,
            "memory_size": self.memory.size if self.memory else 0,
            "memory_max_size": self.memory.max_size if self.memory else 0,
            "tiers": [t.name for t in self.tiers if getattr(t, "available", True) is not False],
        }

    def optimize(self) -> List[str]:
        """Tuning recommendations from the current stats."""
        s = self.stats()
        recommendations = []
        if s["hit_ratio"] < 0.8:
            recommendations.append("Consider increasing cache TTL for frequently accessed data")
        if s["memory_max_size"] and s["memory_size"] > s["memory_max_size"] * 0.9:
            recommendations.append("Memory cache near capacity - consider increasing max size")
        if s["average_response_ms"] > 100:
            recommendations.append("Average cache response time is high - check distributed/durable tiers")
        return recommendations

    def close(self):
        self._pool.shutdown(wait=True)
        for tier in self.tiers:
            if hasattr(tier, "close"):
                tier.close()
