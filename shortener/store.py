"""Code/URL store with expiry and write-through JSON snapshot persistence.

This module owns every short code → URL mapping. Each mutation rewrites the
full snapshot file before returning, so a short code that has been handed to a
client always survives a clean restart.

Flow Diagram — shorten()
========================
::
    ┌─────────────┐
    │ shorten(url)│
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Generate    │◄─────┐
    │ 10-char code│      │ collision
    └──────┬──────┘      │ (bounded)
           ▼             │
    ┌─────────────┐      │
    │ In index?   │──YES─┘
    └──────┬──────┘
           ▼ NO
    ┌─────────────┐
    │ Insert      │
    │ mapping     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Rewrite     │
    │ snapshot    │
    │ (tmp+rename)│
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Return code │
    └─────────────┘

Flow Diagram — acknowledge()
============================
::
    ┌─────────────┐
    │ acknowledge │
    │ (code)      │
    └──────┬──────┘
    KNOWN?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────────┐
│ False   │  │ Set flag,   │
└─────────┘  │ persist     │
             └──────┬──────┘
                    ▼
             ┌─────────────┐
             │ Notify      │
             │ listeners   │
             │ (cancel     │
             │  retries)   │
             └──────┬──────┘
                    ▼
             ┌─────────────┐
             │ True        │
             └─────────────┘

How to Use
===========
**Step 1 — Construct once at startup**::
    store = URLStore.from_settings(settings)

**Step 2 — Shorten and look up**::
    code = await store.shorten("https://example.com", settings.short_url_base)
    url = await store.lookup(code)

**Step 3 — Acknowledge and sweep**::
    await store.acknowledge(code)
    removed = await store.sweep_expired()

Key Behaviours
===============
- Codes are drawn uniformly from a 62-symbol alphabet via nanoid.
- Expired mappings are removed lazily on lookup and by the hourly sweep.
- Expired records found in the snapshot at load time are dropped.
- A missing or unparseable snapshot yields an empty store, never a crash.
- Individual malformed records are skipped; the rest still load.
- Snapshot write failures are logged; the store keeps serving from memory.
- Writes are serialized by an asyncio lock and run in a worker thread.
"""

import asyncio
import datetime
import logging
import os
import tempfile
from collections.abc import Callable
from pathlib import Path

from nanoid import generate
from prometheus_client import Counter
from pydantic import ValidationError

from shortener.config import Settings
from shortener.enums import RequestStatus
from shortener.exceptions import CodeGenerationError, PersistenceError
from shortener.models import URLMapping, dump_snapshot, load_snapshot_records, utcnow

__all__ = ["ALPHABET", "URLStore"]

logger = logging.getLogger("urlshortener.store")

ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

URLS_SHORTENED_TOTAL = Counter(
    "url_shortener_urls_shortened_total",
    "Total short codes created",
)
URL_LOOKUPS_TOTAL = Counter(
    "url_shortener_lookups_total",
    "Total short code lookups",
    ["status"],
)
URLS_EXPIRED_TOTAL = Counter(
    "url_shortener_urls_expired_total",
    "Total mappings removed after expiry",
)
SHORT_CODE_COLLISIONS_TOTAL = Counter(
    "url_shortener_short_code_collisions_total",
    "Generated short codes that were already in use",
)
SNAPSHOT_WRITE_FAILURES_TOTAL = Counter(
    "url_shortener_snapshot_write_failures_total",
    "Snapshot writes that failed",
)


class URLStore:
    """In-memory index of short code mappings backed by a JSON snapshot.

    Example:
        >>> store = URLStore("data/urlMappings.json")
        >>> code = await store.shorten("https://example.com")
        >>> await store.lookup(code)
        'https://example.com'
    """

    def __init__(
        self,
        snapshot_path: str | os.PathLike,
        *,
        code_length: int = 10,
        lifetime_days: int = 30,
        max_generation_attempts: int = 100,
        clock: Callable[[], datetime.datetime] = utcnow,
    ):
        assert code_length > 0, f"code_length must be positive, got {code_length!r}"
        assert max_generation_attempts > 0, "max_generation_attempts must be positive"
        self._path = Path(snapshot_path)
        self._code_length = code_length
        self._lifetime = datetime.timedelta(days=lifetime_days)
        self._max_generation_attempts = max_generation_attempts
        self._clock = clock
        self._mappings: dict[str, URLMapping] = {}
        self._ack_listeners: list[Callable[[str], None]] = []
        self._write_lock = asyncio.Lock()
        self._pending_writes: set[asyncio.Task] = set()
        self._load()

    @classmethod
    def from_settings(cls, settings: Settings) -> "URLStore":
        return cls(
            settings.SNAPSHOT_PATH,
            code_length=settings.SHORT_CODE_LENGTH,
            lifetime_days=settings.URL_LIFETIME_DAYS,
            max_generation_attempts=settings.MAX_CODE_GENERATION_ATTEMPTS,
        )

    def __len__(self) -> int:
        return len(self._mappings)

    def __contains__(self, short_code: object) -> bool:
        return short_code in self._mappings

    @property
    def snapshot_path(self) -> Path:
        return self._path

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    def generate_short_code(self) -> str:
        """Return a code that is not in the current index.

        Raises:
            CodeGenerationError: If every attempt collided.
        """
        for _ in range(self._max_generation_attempts):
            short_code = generate(ALPHABET, self._code_length)
            if short_code not in self._mappings:
                return short_code
            SHORT_CODE_COLLISIONS_TOTAL.inc()
            logger.debug(f"Short code collision on {short_code}, regenerating")
        raise CodeGenerationError(self._max_generation_attempts)

    async def shorten(self, original_url: str, base_url: str | None = None) -> str:
        """Create a mapping for ``original_url`` and return its short code.

        The snapshot is rewritten before this returns, so the code is durable
        by the time a caller pushes it to a client.
        """
        short_code = self.generate_short_code()
        self._mappings[short_code] = URLMapping.create(
            short_code, original_url, self._lifetime, now=self._clock()
        )
        await self._persist()
        URLS_SHORTENED_TOTAL.inc()

        shown = f"{base_url}/{short_code}" if base_url else short_code
        logger.info(f"Created shortened URL: {shown} for {original_url}")
        return short_code

    async def lookup(self, short_code: str) -> str | None:
        mapping = self._mappings.get(short_code)
        if mapping is None:
            URL_LOOKUPS_TOTAL.labels(status=RequestStatus.NOT_FOUND).inc()
            return None

        if mapping.is_expired(self._clock()):
            logger.info(f"URL with shortCode {short_code} has expired")
            del self._mappings[short_code]
            URLS_EXPIRED_TOTAL.inc()
            await self._persist()
            URL_LOOKUPS_TOTAL.labels(status=RequestStatus.NOT_FOUND).inc()
            return None

        URL_LOOKUPS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        return mapping.original_url

    async def acknowledge(self, short_code: str) -> bool:
        """Mark a mapping as received by its client.

        Returns False for unknown codes. Listeners run only after the
        acknowledgment has been persisted.
        """
        mapping = self._mappings.get(short_code)
        if mapping is None:
            return False

        if not mapping.acknowledged:
            mapping.acknowledged = True
            await self._persist()
            logger.info(f"Shortened URL {short_code} acknowledged by client")

        for listener in list(self._ack_listeners):
            listener(short_code)
        return True

    async def sweep_expired(self) -> int:
        """Remove every expired mapping and return how many were dropped."""
        now = self._clock()
        expired = [code for code, mapping in self._mappings.items() if mapping.is_expired(now)]
        for short_code in expired:
            del self._mappings[short_code]

        if expired:
            URLS_EXPIRED_TOTAL.inc(len(expired))
            logger.info(f"Cleaned up {len(expired)} expired URLs")
            await self._persist()
        return len(expired)

    def get(self, short_code: str) -> URLMapping | None:
        return self._mappings.get(short_code)

    def is_acknowledged(self, short_code: str) -> bool:
        mapping = self._mappings.get(short_code)
        return mapping is not None and mapping.acknowledged

    def add_acknowledgment_listener(self, listener: Callable[[str], None]) -> None:
        self._ack_listeners.append(listener)

    async def flush(self) -> None:
        """Wait until every in-flight snapshot write has finished.

        Writes whose callers were cancelled are still waited for.
        """
        if self._pending_writes:
            await asyncio.gather(*self._pending_writes)

    # ========================================================================
    # PERSISTENCE
    # ========================================================================

    async def _persist(self) -> bool:
        # Serialize on the event loop so the bytes match the index at call time.
        data = dump_snapshot(self._mappings.values())
        write = asyncio.create_task(self._write_serialized(data))
        self._pending_writes.add(write)
        write.add_done_callback(self._pending_writes.discard)
        # The write outlives a cancelled caller; flush() waits for it.
        return await asyncio.shield(write)

    async def _write_serialized(self, data: bytes) -> bool:
        async with self._write_lock:
            try:
                await asyncio.to_thread(self._write_snapshot, data)
            except PersistenceError as exc:
                SNAPSHOT_WRITE_FAILURES_TOTAL.inc()
                logger.error(f"Failed to save URL mappings to disk: {exc}")
                return False
        logger.debug("URL mappings saved to disk")
        return True

    def _write_snapshot(self, data: bytes) -> None:
        tmp_name = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "wb", dir=self._path.parent, prefix=f".{self._path.name}.", delete=False
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self._path)
        except OSError as exc:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistenceError(str(self._path), str(exc)) from exc

    def _load(self) -> None:
        if not self._path.exists():
            logger.info("No URL mappings file found, starting with empty mappings")
            return

        try:
            records = load_snapshot_records(self._path.read_bytes())
        except (OSError, ValidationError) as exc:
            logger.error(f"Failed to load URL mappings from disk: {exc}")
            return

        now = self._clock()
        for index, record in enumerate(records):
            try:
                mapping = URLMapping.model_validate(record)
            except ValidationError as exc:
                logger.error(f"Skipping malformed URL mapping at index {index}: {exc}")
                continue
            if mapping.is_expired(now):
                logger.info(f"Skipping expired URL: {mapping.short_code}")
                continue
            self._mappings[mapping.short_code] = mapping

        logger.info(f"Loaded {len(self._mappings)} URL mappings from disk")
