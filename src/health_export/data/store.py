"""Time-series store over date-named Health Export CSV files.

Discovers export files, parses them into records, keeps a bounded
in-memory cache keyed by path and answers date-range reads with
deduplication by timestamp.

Usage::

    store = HealthDataStore(get_settings())
    records = store.get_data_in_range(DateRange(start, end))
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, time
from pathlib import Path
from time import perf_counter

from health_export.core.config import Settings, get_settings
from health_export.core.errors import FileDiscoveryError, HealthExportError
from health_export.core.logging import get_logger
from health_export.data.models import (
    CacheStats,
    DateRange,
    MetricSample,
    Record,
    SourceFile,
)
from health_export.data.parsing import (
    TIMESTAMP_COLUMNS,
    extract_date_from_filename,
    parse_csv_file,
)

logger = get_logger("data.store")

# The export tool stamps some late-evening samples at 01:00 of the wrong day.
EXCLUDED_HOUR = 1


class HealthDataStore:
    """Discover, parse, cache and range-query Health Export CSV files."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.data_dir = Path(self.settings.data_dir)
        self.zone = self.settings.zone
        self._cache: OrderedDict[str, SourceFile] = OrderedDict()
        self._cache_lock = threading.Lock()
        self._path_locks: dict[str, threading.Lock] = {}

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def discover_files(self) -> list[str]:
        """Return the sorted, distinct export files under ``data_dir``.

        Re-scans the filesystem on every call.
        """
        root = self.data_dir
        if not root.is_dir():
            raise FileDiscoveryError(
                "Failed to discover CSV files", details=f"not a directory: {root}"
            )
        pattern = f"{self.settings.file_prefix}*.{self.settings.file_extension}"
        try:
            found = {str(path) for path in root.rglob(pattern) if path.is_file()}
        except OSError as exc:
            raise FileDiscoveryError("Failed to discover CSV files", details=str(exc)) from exc
        return sorted(found)

    # ------------------------------------------------------------------
    # Loading and cache
    # ------------------------------------------------------------------

    def _path_lock(self, path: str) -> threading.Lock:
        with self._cache_lock:
            lock = self._path_locks.get(path)
            if lock is None:
                lock = threading.Lock()
                self._path_locks[path] = lock
            return lock

    def _parse(self, path: str) -> SourceFile:
        return parse_csv_file(
            path,
            self.zone,
            prefix=self.settings.file_prefix,
            extension=self.settings.file_extension,
        )

    def load_file(self, path: str | Path) -> SourceFile:
        """Return the parsed file, from cache when caching is enabled.

        Errors propagate to the caller.
        """
        key = str(path)
        if not self.settings.enable_caching:
            return self._parse(key)

        with self._path_lock(key):
            with self._cache_lock:
                cached = self._cache.get(key)
            if cached is not None:
                return cached

            parsed = self._parse(key)
            with self._cache_lock:
                self._cache[key] = parsed
                self._evict()
            logger.debug("file_cached", file=parsed.filename, rows=parsed.row_count)
            return parsed

    def _evict(self) -> None:
        # Insertion order, not access recency.
        while len(self._cache) > self.settings.cache_size:
            evicted, _ = self._cache.popitem(last=False)
            logger.debug("cache_evicted", file=evicted)

    def _try_load(self, path: str) -> SourceFile | None:
        try:
            return self.load_file(path)
        except HealthExportError as exc:
            logger.error("file_load_failed", file=path, code=exc.code, error=str(exc))
        except Exception as exc:
            logger.error("file_load_failed", file=path, error=str(exc))
        return None

    def _load_many(self, paths: list[str]) -> list[SourceFile]:
        """Load files concurrently, returning results in the order of ``paths``."""
        if len(paths) <= 1 or self.settings.max_workers == 1:
            loaded = [self._try_load(path) for path in paths]
        else:
            with ThreadPoolExecutor(max_workers=self.settings.max_workers) as pool:
                loaded = list(pool.map(self._try_load, paths))
        return [item for item in loaded if item is not None]

    def load_all_files(self) -> list[SourceFile]:
        """Load every discovered file, skipping (and logging) failures."""
        return self._load_many(self.discover_files())

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    def get_cache_stats(self) -> CacheStats:
        with self._cache_lock:
            keys = list(self._cache)
        return CacheStats(size=len(keys), files=keys)

    # ------------------------------------------------------------------
    # Range query
    # ------------------------------------------------------------------

    def day_bounds(self, day: date) -> tuple[datetime, datetime]:
        start = datetime.combine(day, time.min, tzinfo=self.zone)
        end = datetime.combine(day, time.max, tzinfo=self.zone)
        return start, end

    def _file_overlaps(self, path: str, date_range: DateRange) -> bool:
        try:
            day = extract_date_from_filename(
                Path(path).name, self.settings.file_prefix, self.settings.file_extension
            )
        except HealthExportError as exc:
            logger.error("file_load_failed", file=path, code=exc.code, error=str(exc))
            return False
        return date_range.overlaps(*self.day_bounds(day))

    def _keep(self, record: Record, date_range: DateRange) -> bool:
        if not date_range.contains(record.timestamp):
            return False
        return record.timestamp.astimezone(self.zone).hour != EXCLUDED_HOUR

    def get_data_in_range(self, date_range: DateRange) -> list[Record]:
        """Return deduplicated records with ``start <= timestamp <= end``, oldest first.

        Files whose day does not overlap the range are skipped without
        being parsed. When a timestamp recurs, the record from the file
        later in discovery order wins.
        """
        started = perf_counter()
        files = self.discover_files()
        overlapping = [path for path in files if self._file_overlaps(path, date_range)]

        merged: list[Record] = []
        for parsed in self._load_many(overlapping):
            merged.extend(r for r in parsed.records if self._keep(r, date_range))

        merged.sort(key=lambda r: r.timestamp)
        by_timestamp: dict[datetime, Record] = {}
        for record in merged:
            by_timestamp[record.timestamp] = record
        result = sorted(by_timestamp.values(), key=lambda r: r.timestamp)

        logger.info(
            "range_query_done",
            start=date_range.start.isoformat(),
            end=date_range.end.isoformat(),
            files_total=len(files),
            files_read=len(overlapping),
            records=len(result),
            duplicates=len(merged) - len(result),
            elapsed_ms=round((perf_counter() - started) * 1000, 2),
        )
        return result

    # ------------------------------------------------------------------
    # Derived queries
    # ------------------------------------------------------------------

    def get_available_metrics(self) -> list[str]:
        """Sorted distinct metric columns across all loadable files."""
        columns: set[str] = set()
        for parsed in self.load_all_files():
            columns.update(col for col in parsed.columns if col not in TIMESTAMP_COLUMNS)
        return sorted(columns)

    def get_date_range(self) -> DateRange | None:
        """Earliest first record and latest last record over all files."""
        first: datetime | None = None
        last: datetime | None = None
        for parsed in self.load_all_files():
            if not parsed.records:
                continue
            if first is None or parsed.first_timestamp < first:
                first = parsed.first_timestamp
            if last is None or parsed.last_timestamp > last:
                last = parsed.last_timestamp
        if first is None or last is None:
            return None
        return DateRange(start=first, end=last)

    def get_sample_data(self, metric_name: str, limit: int = 10) -> list[MetricSample]:
        """Up to ``limit`` non-null samples of a metric, in discovery order."""
        samples: list[MetricSample] = []
        for path in self.discover_files():
            if len(samples) >= limit:
                break
            parsed = self._try_load(path)
            if parsed is None:
                continue
            for record in parsed.records:
                value = record.values.get(metric_name)
                if value is None:
                    continue
                samples.append(MetricSample(timestamp=record.timestamp, value=value))
                if len(samples) >= limit:
                    break
        return samples
