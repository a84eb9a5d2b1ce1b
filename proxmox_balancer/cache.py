# cache.py

"""SQLite-backed cache of per-VM disk usage."""

import logging
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import BigInteger, Column, Float, Integer, String, create_engine
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import CACHE_MAX_AGE, DEFAULT_CACHE_PATH
from .exceptions import CacheError
from .models import VM, DiskCacheEntry

Base = declarative_base()

# SQLite caps the number of bound parameters per statement
QUERY_CHUNK_SIZE = 500

# Seconds a writer waits for another process holding the database lock
SQLITE_BUSY_TIMEOUT = 30


class VMDiskCacheRow(Base):
    __tablename__ = "vm_disk_cache"

    vmid = Column(Integer, primary_key=True)
    node = Column(String, nullable=False)
    max_disk = Column(BigInteger, nullable=False)
    used_disk = Column(BigInteger, nullable=False)
    updated_at = Column(Float, nullable=False, index=True)

    def to_entry(self) -> DiskCacheEntry:
        return DiskCacheEntry(
            vmid=self.vmid,
            node=self.node,
            max_disk=self.max_disk,
            used_disk=self.used_disk,
            updated_at=self.updated_at,
        )


class DiskCache:
    """
    Persistent VMID -> disk usage store with a freshness window.

    The cache is an optimization only: every public method logs and swallows
    storage errors, so a broken or missing database degrades to live fetches.
    """

    def __init__(self, path: str = DEFAULT_CACHE_PATH,
                 logger: Optional[logging.Logger] = None,
                 max_age: float = CACHE_MAX_AGE,
                 clock: Callable[[], float] = time.time):
        self.path = path
        self.max_age = max_age
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock
        self._lock = threading.Lock()
        self._engine = None
        self._session_factory = None

        try:
            self._engine = create_engine(
                f"sqlite:///{path}",
                connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
            )
            Base.metadata.create_all(bind=self._engine)
            self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)
            self.logger.info(f"Disk cache initialized at {path}")
        except SQLAlchemyError as e:
            self.logger.warning(f"Disk cache unavailable at {path}: {e} - will query all storage")
            self._engine = None

    @property
    def available(self) -> bool:
        return self._session_factory is not None

    def _session(self):
        if not self.available:
            raise CacheError(f"disk cache at {self.path} is not available")
        return self._session_factory()

    def get_batch(self, vms: Iterable[VM]) -> Dict[int, DiskCacheEntry]:
        """Return fresh entries whose allocated size still matches the VM."""
        current_max = {vm.vmid: vm.max_disk for vm in vms}
        if not current_max:
            return {}

        cutoff = self._clock() - self.max_age
        result: Dict[int, DiskCacheEntry] = {}
        try:
            with self._lock:
                db = self._session()
                try:
                    vmids = list(current_max)
                    for start in range(0, len(vmids), QUERY_CHUNK_SIZE):
                        chunk = vmids[start:start + QUERY_CHUNK_SIZE]
                        rows = (
                            db.query(VMDiskCacheRow)
                            .filter(VMDiskCacheRow.vmid.in_(chunk))
                            .filter(VMDiskCacheRow.updated_at > cutoff)
                            .all()
                        )
                        for row in rows:
                            # A resized disk invalidates the cached usage
                            if current_max.get(row.vmid) == row.max_disk:
                                result[row.vmid] = row.to_entry()
                finally:
                    db.close()
        except (SQLAlchemyError, CacheError) as e:
            self.logger.warning(f"Cache batch read error: {e}")
            return {}
        return result

    def set_batch(self, entries: Iterable[DiskCacheEntry]) -> bool:
        """Upsert entries by VMID in one statement. Returns False on failure."""
        entries = list(entries)
        if not entries:
            return True

        now = self._clock()
        rows = [
            {
                "vmid": entry.vmid,
                "node": entry.node,
                "max_disk": entry.max_disk,
                "used_disk": entry.used_disk,
                "updated_at": now,
            }
            for entry in entries
        ]
        stmt = sqlite_insert(VMDiskCacheRow)
        stmt = stmt.on_conflict_do_update(
            index_elements=[VMDiskCacheRow.vmid],
            set_={
                "node": stmt.excluded.node,
                "max_disk": stmt.excluded.max_disk,
                "used_disk": stmt.excluded.used_disk,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        try:
            with self._lock:
                db = self._session()
                try:
                    db.execute(stmt, rows)
                    db.commit()
                except SQLAlchemyError:
                    db.rollback()
                    raise
                finally:
                    db.close()
        except (SQLAlchemyError, CacheError) as e:
            self.logger.warning(f"Failed to update disk cache: {e}")
            return False
        return True

    def cleanup(self) -> int:
        """Delete entries older than the freshness window."""
        cutoff = self._clock() - self.max_age
        try:
            with self._lock:
                db = self._session()
                try:
                    deleted = (
                        db.query(VMDiskCacheRow)
                        .filter(VMDiskCacheRow.updated_at < cutoff)
                        .delete(synchronize_session=False)
                    )
                    db.commit()
                except SQLAlchemyError:
                    db.rollback()
                    raise
                finally:
                    db.close()
        except (SQLAlchemyError, CacheError) as e:
            self.logger.warning(f"Failed to clean up disk cache: {e}")
            return 0

        if deleted:
            self.logger.info(f"Cleaned up {deleted} old cache entries")
        return deleted

    def cleanup_async(self) -> threading.Thread:
        """Start cleanup on a daemon thread without waiting for it."""
        thread = threading.Thread(target=self.cleanup, name="disk-cache-cleanup", daemon=True)
        thread.start()
        return thread

    def stats(self) -> Tuple[int, int]:
        """Return (total entries, fresh entries)."""
        cutoff = self._clock() - self.max_age
        try:
            with self._lock:
                db = self._session()
                try:
                    total = db.query(VMDiskCacheRow).count()
                    fresh = db.query(VMDiskCacheRow).filter(VMDiskCacheRow.updated_at > cutoff).count()
                finally:
                    db.close()
        except (SQLAlchemyError, CacheError) as e:
            self.logger.warning(f"Cache stats error: {e}")
            return 0, 0
        return total, fresh

    def close(self) -> None:
        with self._lock:
            if self._engine is not None:
                self._engine.dispose()
                self._engine = None
                self._session_factory = None


def build_entries(usage: Dict[int, int], vms_by_id: Dict[int, VM]) -> List[DiskCacheEntry]:
    """Cache entries for freshly measured, nonzero usage figures."""
    entries = []
    for vmid, used in sorted(usage.items()):
        vm = vms_by_id.get(vmid)
        if vm is None or used <= 0:
            continue
        entries.append(DiskCacheEntry(vmid=vmid, node=vm.node, max_disk=vm.max_disk, used_disk=used))
    return entries
