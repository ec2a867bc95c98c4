from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from driveassist.domain.models import DeviceRecord
from driveassist.logging import LoggerFactory
from driveassist.storage.inventory import scan_inventory

log = LoggerFactory.for_inventory()


@dataclass(frozen=True)
class InventorySnapshot:
    records: tuple[DeviceRecord, ...] = ()
    generation: int = 0

    def find(self, name: str) -> Optional[DeviceRecord]:
        for record in self.records:
            if record.name == name:
                return record
        return None

    def disks(self) -> List[DeviceRecord]:
        return [record for record in self.records if record.is_disk]


@dataclass
class InventoryService:
    """Holds the latest inventory; every refresh replaces it wholesale.

    Refreshes may come from a finished workflow and from the user at the
    same time. Whichever scan completes last wins; a scan never merges with
    the previous snapshot.
    """

    scanner: Callable[[], List[DeviceRecord]] = scan_inventory
    _snapshot: InventorySnapshot = field(default_factory=InventorySnapshot)
    _lock: threading.Lock = field(default_factory=threading.Lock)
    _listeners: List[Callable[[InventorySnapshot], None]] = field(default_factory=list)

    @property
    def snapshot(self) -> InventorySnapshot:
        with self._lock:
            return self._snapshot

    def subscribe(self, listener: Callable[[InventorySnapshot], None]) -> None:
        self._listeners.append(listener)

    def refresh(self) -> InventorySnapshot:
        """Scan and publish a new snapshot.

        Raises:
            InventoryUnavailableError: when the listing cannot be produced;
                the previous snapshot is left in place but not re-published.
        """
        records = tuple(self.scanner())
        with self._lock:
            snapshot = InventorySnapshot(records, self._snapshot.generation + 1)
            self._snapshot = snapshot
        log.debug(f"Inventory refreshed: {len(records)} devices (generation {snapshot.generation})")
        for listener in list(self._listeners):
            listener(snapshot)
        return snapshot
