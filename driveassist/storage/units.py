"""Synchronized size representations for size-entry dialogs.

A :class:`UnitConversionModel` holds one size in bytes, MiB, GiB and sectors,
plus an optional start/end sector pair for resize dialogs. Setting any field
recomputes the rest. Bytes, MiB and sectors are authoritative; GiB is a
display value only.

Example:
    >>> model = UnitConversionModel(sector_size=512, start_sector=2048)
    >>> model.set_mib(100)
    True
    >>> model.state.end_sector
    206847
"""

from __future__ import annotations

import math
from typing import Callable

from driveassist.domain.models import GIB, MIB, SizeState, align_to_mib, ceil_div

StateListener = Callable[[SizeState], None]

__all__ = [
    "UnitConversionModel",
    "align_to_mib",
    "mib_to_sectors",
    "parse_number",
]


def mib_to_sectors(mib: int, sector_size: int) -> int:
    return ceil_div(mib * MIB, sector_size)


def parse_number(value, *, integer: bool = True) -> int | float | None:
    """Parse user input into a number, or None when it is empty or not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if isinstance(number, float) and not math.isfinite(number):
        return None
    if integer:
        return int(number)
    return float(number)


class UnitConversionModel:
    """Reactive size model for a single dialog.

    Each setter returns True when it changed the model and False when the
    input was ignored (empty or non-numeric, or a propagation pass was
    already running). Listeners run inside the propagation pass, so any
    setter they call back into is suppressed.
    """

    def __init__(
        self,
        sector_size: int = 512,
        *,
        size_bytes: int = 0,
        start_sector: int | None = None,
        end_sector: int | None = None,
    ):
        if sector_size <= 0:
            raise ValueError("sector_size must be positive")
        self._sector_size = sector_size
        self._updating = False
        self._listeners: list[StateListener] = []
        self._bytes = 0
        self._mib = 0
        self._gib = 0.0
        self._sectors = 0
        self._start = start_sector
        self._end = end_sector
        if start_sector is not None and end_sector is not None:
            self._apply_sectors(max(end_sector - start_sector + 1, 0), move_end=False)
        else:
            self._apply_bytes(max(size_bytes, 0))

    @property
    def sector_size(self) -> int:
        return self._sector_size

    @property
    def state(self) -> SizeState:
        return SizeState(
            bytes=self._bytes,
            mib=self._mib,
            gib=self._gib,
            sectors=self._sectors,
            start_sector=self._start if self._start is not None else 0,
            end_sector=self._end if self._end is not None else 0,
            sector_size=self._sector_size,
        )

    @property
    def has_range(self) -> bool:
        return self._start is not None

    def display(self) -> dict[str, str]:
        """Text for each dialog field. GiB is shown with two decimals."""
        fields = {
            "bytes": str(self._bytes),
            "mib": str(self._mib),
            "gib": f"{self._gib:.2f}",
            "sectors": str(self._sectors),
        }
        if self._start is not None:
            fields["start_sector"] = str(self._start)
            fields["end_sector"] = str(self._end if self._end is not None else 0)
        return fields

    def subscribe(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Setters
    # ------------------------------------------------------------------

    def set_bytes(self, value) -> bool:
        number = parse_number(value)
        if number is None or self._updating:
            return False
        return self._propagate(lambda: self._apply_bytes(max(number, 0)))

    def set_mib(self, value) -> bool:
        number = parse_number(value)
        if number is None or self._updating:
            return False
        return self._propagate(lambda: self._apply_bytes(max(number, 0) * MIB))

    def set_gib(self, value) -> bool:
        number = parse_number(value, integer=False)
        if number is None or self._updating:
            return False
        gib = max(number, 0.0)

        def apply() -> None:
            self._apply_bytes(round(gib * GIB))
            self._gib = gib

        return self._propagate(apply)

    def set_sectors(self, value) -> bool:
        number = parse_number(value)
        if number is None or self._updating:
            return False
        return self._propagate(lambda: self._apply_sectors(max(number, 0)))

    def set_start_sector(self, value) -> bool:
        number = parse_number(value)
        if number is None or self._updating:
            return False

        def apply() -> None:
            self._start = max(number, 0)
            if self._sectors > 0:
                self._end = self._start + self._sectors - 1
            elif self._end is not None:
                self._apply_sectors(max(self._end - self._start + 1, 0), move_end=False)

        return self._propagate(apply)

    def set_end_sector(self, value) -> bool:
        number = parse_number(value)
        if number is None or self._updating:
            return False

        def apply() -> None:
            self._end = max(number, 0)
            if self._start is not None:
                self._apply_sectors(max(self._end - self._start + 1, 0), move_end=False)

        return self._propagate(apply)

    # ------------------------------------------------------------------
    # Propagation
    # ------------------------------------------------------------------

    def _propagate(self, apply: Callable[[], None]) -> bool:
        self._updating = True
        try:
            apply()
            snapshot = self.state
            for listener in list(self._listeners):
                listener(snapshot)
        finally:
            self._updating = False
        return True

    def _apply_bytes(self, size_bytes: int) -> None:
        self._bytes = size_bytes
        self._mib = size_bytes // MIB
        self._gib = size_bytes / GIB
        self._sectors = ceil_div(size_bytes, self._sector_size)
        self._move_end()

    def _apply_sectors(self, sectors: int, *, move_end: bool = True) -> None:
        self._sectors = sectors
        self._bytes = sectors * self._sector_size
        self._mib = self._bytes // MIB
        self._gib = self._bytes / GIB
        if move_end:
            self._move_end()

    def _move_end(self) -> None:
        if self._start is None:
            return
        self._end = self._start + self._sectors - 1 if self._sectors > 0 else self._start
