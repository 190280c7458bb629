"""
Human-readable control numbers (``fleet_kernel.domain.control_number``).

Two kinds are issued:

    DTT  (driver's trip ticket)              DTT-2025-0013   year-scoped
    RIS  (requisition and issue slip)        2025-03-8225    month-scoped

The trailing four digits are the ordinal within the counter period.  The
period a number belongs to is part of the number itself, so a manually
entered number is checked against the counter of *its* period, not the
current one.

Pure functions, zero I/O.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from enum import Enum
from uuid import UUID

from fleet_kernel.exceptions import InvalidFormatError, SequenceExhaustedError


class DocumentKind(str, Enum):
    DTT = "DTT"
    RIS = "RIS"


class CounterScope(str, Enum):
    YEAR = "year"
    MONTH = "month"


# Dense requisition reference counter lives in the same table.
REF_COUNTER_KIND = "REQ_REF"
REF_COUNTER_PERIOD = "*"


@dataclass(frozen=True)
class ParsedControlNumber:
    kind: DocumentKind
    value: str
    period: str
    ordinal: int


@dataclass(frozen=True)
class ControlNumberFormat:
    """
    Format of one document kind.

    ``seed_offset`` is the ordinal a fresh period's counter starts from, so
    the first automatic number of that period is ``seed_offset + 1``.
    """

    kind: DocumentKind
    scope: CounterScope
    prefix: str | None = None
    seed_offset: int = 0
    width: int = 4
    _pattern: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.seed_offset < 0 or self.seed_offset >= self.maximum:
            raise ValueError(
                f"{self.kind.value}: seed_offset must be in [0, {self.maximum})"
            )
        head = re.escape(self.prefix) + "-" if self.prefix else ""
        period = r"(\d{4})" if self.scope is CounterScope.YEAR else r"(\d{4})-(\d{2})"
        pattern = re.compile(rf"^{head}{period}-(\d{{{self.width}}})\Z", re.ASCII)
        object.__setattr__(self, "_pattern", pattern)

    @property
    def maximum(self) -> int:
        return 10 ** self.width - 1

    @property
    def template(self) -> str:
        head = f"{self.prefix}-" if self.prefix else ""
        period = "YYYY" if self.scope is CounterScope.YEAR else "YYYY-MM"
        return f"{head}{period}-{'N' * self.width}"

    def period_for(self, moment: datetime, tz: tzinfo) -> str:
        """Counter period containing ``moment`` in the organization's timezone."""
        local = moment.astimezone(tz)
        if self.scope is CounterScope.YEAR:
            return f"{local.year:04d}"
        return f"{local.year:04d}-{local.month:02d}"

    def format(self, period: str, ordinal: int) -> str:
        if ordinal < 1:
            raise ValueError(f"ordinal must be positive, got {ordinal}")
        if ordinal > self.maximum:
            raise SequenceExhaustedError(self.kind.value, period, ordinal, self.maximum)
        head = f"{self.prefix}-" if self.prefix else ""
        return f"{head}{period}-{ordinal:0{self.width}d}"

    def parse(self, value: str) -> ParsedControlNumber:
        """
        Parse and normalize a manually entered number.

        Raises:
            InvalidFormatError: not of the form ``template`` or a zero ordinal
                or an impossible month.
        """
        text = (value or "").strip().upper()
        match = self._pattern.match(text)
        if match is None:
            raise InvalidFormatError(self.kind.value, value, self.template)
        groups = match.groups()
        if self.scope is CounterScope.YEAR:
            year, ordinal = groups
            period = year
        else:
            year, month, ordinal = groups
            if not 1 <= int(month) <= 12:
                raise InvalidFormatError(self.kind.value, value, self.template)
            period = f"{year}-{month}"
        number = int(ordinal)
        if number < 1:
            raise InvalidFormatError(self.kind.value, value, self.template)
        return ParsedControlNumber(
            kind=self.kind, value=text, period=period, ordinal=number,
        )


DEFAULT_FORMATS: dict[DocumentKind, ControlNumberFormat] = {
    DocumentKind.DTT: ControlNumberFormat(
        DocumentKind.DTT, CounterScope.YEAR, prefix="DTT",
    ),
    DocumentKind.RIS: ControlNumberFormat(
        DocumentKind.RIS, CounterScope.MONTH,
    ),
}


@dataclass(frozen=True)
class ReservationSnapshot:
    id: UUID
    kind: DocumentKind
    control_number: str
    period: str
    ordinal: int
    organization_id: str
    status: str
    document_id: UUID | None
    reserved_by: str
    reserved_at: datetime
    used_at: datetime | None
