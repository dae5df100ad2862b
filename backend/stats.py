from dataclasses import dataclass
from typing import Dict, Iterable, Sequence

from dates import normalize_date


@dataclass(frozen=True)
class StatsTable:
    date: str
    cells: Dict[str, Dict[str, int]]
    # Every record on the date, recognised groups or not, so it can exceed cell_sum.
    total: int

    @property
    def cell_sum(self) -> int:
        return sum(sum(row.values()) for row in self.cells.values())

    def chapel_totals(self) -> Dict[str, int]:
        return {chapel: sum(row.values()) for chapel, row in self.cells.items()}

    def to_dict(self):
        return {
            "date": self.date,
            "table": self.cells,
            "chapelTotals": self.chapel_totals(),
            "total": self.total,
        }


def aggregate(history: Iterable, selected_date: str,
              chapels: Sequence[str], villages: Sequence[str]) -> StatsTable:
    """Count records per (chapel, village) for one date. Pure."""
    day = normalize_date(selected_date)
    cells = {chapel: {village: 0 for village in villages} for chapel in chapels}
    total = 0

    for record in history:
        if normalize_date(record.date) != day:
            continue
        total += 1
        chapel = record.chapel.strip()
        village = record.village.strip()
        if chapel in cells and village in cells[chapel]:
            cells[chapel][village] += 1

    return StatsTable(date=day, cells=cells, total=total)
