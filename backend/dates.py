import re
from datetime import date

_DIGIT_RUN = re.compile(r"[0-9]+")


def normalize_date(value) -> str:
    """
    Canonicalize a date-like string to YYYY-MM-DD for comparison/grouping.

    The first three digit runs are read as year, month, day, so both
    '2026-01-22' and the spreadsheet echo '2026. 1. 22' give '2026-01-22'.
    Anything with fewer than three runs comes back stripped, otherwise as-is.
    No calendar check: '2026-13-40' stays '2026-13-40'.
    """
    text = "" if value is None else str(value)
    runs = _DIGIT_RUN.findall(text)
    if len(runs) < 3:
        return text.strip()
    year, month, day = runs[:3]
    return f"{year}-{month.zfill(2)}-{day.zfill(2)}"


def today_iso() -> str:
    return date.today().isoformat()
