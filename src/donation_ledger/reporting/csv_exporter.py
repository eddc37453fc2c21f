"""CSV serialization for ledger views."""

import enum
from datetime import date, datetime
from typing import Any, Mapping, Optional, Sequence, Union

from pydantic import BaseModel

# Characters that force a field to be quoted.
CSV_SPECIAL_CHARACTERS = (",", '"', "\n", "\r")


def format_csv_value(value: Any) -> str:
    """Render one field: quoted (quotes doubled) only if it needs to be."""
    if value is None:
        return ""
    if isinstance(value, bool):
        text = "true" if value else "false"
    elif isinstance(value, (date, datetime)):
        text = value.isoformat()
    elif isinstance(value, enum.Enum):
        text = str(value.value)
    else:
        text = str(value)

    if any(ch in text for ch in CSV_SPECIAL_CHARACTERS):
        return '"' + text.replace('"', '""') + '"'
    return text


class CSVExporter:
    """Serializes uniform records into a deterministic CSV document."""

    def __init__(self, line_separator: str = "\n"):
        self.line_separator = line_separator

    @staticmethod
    def _as_mapping(record: Union[BaseModel, Mapping[str, Any]]) -> Mapping[str, Any]:
        if isinstance(record, BaseModel):
            return record.model_dump()
        return record

    def to_csv(self, rows: Sequence[Union[BaseModel, Mapping[str, Any]]]) -> Optional[str]:
        """Serialize rows to CSV text.

        The header is the first record's keys in their natural order; later
        records are read by those keys, missing keys rendering empty.

        Args:
            rows: Ordered, uniform records (pydantic models or mappings).

        Returns:
            The CSV text without a trailing newline, or None when there are
            no rows (nothing to export).
        """
        if not rows:
            return None

        records = [self._as_mapping(r) for r in rows]
        headers = list(records[0].keys())

        lines = [",".join(format_csv_value(h) for h in headers)]
        for record in records:
            lines.append(",".join(format_csv_value(record.get(h)) for h in headers))
        return self.line_separator.join(lines)

    @staticmethod
    def filename(kind: str, start: Optional[str] = None, end: Optional[str] = None) -> str:
        """Export filename: ledger_{kind}_{start date or 'all'}_{end date or ''}.csv."""
        kind = kind.value if isinstance(kind, enum.Enum) else kind
        start_str = start.split("T")[0] if start else "all"
        end_str = end.split("T")[0] if end else ""
        return f"ledger_{kind}_{start_str}_{end_str}.csv"
