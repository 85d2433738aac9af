from __future__ import annotations

from datetime import date, datetime, timezone

from app.infrastructure.repositories.base import BaseRepository


PO_SEQUENCE_NAME = "purchase_order"


class PoNumberAllocator(BaseRepository):
    """Allocates ``PREFIX-YYYYMMDD-NNNN`` numbers from a per-tenant counter."""

    def __init__(
        self,
        *,
        prefix: str = "PO",
        padding: int = 4,
        start: int = 1000,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.prefix = str(prefix or "PO").strip() or "PO"
        self.padding = max(1, int(padding))
        self.start = int(start)

    def next_value(self, db) -> int:
        cursor = db.execute(
            """
            INSERT INTO document_sequences (name, tenant_id, next_value)
            VALUES (?, ?, ?)
            ON CONFLICT (name, tenant_id) DO UPDATE SET next_value = document_sequences.next_value + 1
            RETURNING next_value
            """,
            (PO_SEQUENCE_NAME, self.tenant_id, self.start),
        )
        row = cursor.fetchone()
        return int(row["next_value"] if isinstance(row, dict) else row[0])

    def format_number(self, value: int, today: date | None = None) -> str:
        day = today or datetime.now(timezone.utc).date()
        return f"{self.prefix}-{day.strftime('%Y%m%d')}-{str(value).zfill(self.padding)}"

    def next_number(self, db, today: date | None = None) -> str:
        return self.format_number(self.next_value(db), today=today)
