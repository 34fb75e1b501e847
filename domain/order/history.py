"""Order status history entries (status, payment, fulfillment and notes)."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

NOTE_MARKER = "note"


@dataclass
class OrderHistoryEntry:
    id: Optional[int]
    order_id: int
    from_status: str
    to_status: str
    note: Optional[str] = None
    changed_by: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_note(self) -> bool:
        return self.from_status == NOTE_MARKER and self.to_status == NOTE_MARKER
