# oai_harvester/batcher.py
# Groups normalized records into fixed-size batches for delivery.

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from .config import DEFAULT_BATCH_SIZE


@dataclass(frozen=True)
class Batch:
    batch_number: int  # 1-based
    total_batches: int
    records: List[Dict[str, Any]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.records)


def assemble(records: Sequence[Dict[str, Any]], capacity: int = DEFAULT_BATCH_SIZE) -> List[Batch]:
    """
    Splits records into consecutive batches of at most ``capacity`` records.

    Record order is kept, only the last batch may be short, and no records
    means no batches.
    """
    if capacity < 1:
        raise ValueError(f"Batch capacity must be at least 1, got {capacity}")

    total_batches = math.ceil(len(records) / capacity)
    return [
        Batch(
            batch_number=number,
            total_batches=total_batches,
            records=list(records[start:start + capacity]),
        )
        for number, start in enumerate(range(0, len(records), capacity), start=1)
    ]


class BatchAssembler:
    """Holds the batch capacity so the orchestrator can be configured once."""

    def __init__(self, capacity: int = DEFAULT_BATCH_SIZE):
        if capacity < 1:
            raise ValueError(f"Batch capacity must be at least 1, got {capacity}")
        self.capacity = capacity

    def assemble(self, records: Sequence[Dict[str, Any]]) -> List[Batch]:
        return assemble(records, self.capacity)
