"""Resolution of user-supplied device hints against discovered peripherals."""

from __future__ import annotations

from collections.abc import Sequence

from blesession.core.errors import DeviceSelectionError
from blesession.core.model import PeripheralRecord


def match_score(record: PeripheralRecord, hint: str) -> int:
    lowered = hint.lower()
    address = record.id.lower()
    name = (record.name or "").lower()
    if address == lowered:
        return 3
    if lowered in address:
        return 2
    if name and lowered in name:
        return 1
    return 0


def resolve_peripheral(records: Sequence[PeripheralRecord], hint: str) -> PeripheralRecord:
    if not records:
        raise DeviceSelectionError("No BLE peripherals discovered. Is the device advertising?")

    best_score = 0
    best: list[PeripheralRecord] = []
    for record in records:
        score = match_score(record, hint)
        if score > best_score:
            best_score = score
            best = [record]
        elif score and score == best_score:
            best.append(record)

    if not best:
        raise DeviceSelectionError(f"No discovered peripheral matches '{hint}'")
    if len(best) > 1:
        candidate_desc = ", ".join(f"{r.id} ({r.display_name})" for r in best)
        raise DeviceSelectionError(
            f"Multiple peripherals match '{hint}': {candidate_desc}. Use the full address."
        )
    return best[0]
