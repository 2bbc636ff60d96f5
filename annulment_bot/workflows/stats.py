"""Monthly summary of approved annulments read back from the ledger."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Tuple

from annulment_bot.ledger import Ledger

from .finalization import STATUS_APPROVED


@dataclass
class ViolationTotals:
    count: int = 0
    amount: float = 0.0


@dataclass(frozen=True)
class PartitionSummary:
    partition_key: str
    approved: int
    total_amount: float
    by_type: List[Tuple[str, ViolationTotals]]


def parse_amount(raw: Any) -> float:
    """Lenient amount parsing: spaces ignored, decimal comma accepted, junk counts as zero."""

    cleaned = "".join(str(raw or "").split()).replace(",", ".")
    try:
        value = float(cleaned)
    except ValueError:
        return 0.0
    return value if math.isfinite(value) else 0.0


def format_amount(value: float) -> str:
    text = f"{value:,.2f}".rstrip("0").rstrip(".")
    return text.replace(",", " ")


def summarize_rows(partition_key: str, rows: Iterable[Mapping[str, Any]]) -> PartitionSummary:
    totals: dict[str, ViolationTotals] = {}
    approved = 0
    total_amount = 0.0

    for row in rows:
        status = str(row.get("status") or "").strip().lower()
        if status != STATUS_APPROVED:
            continue
        violation = str(row.get("violation_type") or "").strip() or "-"
        amount = parse_amount(row.get("amount"))

        approved += 1
        total_amount += amount
        entry = totals.setdefault(violation, ViolationTotals())
        entry.count += 1
        entry.amount += amount

    by_type = sorted(totals.items(), key=lambda item: item[1].count, reverse=True)
    return PartitionSummary(partition_key=partition_key, approved=approved, total_amount=total_amount, by_type=by_type)


def format_summary(summary: PartitionSummary) -> str:
    lines = [
        f"*:bar_chart: Summary for {summary.partition_key}*",
        f"*Approved records:* {summary.approved}",
        "",
    ]
    lines.extend(
        f"- {violation}: {totals.count}, amount: {format_amount(totals.amount)}"
        for violation, totals in summary.by_type
    )
    lines.append(f"*Total amount:* {format_amount(summary.total_amount)}")
    return "\n".join(lines)


def build_monthly_report(ledger: Ledger, partition_key: str) -> str:
    rows = ledger.read_partition(partition_key)
    if rows is None:
        return f":bar_chart: Partition «{partition_key}» not found. Use the YYYY-MM format (for example 2025-11)."
    if not rows:
        return f":bar_chart: Partition «{partition_key}» has no records yet."

    summary = summarize_rows(partition_key, rows)
    if summary.approved == 0:
        return f":bar_chart: No approved records found for «{partition_key}»."
    return format_summary(summary)
