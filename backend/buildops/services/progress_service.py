# Overview: Line-item progress math and payment-application total recomputation.

from __future__ import annotations

from decimal import Decimal

from ..money import ZERO, percent_of, quantize_money


def period_percent(previous: Decimal, current: Decimal) -> Decimal:
    """Percent earned this period; never negative."""
    return max(Decimal("0"), current - previous)


def recalculate_row(row, scheduled_value: Decimal) -> Decimal:
    """
    Refresh this_period_percent and calculated_amount from the row's
    effective percent (PM-verified when present, otherwise submitted).
    """
    row.this_period_percent = period_percent(row.previous_percent, row.effective_percent)
    row.calculated_amount = percent_of(scheduled_value, row.this_period_percent)
    return row.calculated_amount


def recompute_totals(app, *, now=None) -> Decimal:
    """
    Set current_payment and current_period_value to the sum of the progress
    rows' calculated amounts. Must run in the same transaction as the row
    changes it reflects.
    """
    total = quantize_money(sum((row.calculated_amount or ZERO for row in app.progress), ZERO))
    app.current_payment = total
    app.current_period_value = total
    if now is not None:
        app.updated_at = now
    return total
