from __future__ import annotations

from datetime import date
from decimal import Decimal

from premiumcollect.services.statistics import _months_back, monthly_trends


def test_months_back_crosses_year_boundary() -> None:
    assert _months_back(date(2024, 3, 20), 12) == date(2023, 4, 1)
    assert _months_back(date(2024, 1, 31), 1) == date(2024, 1, 1)


def test_monthly_trends_bucket_and_order_newest_first() -> None:
    rows = [
        (date(2024, 3, 1), "successful", "recurring", Decimal("100.00")),
        (date(2024, 3, 9), "failed", "adhoc", Decimal("50.00")),
        (date(2024, 1, 5), "pending", "recurring", Decimal("25.50")),
        # Older than the trailing window.
        (date(2022, 12, 1), "successful", "recurring", Decimal("999.00")),
        # Future-dated collections are not part of the trend yet.
        (date(2024, 4, 1), "pending", "recurring", Decimal("10.00")),
    ]
    trends = monthly_trends(rows, today=date(2024, 3, 20))

    assert [bucket["month"] for bucket in trends] == ["2024-03", "2024-01"]
    march = trends[0]
    assert march["collections"] == 2
    assert march["amount"] == 150.0
    assert march["successful"] == 1
    assert march["failed"] == 1
    assert trends[1]["amount"] == 25.5
