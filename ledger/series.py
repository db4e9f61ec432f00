import logging
from bisect import bisect_right
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone as dt_timezone
from decimal import Decimal

from django.db import models
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from common.money import to_decimal, to_money

logger = logging.getLogger(__name__)


class Window(models.TextChoices):
    LAST_7_DAYS = "7d", "Last 7 days"
    LAST_30_DAYS = "30d", "Last 30 days"
    LAST_12_MONTHS = "12m", "Last 12 months"

    @property
    def bucket_count(self):
        return {"7d": 7, "30d": 30, "12m": 12}[self.value]

    @property
    def is_monthly(self):
        return self.value == "12m"


@dataclass(frozen=True)
class Bucket:
    label: str
    start: datetime
    end: datetime


@dataclass(frozen=True)
class SeriesPoint:
    label: str
    start: datetime
    end: datetime
    sales_total: Decimal
    comparison_total: Decimal

    def as_dict(self):
        return {
            "label": self.label,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "sales_total": self.sales_total,
            "comparison_total": self.comparison_total,
        }


def _month_start(year, month, tz):
    return datetime.combine(date(year, month, 1), time.min, tzinfo=tz)


def _shift_month(year, month, delta):
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def period_buckets(window, *, now=None, tz=None):
    """Consecutive ``[start, end)`` buckets ending with the current day or month, oldest first.

    Days and months are taken in ``tz`` so a sale made just after local midnight
    lands in the local day it was made on.
    """
    window = Window(window)
    now = now or timezone.now()
    tz = tz or now.tzinfo or dt_timezone.utc
    local_now = now.astimezone(tz) if now.tzinfo else now.replace(tzinfo=tz)
    count = window.bucket_count

    buckets = []
    if window.is_monthly:
        for offset in range(count - 1, -1, -1):
            year, month = _shift_month(local_now.year, local_now.month, -offset)
            next_year, next_month = _shift_month(year, month, 1)
            start = _month_start(year, month, tz)
            buckets.append(Bucket(label=f"{start:%b %Y}", start=start, end=_month_start(next_year, next_month, tz)))
    else:
        today = local_now.date()
        for offset in range(count - 1, -1, -1):
            day = today - timedelta(days=offset)
            start = datetime.combine(day, time.min, tzinfo=tz)
            end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
            buckets.append(Bucket(label=f"{day.day} {day:%b}", start=start, end=end))
    return buckets


def parse_timestamp(value, tz):
    """Best-effort conversion of a stored timestamp to an aware ``datetime``.

    Returns ``None`` for anything that cannot be read as a date or datetime.
    Naive values and plain dates are interpreted in ``tz``.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        try:
            parsed = parse_datetime(text)
            if parsed is None:
                day = parse_date(text)
                parsed = datetime.combine(day, time.min) if day else None
        except ValueError:
            parsed = None
        if parsed is None:
            return None
    else:
        return None

    if timezone.is_naive(parsed):
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def _field(record, name):
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def _bucket_totals(buckets, records, *, date_field, amount_field, tz):
    starts = [bucket.start for bucket in buckets]
    totals = [Decimal("0")] * len(buckets)
    for record in records:
        stamp = parse_timestamp(_field(record, date_field), tz)
        if stamp is None:
            logger.debug("series_record_skipped", extra={"entity_id": str(_field(record, "id"))})
            continue
        index = bisect_right(starts, stamp) - 1
        if index < 0 or stamp >= buckets[index].end:
            continue
        totals[index] += to_decimal(_field(record, amount_field))
    return totals


def generate_period_series(
    window,
    sales,
    comparison,
    *,
    now=None,
    tz=None,
    sales_date_field="invoice_date",
    sales_amount_field="total_amount",
    comparison_date_field="payment_date",
    comparison_amount_field="amount_paid",
):
    """Sum sales and a second stream (payments received or purchases) per bucket.

    The result always has exactly as many points as the window has buckets.
    Records outside the window or with unreadable timestamps contribute nothing.
    """
    buckets = period_buckets(window, now=now, tz=tz)
    tz = buckets[0].start.tzinfo
    sales_totals = _bucket_totals(buckets, sales, date_field=sales_date_field, amount_field=sales_amount_field, tz=tz)
    comparison_totals = _bucket_totals(
        buckets,
        comparison,
        date_field=comparison_date_field,
        amount_field=comparison_amount_field,
        tz=tz,
    )
    return [
        SeriesPoint(
            label=bucket.label,
            start=bucket.start,
            end=bucket.end,
            sales_total=to_money(sales_total),
            comparison_total=to_money(comparison_total),
        )
        for bucket, sales_total, comparison_total in zip(buckets, sales_totals, comparison_totals)
    ]
