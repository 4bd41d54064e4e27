# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

"""年龄 / 预产期工具

所有函数都接受可选的 today 参数，方便测试固定日期。
"""

import calendar
import datetime as dt
from typing import Optional, Tuple, Union

DateLike = Union[dt.date, dt.datetime, str, None]

_MIN_DUE_DAYS = 7
_MAX_DUE_DAYS = 45 * 7


def parse_date(value: DateLike) -> Optional[dt.date]:
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    s = str(value).strip()
    if not s:
        return None
    try:
        return dt.date.fromisoformat(s[:10])
    except ValueError:
        return None


def _today(today: Optional[dt.date]) -> dt.date:
    return today or dt.date.today()


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}{'s' if n > 1 else ''}"


def calculate_age(birth_date: DateLike, today: Optional[dt.date] = None) -> str:
    """"2 years" / "1 year, 3 months" / "8 months" / "3 weeks" / "5 days" """
    birth = parse_date(birth_date)
    now = _today(today)
    if birth is None or birth > now:
        return "Invalid date"

    diff_days = (now - birth).days
    years = now.year - birth.year
    months = now.month - birth.month
    days = now.day - birth.day

    if days < 0:
        months -= 1
        prev_year, prev_month = (now.year, now.month - 1) if now.month > 1 else (now.year - 1, 12)
        days += calendar.monthrange(prev_year, prev_month)[1]
    if months < 0:
        years -= 1
        months += 12

    if years >= 2:
        return f"{years} years"
    if years == 1:
        if months == 0:
            return "1 year"
        return f"1 year, {_plural(months, 'month')}"
    if months >= 1:
        return _plural(months, "month")
    if diff_days >= 7:
        return _plural(diff_days // 7, "week")
    if diff_days >= 1:
        return _plural(diff_days, "day")
    return "Less than 1 day"


def calculate_age_in_years(birth_date: DateLike, today: Optional[dt.date] = None) -> int:
    birth = parse_date(birth_date)
    now = _today(today)
    if birth is None or birth > now:
        return 0

    age = now.year - birth.year
    if (now.month, now.day) < (birth.month, birth.day):
        age -= 1
    return max(0, age)


def age_in_months(birth_date: DateLike, today: Optional[dt.date] = None) -> Optional[int]:
    birth = parse_date(birth_date)
    if birth is None:
        return None
    now = _today(today)
    return (now.year - birth.year) * 12 + (now.month - birth.month)


def validate_birth_date(birth_date: DateLike, today: Optional[dt.date] = None) -> Tuple[bool, Optional[str]]:
    birth = parse_date(birth_date)
    now = _today(today)
    if birth is None:
        return False, "Invalid date format"
    if birth > now:
        return False, "Birth date cannot be in the future"
    if calculate_age_in_years(birth, today=now) > 18:
        return False, "Child cannot be older than 18 years"
    return True, None


def validate_due_date(due_date: DateLike, today: Optional[dt.date] = None) -> Tuple[bool, Optional[str]]:
    due = parse_date(due_date)
    now = _today(today)
    if due is None:
        return False, "Invalid date format"
    if due < now + dt.timedelta(days=_MIN_DUE_DAYS):
        return False, "Due date must be at least one week from today"
    if due > now + dt.timedelta(days=_MAX_DUE_DAYS):
        return False, "Due date cannot be more than 45 weeks from today"
    return True, None


def format_due_date(due_date: DateLike) -> str:
    """"January 5, 2026" """
    due = parse_date(due_date)
    if due is None:
        return ""
    return f"{calendar.month_name[due.month]} {due.day}, {due.year}"
