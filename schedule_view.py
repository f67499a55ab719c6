# schedule_view.py

from datetime import date, timedelta

from shift_service import UNRANKED_POSITION, current_shift, on_duty, shift_position

# Keyed MM-DD. Lunar holidays are estimates for 2026.
EVENT_DAYS = {
    "02-05": "Kashmir Day",
    "03-23": "Pakistan Day",
    "05-01": "Labour Day",
    "08-14": "Independence Day",
    "09-06": "Defence Day",
    "11-09": "Iqbal Day",
    "12-25": "Quaid-e-Azam Day",
    "03-20": "Eid-ul-Fitr",
    "03-21": "Eid-ul-Fitr Holiday",
    "05-27": "Eid-ul-Adha",
    "05-28": "Eid-ul-Adha Holiday",
}


def event_for_day(day):
    return EVENT_DAYS.get(day.strftime('%m-%d'))


def format_time_12h(time_str):
    if not time_str:
        return ''
    hours, minutes = time_str.split(':')
    hour = int(hours)
    suffix = 'PM' if hour >= 12 else 'AM'
    return f"{(hour % 12 or 12):02d}:{minutes} {suffix}"


def parse_month(month_str):
    """'YYYY-MM' -> (year, month); raises ValueError on anything else."""
    year_str, month_part = month_str.split('-')
    if len(year_str) != 4 or len(month_part) != 2:
        raise ValueError(f"Invalid month: {month_str}")
    year, month = int(year_str), int(month_part)
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month: {month_str}")
    return year, month


def adjacent_months(year, month):
    prev_month = date(year - 1, 12, 1) if month == 1 else date(year, month - 1, 1)
    next_month = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return prev_month.strftime('%Y-%m'), next_month.strftime('%Y-%m')


def visible_window(year, month, today):
    """Date range of the requested month still worth showing.

    The upper bound is the day before the first of the following month. The
    current month starts at today; any other month is shown in full.
    """
    start_date = date(year, month, 1)
    following = date(year, month + 1, 1) if month < 12 else date(year + 1, 1, 1)
    end_date = following - timedelta(days=1)
    if (today.year, today.month) == (year, month):
        return today, end_date
    return start_date, end_date


def group_by_date(entries):
    grouped = {}
    for entry in entries:
        grouped.setdefault(entry['date'], []).append(entry)
    return grouped


def upcoming_for_day(day_entries, is_today, current_shift_name):
    active = [e for e in day_entries if e['shift_type'] and 'off' not in e['shift_type'].lower()]
    if is_today:
        current_position = shift_position(current_shift_name) if current_shift_name else UNRANKED_POSITION
        active = [e for e in active if shift_position(e['shift_type']) > current_position]
    return sorted(active, key=lambda e: shift_position(e['shift_type']))


def _card(entry, catalog):
    window = catalog.get(entry['shift_type'])
    hours = f"{format_time_12h(window.start)} - {format_time_12h(window.end)}" if window else ''
    return {**entry, "hours": hours}


def build_schedule(entries, year, month, now, catalog):
    """Monthly schedule payload: live status plus upcoming shifts per day."""
    today = now.date()
    today_str = today.strftime('%Y-%m-%d')
    lower, upper = visible_window(year, month, today)
    lower_str, upper_str = lower.strftime('%Y-%m-%d'), upper.strftime('%Y-%m-%d')
    shift_name = current_shift(now, catalog)
    grouped = group_by_date(entries)
    days = []
    for day_str in sorted(d for d in grouped if lower_str <= d <= upper_str):
        is_today = day_str == today_str
        upcoming = upcoming_for_day(grouped[day_str], is_today, shift_name)
        if is_today and not upcoming:
            continue
        days.append({
            "date": day_str,
            "isToday": is_today,
            "event": event_for_day(date.fromisoformat(day_str)),
            "shifts": [_card(e, catalog) for e in upcoming],
        })
    is_current_month = (today.year, today.month) == (year, month)
    live = None
    if is_current_month:
        live = {
            "currentShift": shift_name,
            "isEventDay": event_for_day(today) is not None,
            "onDuty": [_card(e, catalog) for e in on_duty(now, entries, catalog)],
        }
    prev_month, next_month = adjacent_months(year, month)
    return {
        "month": f"{year:04d}-{month:02d}",
        "window": {"start": lower_str, "end": upper_str},
        "isCurrentMonth": is_current_month,
        "previousMonth": prev_month,
        "nextMonth": next_month,
        "live": live,
        "days": days,
    }
