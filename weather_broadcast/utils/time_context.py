"""Broadcast time context: target date/time and time-of-day flavour"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Union

from dateutil import parser as date_parser
from dateutil import tz

from ..models import Location

TIME_OF_DAY_LABELS = {
    'early-morning': 'early morning',
    'morning': 'morning',
    'afternoon': 'afternoon',
    'evening': 'evening',
    'late-night': 'late night',
}


@dataclass
class BroadcastTimeContext:
    """Everything downstream stages need to know about when the broadcast airs"""
    date: str
    time: str
    hour: int
    time_of_day: str
    description: str
    greeting: str
    atmospheric_tone: str
    forecast_focus: str
    outlook_label: str
    is_late_night: bool
    image_mood: List[str] = field(default_factory=list)
    moment: Optional[datetime] = None


def get_time_of_day(hour: int) -> str:
    """Classify an hour (0-23)"""
    if 5 <= hour < 9:
        return 'early-morning'
    if 9 <= hour < 12:
        return 'morning'
    if 12 <= hour < 17:
        return 'afternoon'
    if 17 <= hour < 22:
        return 'evening'
    return 'late-night'


def _greeting(time_of_day: str, place: str) -> str:
    if time_of_day == 'early-morning':
        return f"Good morning, early risers of {place}"
    if time_of_day == 'morning':
        return f"Good morning, {place}"
    if time_of_day == 'afternoon':
        return f"Good afternoon, {place}"
    return f"Good evening, {place}"


ATMOSPHERIC_TONES = {
    'early-morning': 'pre-dawn stillness, the world holding its breath before sunrise',
    'morning': 'fresh light breaking through, the day awakening',
    'afternoon': 'full daylight, the busy hours of the day',
    'evening': 'golden hour fading, the transition from day to night',
    'late-night': 'deep night intimacy, the quiet hours when only night owls remain',
}

IMAGE_MOODS = {
    'early-morning': ['pre-dawn', 'deep blue sky', 'first light on horizon', 'stars fading'],
    'morning': ['golden sunrise', 'warm light', 'long shadows', 'awakening city'],
    'afternoon': ['bright daylight', 'blue sky', 'full sun', 'clear visibility'],
    'evening': ['golden hour', 'sunset colors', 'pink clouds', 'city lights emerging'],
    'late-night': ['dark sky', 'city lights', 'stars visible', 'moody', 'noir', 'midnight blue'],
}

FORECAST_FOCUS = {
    'early-morning': "Focus on the upcoming day's conditions and the morning commute",
    'morning': 'Emphasize current conditions, the afternoon outlook and developing weather',
    'afternoon': 'Cover current conditions, the evening transition and overnight expectations',
    'evening': "Focus on overnight conditions and tomorrow's preview",
    'late-night': 'Emphasize overnight conditions and what sleepers will wake up to',
}

OUTLOOK_LABELS = {
    'early-morning': "TODAY'S FORECAST",
    'morning': 'REST OF TODAY (through tonight)',
    'afternoon': 'EVENING AND OVERNIGHT OUTLOOK',
    'evening': 'OVERNIGHT AND TOMORROW PREVIEW',
    'late-night': 'OVERNIGHT AND TOMORROW MORNING',
}


def parse_target_time(target: Union[str, datetime, None], location: Location,
                      reference: Optional[datetime] = None) -> datetime:
    """Resolve a target into an aware datetime in the location's timezone.

    Accepts None/"now", a datetime (naive values are read as local to the
    location), or text such as "2025-01-15 21:00", "tonight", "tomorrow 6am".
    """
    zone = tz.gettz(location.timezone) or tz.UTC
    now = (reference or datetime.now(tz.UTC)).astimezone(zone)

    if target is None:
        return now
    if isinstance(target, datetime):
        return target.replace(tzinfo=zone) if target.tzinfo is None else target.astimezone(zone)

    text = target.strip().lower()
    if text in ('', 'now', 'right now'):
        return now

    base = now
    if text.startswith('tomorrow'):
        base = now + timedelta(days=1)
        text = text[len('tomorrow'):].strip()
    elif text.startswith('today'):
        text = text[len('today'):].strip()

    if text.startswith('tonight'):
        text = text[len('tonight'):].strip() or '21:00'
    elif text.startswith('this evening'):
        text = text[len('this evening'):].strip() or '19:00'
    elif text == 'morning':
        text = '07:00'

    text = re.sub(r'^at\s+', '', text)
    if not text:
        return base.replace(second=0, microsecond=0)

    default = base.replace(tzinfo=None, second=0, microsecond=0)
    parsed = date_parser.parse(text, default=default, fuzzy=True)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=zone)
    return parsed.astimezone(zone)


def build_time_context(target: Union[str, datetime, None], location: Location,
                       reference: Optional[datetime] = None) -> BroadcastTimeContext:
    """Build the complete time context for a broadcast"""
    moment = parse_target_time(target, location, reference)
    hour = moment.hour
    time_of_day = get_time_of_day(hour)
    place = location.name.split(',')[0]

    return BroadcastTimeContext(
        date=moment.strftime('%Y-%m-%d'),
        time=moment.strftime('%H:%M'),
        hour=hour,
        time_of_day=time_of_day,
        description=(f"{TIME_OF_DAY_LABELS[time_of_day]} broadcast for "
                     f"{moment.strftime('%A, %B %d at %I:%M %p %Z')}"),
        greeting=_greeting(time_of_day, place),
        atmospheric_tone=ATMOSPHERIC_TONES[time_of_day],
        forecast_focus=FORECAST_FOCUS[time_of_day],
        outlook_label=OUTLOOK_LABELS[time_of_day],
        is_late_night=time_of_day == 'late-night',
        image_mood=list(IMAGE_MOODS[time_of_day]),
        moment=moment,
    )
