"""Parse raw NWS documents into a typed weather record"""

import re
from typing import Dict, List, Optional

from bs4 import BeautifulSoup

from ..models import (
    CurrentConditions, DiscussionData, ForecastData, Hazard, HourlyForecast,
    WeatherRecord, WeatherSummary
)
from ..utils.helpers import utc_now, to_iso
from ..utils.logging import get_logger

logger = get_logger(__name__)

# Row label prefix in the digital forecast table -> HourlyForecast field
FORECAST_ROWS = {
    'temperature': 'temperature',
    'dewpoint': 'dewpoint',
    'relative humidity': 'humidity',
    'surface wind': 'wind_speed',
    'wind speed': 'wind_speed',
    'wind dir': 'wind_direction',
    'sky cover': 'sky_cover',
    'precipitation potential': 'precip_probability',
    'rain': 'weather_description',
    'hour': 'hour',
    'date': 'date',
}

MAX_FORECAST_HOURS = 48


def parse_weather(discussion_raw: str, forecast_raw: str) -> WeatherRecord:
    """Build a fresh weather record from the two raw documents"""
    return WeatherRecord(
        discussion=parse_discussion(discussion_raw),
        forecast=parse_forecast(forecast_raw),
        fetched_at=to_iso(utc_now()),
        is_stale=False,
    )


# ===== Area forecast discussion =====

def parse_discussion(raw_text: str) -> DiscussionData:
    """Parse raw AFD text into structured data"""
    return DiscussionData(
        key_messages=_extract_key_messages(raw_text),
        discussion=_extract_discussion(raw_text),
        hazards=_extract_hazards(raw_text),
        aviation=_extract_section(raw_text, 'AVIATION'),
        issue_time=_extract_issue_time(raw_text),
        forecaster=_extract_forecaster(raw_text),
        raw_text=raw_text,
    )


def _extract_section(text: str, name: str) -> str:
    """Body of a `.NAME...` section up to the next section or `&&`"""
    pattern = rf'\.{name}[^.\n]*\.\.\.([\s\S]*?)(?=\n\s*&&|\n\.[A-Z][A-Z /]+\.\.\.|\Z)'
    match = re.search(pattern, text, re.IGNORECASE)
    if not match:
        return ""
    return re.sub(r'[ \t]+', ' ', match.group(1)).strip()


def _extract_key_messages(text: str) -> List[str]:
    messages = []
    section = _extract_section(text, 'KEY MESSAGES')
    if section:
        for item in re.split(r'\n\s*(?:[-*•]|\d+\.)\s*', '\n' + section):
            cleaned = re.sub(r'\s+', ' ', item).strip()
            if len(cleaned) > 10:
                messages.append(cleaned)

    # No key messages: use the first substantive paragraph
    if not messages:
        first_paragraph = re.search(r'\n\n([A-Z][^.]+\.[^.]+\.)', text)
        if first_paragraph:
            messages.append(re.sub(r'\s+', ' ', first_paragraph.group(1)).strip())
    return messages


def _extract_discussion(text: str) -> str:
    parts = []
    for name in ('DISCUSSION', 'SHORT TERM', 'LONG TERM'):
        section = _extract_section(text, name)
        if section:
            parts.append(section)
    return "\n\n".join(parts)


def _extract_hazards(text: str) -> List[Hazard]:
    hazards = []
    section = _extract_section(text, r'[A-Z]{3} WATCHES/WARNINGS/ADVISORIES')
    if not section:
        return hazards

    for line in re.split(r'\n\s*\n|\n(?=[A-Z])', section):
        line = re.sub(r'\s+', ' ', line).strip()
        if not line or line.lower().startswith('none'):
            continue
        match = re.match(
            r'(?P<type>[A-Za-z ]+?(?:Warning|Watch|Advisory|Statement))'
            r'(?P<timing>.*?)(?:for (?P<areas>[A-Z]{2}Z[\d\-,>A-Z ]+))?\.?$',
            line
        )
        if match:
            areas = match.group('areas') or ''
            hazards.append(Hazard(
                type=match.group('type').strip(),
                areas=[a.strip() for a in re.split(r'[-,]', areas) if a.strip()],
                timing=match.group('timing').strip(),
                description=line,
            ))
    return hazards


def _extract_issue_time(text: str) -> str:
    match = re.search(
        r'^\s*(\d{3,4} [AP]M [A-Z]{3,4} \w{3} \w{3} \d{1,2} \d{4})', text, re.MULTILINE
    )
    return match.group(1) if match else ""


def _extract_forecaster(text: str) -> str:
    match = re.search(r'(?:DISCUSSION|SHORT TERM|LONG TERM|AVIATION)\.\.\.\s*(\w+)\s*$',
                      text, re.MULTILINE)
    return match.group(1) if match else ""


# ===== Digital forecast =====

def parse_forecast(html: str) -> ForecastData:
    """Parse the digital forecast table page"""
    rows = _extract_forecast_rows(html)

    temperatures = rows.get('temperature', [])
    hour_count = min(MAX_FORECAST_HOURS, len(temperatures))
    hourly = []
    for i in range(hour_count):
        hourly.append(HourlyForecast(
            hour=int(_number(rows.get('hour', []), i, default=i)),
            date=_string(rows.get('date', []), i, default=""),
            temperature=_number(temperatures, i),
            dewpoint=_number(rows.get('dewpoint', []), i),
            humidity=_number(rows.get('humidity', []), i),
            wind_speed=_number(rows.get('wind_speed', []), i),
            wind_direction=_string(rows.get('wind_direction', []), i, default="N"),
            sky_cover=_number(rows.get('sky_cover', []), i),
            precip_probability=_number(rows.get('precip_probability', []), i),
            weather_description=_string(rows.get('weather_description', []), i, default=""),
        ))

    return ForecastData(
        hourly=hourly,
        current=_current_conditions(hourly),
        raw_text=html,
    )


def _extract_forecast_rows(html: str) -> Dict[str, List[str]]:
    """Collect each labelled table row; the page splits 48 hours over two tables"""
    soup = BeautifulSoup(html, "html.parser")
    rows: Dict[str, List[str]] = {}
    for tr in soup.find_all('tr'):
        cells = [cell.get_text(strip=True) for cell in tr.find_all(['td', 'th'])]
        if len(cells) < 2:
            continue
        label = cells[0].lower()
        for prefix, field_name in FORECAST_ROWS.items():
            if label.startswith(prefix):
                rows.setdefault(field_name, []).extend(cells[1:])
                break
    return rows


def _number(values: List[str], index: int, default: float = 0) -> float:
    if index >= len(values):
        return default
    match = re.search(r'-?\d+(?:\.\d+)?', values[index])
    return float(match.group(0)) if match else default


def _string(values: List[str], index: int, default: str = "") -> str:
    if index >= len(values) or not values[index]:
        return default
    return values[index]


def _describe(hour: Optional[HourlyForecast]) -> str:
    if hour is None:
        return "Unknown"
    if hour.weather_description:
        return hour.weather_description
    if hour.sky_cover >= 88:
        return "Overcast"
    if hour.sky_cover >= 70:
        return "Mostly Cloudy"
    if hour.sky_cover >= 38:
        return "Partly Cloudy"
    if hour.sky_cover >= 13:
        return "Mostly Clear"
    return "Clear"


def _current_conditions(hourly: List[HourlyForecast]) -> CurrentConditions:
    first = hourly[0] if hourly else None
    return CurrentConditions(
        temperature=first.temperature if first else 0,
        dewpoint=first.dewpoint if first else 0,
        humidity=first.humidity if first else 0,
        wind_speed=first.wind_speed if first else 0,
        wind_direction=first.wind_direction if first else "N",
        sky_cover=first.sky_cover if first else 0,
        conditions=_describe(first),
        observation_time=f"{first.date} {first.hour:02d}:00".strip() if first else "",
    )


def format_weather_for_script(record: WeatherRecord, time_context=None) -> str:
    """Render the weather record as prompt text for the narration generator"""
    discussion = record.discussion
    current = record.forecast.current
    lines = []

    if record.is_stale:
        lines.append(f"[DATA NOTE: Using cached weather data from {record.stale_age} hours ago. "
                     f"Fresh data was unavailable.]")
        lines.append("")

    if time_context is not None:
        lines.append(f"[BROADCAST TIME: {time_context.time_of_day} broadcast for "
                     f"{time_context.date} at {time_context.time}]")
        lines.append(f"[FORECAST EMPHASIS: {time_context.forecast_focus}]")
        lines.append("")

    lines.append(f"CURRENT CONDITIONS ({current.observation_time}):")
    lines.append(f"- Temperature: {current.temperature:.0f}°F")
    lines.append(f"- Conditions: {current.conditions}")
    lines.append(f"- Wind: {current.wind_direction} at {current.wind_speed:.0f} mph")
    lines.append(f"- Humidity: {current.humidity:.0f}%")
    lines.append(f"- Sky Cover: {current.sky_cover:.0f}%")
    lines.append("")

    if discussion.key_messages:
        lines.append("KEY MESSAGES FROM THE NATIONAL WEATHER SERVICE:")
        lines.extend(f"- {msg}" for msg in discussion.key_messages)
        lines.append("")

    if discussion.hazards:
        lines.append("ACTIVE HAZARDS:")
        for hazard in discussion.hazards:
            lines.append(f"- {hazard.type}: {hazard.description}")
            if hazard.timing:
                lines.append(f"  Timing: {hazard.timing}")
        lines.append("")

    if discussion.discussion:
        lines.append("FORECAST DISCUSSION:")
        lines.append(discussion.discussion[:1500] + "...")
        lines.append("")

    label = time_context.outlook_label if time_context is not None else "12-HOUR OUTLOOK"
    lines.append(f"{label}:")
    for hour in record.forecast.hourly[:12]:
        lines.append(f"- Hour {hour.hour}: {hour.temperature:.0f}°F, {hour.weather_description or 'n/a'}, "
                     f"Wind {hour.wind_direction} {hour.wind_speed:.0f}mph")

    return "\n".join(lines)


def summarize_weather(record: WeatherRecord) -> WeatherSummary:
    """Condense a weather record for the closing slide"""
    current = record.forecast.current
    outlook = record.discussion.key_messages[0] if record.discussion.key_messages else ""
    return WeatherSummary(
        temperature=f"{current.temperature:.0f}°F",
        conditions=current.conditions,
        wind=f"{current.wind_direction} {current.wind_speed:.0f} mph",
        hazards=[hazard.type for hazard in record.discussion.hazards],
        outlook=outlook[:200],
    )
