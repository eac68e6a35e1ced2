import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Tuple, Union

import arrow
import httplib2
from icalendar import Calendar

from sync_errors import FeedError

logger = logging.getLogger(__name__)

EventTime = Union[datetime, date]

RESPONSE_STATUSES = {
    'ACCEPTED': 'accepted',
    'DECLINED': 'declined',
    'TENTATIVE': 'tentative',
    'NEEDS-ACTION': 'needsAction',
}

NO_TITLE = '(No title)'


@dataclass(frozen=True)
class Attendee:
    email: str
    display_name: str
    response_status: str = 'needsAction'

    def to_gcal(self) -> dict:
        return {'email': self.email, 'displayName': self.display_name, 'responseStatus': self.response_status}


@dataclass(frozen=True)
class Organizer:
    email: str
    display_name: str = ''

    def to_gcal(self) -> dict:
        return {'email': self.email, 'displayName': self.display_name}


@dataclass(frozen=True)
class SourceEvent:
    """One event from the ICS feed, normalised for a single sync run.

    Timed events carry UTC datetimes in start/end, all-day events carry
    plain dates. last_modified is an ISO string and is only ever compared
    for equality against the value stamped on the Google event.
    """
    uid: str
    start: EventTime
    end: EventTime
    summary: str = NO_TITLE
    description: str = ''
    location: str = ''
    all_day: bool = False
    last_modified: str = ''
    attendees: Tuple[Attendee, ...] = ()
    organizer: Optional[Organizer] = None

    def __post_init__(self):
        if not self.uid:
            raise ValueError('SourceEvent requires a non-empty uid')


def format_instant(value: EventTime) -> str:
    """Render a date/datetime as a UTC timestamp string, e.g. 2024-01-01T00:00:00.000Z."""
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    utc = arrow.get(value).to('UTC')
    return '{}.{:03d}Z'.format(utc.strftime('%Y-%m-%dT%H:%M:%S'), utc.microsecond // 1000)


def _as_date(value: EventTime) -> date:
    return value.date() if isinstance(value, datetime) else value


def in_sync_window(event: SourceEvent, time_min: datetime, time_max: datetime) -> bool:
    """True if the event overlaps [time_min, time_max), the span read back from Google.

    All-day events are compared as dates and left out within a day of either
    edge, since Google places them in the calendar's own timezone.
    """
    if event.all_day:
        return (_as_date(event.end) > time_min.date() + timedelta(days=1)
                and _as_date(event.start) < time_max.date() - timedelta(days=1))
    return event.end > time_min and event.start < time_max


def _to_utc(value: datetime) -> datetime:
    # floating times are treated as UTC
    return arrow.get(value).to('UTC').datetime


def _strip_mailto(address) -> str:
    return re.sub(r'^mailto:', '', str(address), flags=re.IGNORECASE).strip()


def _as_list(value):
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _parse_attendees(vevent) -> Tuple[Attendee, ...]:
    attendees = []
    for prop in _as_list(vevent.get('attendee')):
        email = _strip_mailto(prop)
        if not email:
            continue
        params = getattr(prop, 'params', {})
        partstat = str(params.get('PARTSTAT', 'NEEDS-ACTION')).upper()
        attendees.append(Attendee(
            email=email,
            display_name=str(params.get('CN', '') or email),
            response_status=RESPONSE_STATUSES.get(partstat, 'needsAction'),
        ))
    return tuple(attendees)


def _parse_organizer(vevent) -> Optional[Organizer]:
    prop = vevent.get('organizer')
    if prop is None:
        return None
    params = getattr(prop, 'params', {})
    return Organizer(email=_strip_mailto(prop), display_name=str(params.get('CN', '')))


def _parse_times(vevent) -> Tuple[EventTime, EventTime, bool]:
    start = vevent.decoded('dtstart')
    all_day = not isinstance(start, datetime)

    if 'dtend' in vevent:
        end = vevent.decoded('dtend')
    elif 'duration' in vevent:
        end = start + vevent.decoded('duration')
    elif all_day:
        end = start + timedelta(days=1)
    else:
        end = start

    if all_day:
        if isinstance(end, datetime):
            end = end.date()
        return start, end, True

    if not isinstance(end, datetime):
        end = datetime(end.year, end.month, end.day, tzinfo=start.tzinfo)
    return _to_utc(start), _to_utc(end), False


def _parse_last_modified(vevent) -> str:
    for name in ('last-modified', 'dtstamp'):
        if name in vevent:
            return format_instant(vevent.decoded(name))
    return ''


def _to_source_event(vevent) -> SourceEvent:
    start, end, all_day = _parse_times(vevent)
    return SourceEvent(
        uid=str(vevent.get('uid')),
        summary=str(vevent.get('summary', '')) or NO_TITLE,
        description=str(vevent.get('description', '')),
        location=str(vevent.get('location', '')),
        start=start,
        end=end,
        all_day=all_day,
        last_modified=_parse_last_modified(vevent),
        attendees=_parse_attendees(vevent),
        organizer=_parse_organizer(vevent),
    )


def parse_ics(ics_text) -> list:
    """Converts the raw ICS feed into a list of SourceEvents, in feed order.

    Events without a UID can't be correlated and are skipped. Modified
    occurrences of a recurring series (RECURRENCE-ID) are skipped too, the
    series master is the record that gets synced.
    """
    try:
        cal = Calendar.from_ical(ics_text)
    except ValueError as e:
        raise FeedError('Failed to parse ICS: {}'.format(e)) from e

    source_events = []
    for vevent in cal.walk('VEVENT'):
        if not str(vevent.get('uid', '')).strip():
            logger.warning('> Skipping event "{}" with no UID'.format(vevent.get('summary', NO_TITLE)))
            continue
        if 'recurrence-id' in vevent:
            logger.debug('> Skipping modified occurrence of {}'.format(vevent.get('uid')))
            continue
        try:
            source_events.append(_to_source_event(vevent))
        except (KeyError, TypeError, ValueError) as e:
            logger.error('> Error processing entry {} ({})'.format(vevent.get('uid'), e))

    return source_events


def fetch_ics_feed(url, username=None, password=None, verify_ssl=True, timeout=None) -> str:
    """Downloads the ICS feed and returns its text. Any failure is fatal to the run."""
    http_conn = httplib2.Http(timeout=timeout, disable_ssl_certificate_validation=not verify_ssl)
    if username and password:
        http_conn.add_credentials(username, password)

    try:
        resp, content = http_conn.request(url, 'GET')
    except (httplib2.HttpLib2Error, OSError) as e:
        raise FeedError('Failed to fetch ICS: {}'.format(e)) from e

    if not 200 <= resp.status < 300:
        logger.error('> Failed to fetch ICS: {}'.format(resp.status))
        raise FeedError('Failed to fetch ICS: {}'.format(resp.status))

    return content.decode('utf-8', errors='replace')
