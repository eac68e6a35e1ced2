import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from dateutil.tz import gettz
from googleapiclient.errors import HttpError

from sync_errors import CalendarReadError

logger = logging.getLogger(__name__)

# keys inside extendedProperties.private linking a Google event to its ICS event
SYNC_UID_KEY = 'outlookSyncUid'
SYNC_LAST_MODIFIED_KEY = 'outlookLastModified'

# responses on delete that mean the event is already gone
GONE_STATUSES = (404, 410)

PAST_DAYS_TO_SYNC = 30
FUTURE_DAYS_TO_SYNC = 365


@dataclass(frozen=True)
class SyncLink:
    source_uid: str
    source_last_modified: str = ''

    def to_private_properties(self) -> dict:
        return {SYNC_UID_KEY: self.source_uid, SYNC_LAST_MODIFIED_KEY: self.source_last_modified}


@dataclass
class DestinationItem:
    """A Google Calendar event, plus its sync link if this tool owns it.

    Items with link=None were created by someone else and must never be
    modified or deleted.
    """
    event_id: str
    summary: str = ''
    description: str = ''
    location: str = ''
    start: dict = field(default_factory=dict)
    link: Optional[SyncLink] = None
    body: dict = field(default_factory=dict)

    @property
    def start_text(self) -> str:
        return self.start.get('dateTime', self.start.get('date', ''))

    @classmethod
    def from_gcal(cls, gcal_event: dict) -> 'DestinationItem':
        return cls(
            event_id=gcal_event.get('id', ''),
            summary=gcal_event.get('summary', ''),
            description=gcal_event.get('description', ''),
            location=gcal_event.get('location', ''),
            start=gcal_event.get('start', {}),
            link=read_sync_link(gcal_event),
            body=gcal_event,
        )


def read_sync_link(gcal_event: dict) -> Optional[SyncLink]:
    """Returns the SyncLink stored on a Google event, or None if it is missing or malformed."""
    props = gcal_event.get('extendedProperties')
    if not isinstance(props, dict):
        return None
    private = props.get('private')
    if not isinstance(private, dict):
        return None
    uid = private.get(SYNC_UID_KEY)
    if not isinstance(uid, str) or not uid:
        return None
    last_modified = private.get(SYNC_LAST_MODIFIED_KEY, '')
    if not isinstance(last_modified, str):
        last_modified = ''
    return SyncLink(source_uid=uid, source_last_modified=last_modified)


def get_gcal_datetime(py_datetime, gcal_timezone='UTC'):
    py_datetime = py_datetime.astimezone(gettz(gcal_timezone))
    return {'dateTime': py_datetime.isoformat(timespec='seconds'), 'timeZone': gcal_timezone}


def get_gcal_date(py_date):
    return {'date': py_date.strftime('%Y-%m-%d')}


def sync_window(now=None, past_days=PAST_DAYS_TO_SYNC, future_days=FUTURE_DAYS_TO_SYNC):
    """Returns the (time_min, time_max) pair bounding the events we reconcile."""
    if now is None:
        now = datetime.now(timezone.utc)
    return now - timedelta(days=past_days), now + timedelta(days=future_days)


def get_gcal_events(service, calendar_id, time_min, time_max):
    """Retrieves every event overlapping [time_min, time_max) from the calendar.

    Recurring events come back as their series master (singleEvents=False),
    which is how they were created. The list call may page, so keep calling
    until there is no nextPageToken. Any API error is fatal to the run.
    """
    logger.debug('Retrieving Google Calendar events')

    items = []
    page_token = None
    try:
        while True:
            events_result = service.events().list(calendarId=calendar_id,
                                                  timeMin=time_min.isoformat(),
                                                  timeMax=time_max.isoformat(),
                                                  maxResults=2500,
                                                  singleEvents=False,
                                                  pageToken=page_token).execute()
            page = events_result.get('items', [])
            items.extend(page)
            page_token = events_result.get('nextPageToken')
            if not page_token:
                break
            logger.debug('> Found {:d} events on new page, {:d} total'.format(len(page), len(items)))
    except HttpError as e:
        raise CalendarReadError('Failed to get Google events: {}'.format(e)) from e

    logger.info('> Found {:d} events in Google Calendar'.format(len(items)))
    return [DestinationItem.from_gcal(ev) for ev in items]


class GoogleCalendarWriter:
    """Issues the create/update/delete calls for one calendar.

    Each call returns True if Google accepted it. Failures are logged and
    reported to the caller rather than raised, a single bad event must not
    stop the rest of the run.
    """

    def __init__(self, service, calendar_id, send_updates='none', sleep_time=0.0, dry_run=False):
        self.service = service
        self.calendar_id = calendar_id
        self.send_updates = send_updates
        self.sleep_time = sleep_time
        self.dry_run = dry_run

    def _pause(self):
        if self.sleep_time:
            time.sleep(self.sleep_time)

    def create(self, body) -> bool:
        if self.dry_run:
            return True
        try:
            self.service.events().insert(calendarId=self.calendar_id, body=body,
                                         sendUpdates=self.send_updates).execute()
        except HttpError as e:
            logger.error('Failed to create event "{}": {}'.format(body.get('summary'), e))
            return False
        finally:
            self._pause()
        return True

    def update(self, event_id, body) -> bool:
        if self.dry_run:
            return True
        try:
            self.service.events().update(calendarId=self.calendar_id, eventId=event_id, body=body,
                                         sendUpdates=self.send_updates).execute()
        except HttpError as e:
            logger.error('Failed to update event {}: {}'.format(event_id, e))
            return False
        finally:
            self._pause()
        return True

    def delete(self, event_id) -> bool:
        if self.dry_run:
            return True
        try:
            self.service.events().delete(calendarId=self.calendar_id, eventId=event_id,
                                         sendUpdates=self.send_updates).execute()
        except HttpError as e:
            if e.resp.status in GONE_STATUSES:
                logger.debug('> Event {} already deleted'.format(event_id))
                return True
            logger.error('Failed to delete event {}: {}'.format(event_id, e))
            return False
        finally:
            self._pause()
        return True
