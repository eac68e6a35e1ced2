from datetime import datetime, timezone

import httplib2
import pytest
from googleapiclient.errors import HttpError

from gcal import DestinationItem, SyncLink
from source_events import SourceEvent


def http_error(status, content=b'{"error": {"message": "boom"}}'):
    return HttpError(httplib2.Response({'status': status}), content)


class _Request:
    def __init__(self, fn):
        self._fn = fn

    def execute(self):
        return self._fn()


class FakeEvents:
    """Stands in for service.events(), recording every call made on it."""

    def __init__(self, pages=None):
        self.pages = pages if pages is not None else [[]]
        self.calls = []
        self.failures = {}

    def _call(self, method, kwargs, response=None):
        self.calls.append((method, kwargs))

        def run():
            if method in self.failures:
                raise self.failures[method]
            return response
        return _Request(run)

    def list(self, **kwargs):
        page = int(kwargs.get('pageToken') or 0)
        response = {'items': self.pages[page]}
        if page + 1 < len(self.pages):
            response['nextPageToken'] = str(page + 1)
        return self._call('list', kwargs, response)

    def insert(self, **kwargs):
        return self._call('insert', kwargs, dict(kwargs['body'], id='new-{}'.format(len(self.calls))))

    def update(self, **kwargs):
        return self._call('update', kwargs, kwargs['body'])

    def delete(self, **kwargs):
        return self._call('delete', kwargs, '')

    def made(self, method):
        return [kwargs for name, kwargs in self.calls if name == method]


class FakeService:
    def __init__(self, pages=None):
        self.events_resource = FakeEvents(pages)

    def events(self):
        return self.events_resource


class RecordingWriter:
    """Writer double for reconcile(), optionally failing chosen calls."""

    def __init__(self, fail=()):
        self.fail = set(fail)
        self.created = []
        self.updated = []
        self.deleted = []

    def create(self, body):
        self.created.append(body)
        return 'create' not in self.fail

    def update(self, event_id, body):
        self.updated.append((event_id, body))
        return 'update' not in self.fail

    def delete(self, event_id):
        self.deleted.append(event_id)
        return 'delete' not in self.fail


def make_event(uid='A', summary='Standup', last_modified='2024-01-01T00:00:00.000Z', **kwargs):
    kwargs.setdefault('start', datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc))
    kwargs.setdefault('end', datetime(2024, 1, 8, 9, 15, tzinfo=timezone.utc))
    return SourceEvent(uid=uid, summary=summary, last_modified=last_modified, **kwargs)


def owned_gcal_event(event_id, uid, last_modified='2024-01-01T00:00:00.000Z', summary='Standup', **fields):
    event = {
        'id': event_id,
        'summary': summary,
        'start': {'dateTime': '2024-01-08T09:00:00+00:00', 'timeZone': 'UTC'},
        'end': {'dateTime': '2024-01-08T09:15:00+00:00', 'timeZone': 'UTC'},
        'extendedProperties': {'private': SyncLink(uid, last_modified).to_private_properties()},
    }
    event.update(fields)
    return event


def owned_item(event_id, uid, last_modified='2024-01-01T00:00:00.000Z', summary='Standup', **fields):
    return DestinationItem.from_gcal(owned_gcal_event(event_id, uid, last_modified, summary, **fields))


def foreign_item(event_id, summary='Dentist'):
    return DestinationItem.from_gcal({
        'id': event_id,
        'summary': summary,
        'start': {'dateTime': '2024-01-08T12:00:00+00:00'},
        'end': {'dateTime': '2024-01-08T13:00:00+00:00'},
    })


@pytest.fixture
def writer():
    return RecordingWriter()


@pytest.fixture
def fake_service():
    return FakeService()
