from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeService, http_error, owned_gcal_event
from gcal import (DestinationItem, GoogleCalendarWriter, SyncLink, get_gcal_events, read_sync_link,
                  sync_window)
from sync_errors import CalendarReadError

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_sync_window_spans_thirty_days_back_to_a_year_ahead():
    time_min, time_max = sync_window(NOW)

    assert time_min == NOW - timedelta(days=30)
    assert time_max == NOW + timedelta(days=365)


@pytest.mark.parametrize('event', [
    {},
    {'extendedProperties': None},
    {'extendedProperties': {'private': 'oops'}},
    {'extendedProperties': {'private': {}}},
    {'extendedProperties': {'private': {'outlookSyncUid': ''}}},
    {'extendedProperties': {'shared': {'outlookSyncUid': 'A'}}},
])
def test_read_sync_link_treats_missing_or_malformed_payload_as_foreign(event):
    assert read_sync_link(event) is None


def test_read_sync_link():
    event = {'extendedProperties': {'private': {'outlookSyncUid': 'A', 'outlookLastModified': 'T1'}}}

    assert read_sync_link(event) == SyncLink('A', 'T1')


def test_destination_item_from_gcal():
    item = DestinationItem.from_gcal(owned_gcal_event('g1', 'A', location='Room 4'))

    assert item.event_id == 'g1'
    assert item.location == 'Room 4'
    assert item.description == ''
    assert item.link == SyncLink('A', '2024-01-01T00:00:00.000Z')
    assert item.start_text == '2024-01-08T09:00:00+00:00'


def test_get_gcal_events_follows_pages():
    service = FakeService(pages=[[owned_gcal_event('g1', 'A')], [owned_gcal_event('g2', 'B'), {'id': 'f1'}]])
    time_min, time_max = sync_window(NOW)

    items = get_gcal_events(service, 'cal@example.com', time_min, time_max)

    assert [item.event_id for item in items] == ['g1', 'g2', 'f1']
    calls = service.events_resource.made('list')
    assert len(calls) == 2
    assert calls[0]['calendarId'] == 'cal@example.com'
    assert calls[0]['singleEvents'] is False
    assert calls[0]['timeMin'] == time_min.isoformat()
    assert calls[0]['timeMax'] == time_max.isoformat()
    assert calls[1]['pageToken'] == '1'


def test_get_gcal_events_api_error_is_fatal():
    service = FakeService()
    service.events_resource.failures['list'] = http_error(403)

    with pytest.raises(CalendarReadError):
        get_gcal_events(service, 'primary', *sync_window(NOW))


def test_writer_issues_calls_against_calendar(fake_service):
    writer = GoogleCalendarWriter(fake_service, 'cal@example.com')

    assert writer.create({'summary': 'Standup'}) is True
    assert writer.update('g1', {'summary': 'Standup'}) is True
    assert writer.delete('g2') is True

    events = fake_service.events_resource
    assert events.made('insert') == [{'calendarId': 'cal@example.com', 'body': {'summary': 'Standup'},
                                      'sendUpdates': 'none'}]
    assert events.made('update')[0]['eventId'] == 'g1'
    assert events.made('delete')[0]['eventId'] == 'g2'


@pytest.mark.parametrize('status', [404, 410])
def test_writer_delete_of_missing_event_is_success(fake_service, status):
    fake_service.events_resource.failures['delete'] = http_error(status)

    assert GoogleCalendarWriter(fake_service, 'primary').delete('g1') is True


@pytest.mark.parametrize('method, call', [
    ('insert', lambda w: w.create({'summary': 'x'})),
    ('update', lambda w: w.update('g1', {'summary': 'x'})),
    ('delete', lambda w: w.delete('g1')),
])
def test_writer_reports_failures_without_raising(fake_service, method, call):
    fake_service.events_resource.failures[method] = http_error(500)

    assert call(GoogleCalendarWriter(fake_service, 'primary')) is False


def test_writer_dry_run_makes_no_calls(fake_service):
    writer = GoogleCalendarWriter(fake_service, 'primary', dry_run=True)

    writer.create({'summary': 'x'})
    writer.update('g1', {})
    writer.delete('g1')

    assert fake_service.events_resource.calls == []
