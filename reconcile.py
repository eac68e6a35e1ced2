import copy
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from gcal import SyncLink, get_gcal_date, get_gcal_datetime
from source_events import format_instant, in_sync_window

logger = logging.getLogger(__name__)

# the fields of a Google event this tool owns; anything else is left alone on update
MANAGED_FIELDS = ('summary', 'description', 'location', 'start', 'end', 'attendees', 'organizer')

# cheap, frequently edited fields compared even when the timestamp hasn't moved
CONTENT_FIELDS = ('summary', 'description', 'location')


@dataclass
class SyncResult:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0
    failed: int = 0
    deletion_skipped: bool = False
    timestamp: str = ''

    def to_dict(self):
        stats = asdict(self)
        timestamp = stats.pop('timestamp')
        return {'stats': stats, 'timestamp': timestamp}


def build_destination_index(items):
    """Maps source UID -> DestinationItem for every item this tool owns.

    Items without a sync link are foreign and never appear in the index.
    """
    index = {}
    for item in items:
        if item.link is None:
            continue
        # cancelled occurrences of a series are listed even without showDeleted
        if item.body.get('status') == 'cancelled':
            continue
        uid = item.link.source_uid
        if uid in index:
            logger.warning('> Google events {} and {} both claim UID {}, keeping the latter'.format(
                index[uid].event_id, item.event_id, uid))
        index[uid] = item
    return index


def build_gcal_body(event, gcal_timezone='UTC'):
    """Computes the Google event body that represents a SourceEvent."""
    body = {
        'summary': event.summary,
        'description': event.description,
        'location': event.location,
        'extendedProperties': {
            'private': SyncLink(event.uid, event.last_modified).to_private_properties(),
        },
    }

    if event.attendees:
        body['attendees'] = [a.to_gcal() for a in event.attendees]

    if event.organizer is not None and event.organizer.email:
        body['organizer'] = event.organizer.to_gcal()

    if event.all_day:
        # only the date portion matters for all-day events
        body['start'] = get_gcal_date(event.start)
        body['end'] = get_gcal_date(event.end)
    else:
        body['start'] = get_gcal_datetime(event.start, gcal_timezone)
        body['end'] = get_gcal_datetime(event.end, gcal_timezone)

    return body


def changed_fields(existing, desired):
    """Lists the reasons an owned Google event is stale, empty if it is current.

    The stored source timestamp is the primary signal. Summary, description
    and location are compared as well since some feeds edit them without
    bumping LAST-MODIFIED. Times and attendees are trusted to move with the
    timestamp.
    """
    changes = []
    desired_last_modified = desired['extendedProperties']['private']['outlookLastModified']
    if existing.link.source_last_modified != desired_last_modified:
        changes.append('last modified')
    for name in CONTENT_FIELDS:
        # Google omits empty fields
        if (getattr(existing, name) or '') != (desired.get(name) or ''):
            changes.append(name)
    return changes


def needs_update(existing, desired):
    return bool(changed_fields(existing, desired))


def merge_gcal_body(existing, desired):
    """Overwrites the managed fields of an existing event, keeping everything else.

    Reminders, colours and the like set on the Google side survive, while a
    managed field the source no longer has (e.g. attendees) is removed.
    """
    body = copy.deepcopy(existing.body)
    for name in MANAGED_FIELDS:
        body.pop(name, None)

    props = body.setdefault('extendedProperties', {})
    props.setdefault('private', {}).update(desired['extendedProperties']['private'])
    body.update({k: copy.deepcopy(v) for k, v in desired.items() if k != 'extendedProperties'})
    return body


def _start_label(event):
    return format_instant(event.start) if not event.all_day else event.start.isoformat()


def _deletion_allowed(stale, index, max_delete_fraction):
    if max_delete_fraction is None or not stale:
        return True
    fraction = len(stale) / len(index)
    if fraction > max_delete_fraction:
        logger.warning('> Refusing to delete {:d} of {:d} synced events ({:.0%} > {:.0%} limit), '
                       'the source feed may be truncated'.format(len(stale), len(index), fraction, max_delete_fraction))
        return False
    return True


def split_by_window(source_events, time_min, time_max):
    """Splits the source into events inside the window read from Google and those outside it.

    Only the first list should be reconciled. An event outside the window
    has no visible counterpart, so it would otherwise be re-created on every
    run.
    """
    inside, outside = [], []
    for event in source_events:
        (inside if in_sync_window(event, time_min, time_max) else outside).append(event)
    return inside, outside


def reconcile(source_events, destination_items, writer, gcal_timezone='UTC', max_delete_fraction=None,
              keep_uids=()):
    """Makes the owned events in the destination mirror the source snapshot.

    Every source event is created if it has no Google counterpart, updated
    if its counterpart is stale, and otherwise left alone. Owned Google events
    whose UID is no longer in the source are deleted afterwards. When a UID
    occurs more than once in the source the first occurrence wins. UIDs in
    `keep_uids` (source events outside the sync window) are never deleted.

    Counters record attempted mutations; attempts the API rejected are also
    counted in `failed`.
    """
    result = SyncResult()
    index = build_destination_index(destination_items)
    seen_uids = set()

    for event in source_events:
        if event.uid in seen_uids:
            logger.warning('> Skipping duplicate of UID {} ("{}")'.format(event.uid, event.summary))
            continue
        seen_uids.add(event.uid)

        desired = build_gcal_body(event, gcal_timezone)
        existing = index.get(event.uid)

        if existing is None:
            logger.info('Created: "{}" ({})'.format(event.summary, _start_label(event)))
            ok = writer.create(desired)
            result.created += 1
        else:
            changes = changed_fields(existing, desired)
            if not changes:
                result.unchanged += 1
                continue
            logger.info('Updated: "{}" ({}) due to changes: {}'.format(
                event.summary, _start_label(event), ', '.join(changes)))
            ok = writer.update(existing.event_id, merge_gcal_body(existing, desired))
            result.updated += 1

        if not ok:
            result.failed += 1

    stale = [item for uid, item in index.items() if uid not in seen_uids and uid not in keep_uids]
    if _deletion_allowed(stale, index, max_delete_fraction):
        for item in stale:
            logger.info('Deleted: "{}" ({})'.format(item.summary or '<unnamed event>', item.start_text))
            if not writer.delete(item.event_id):
                result.failed += 1
            result.deleted += 1
    else:
        result.deletion_skipped = True

    result.timestamp = datetime.now(timezone.utc).isoformat()
    return result
