import argparse
import hmac
import json
import logging
import os
import sys
from datetime import datetime, timezone
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from urllib.parse import parse_qs, urlparse

from auth import authorize, build_calendar_service, get_credentials
from gcal import GoogleCalendarWriter, get_gcal_events, sync_window
from reconcile import reconcile, split_by_window
from source_events import fetch_ics_feed, parse_ics
from sync_errors import ConfigError, SyncError

logger = logging.getLogger(__name__)

DEFAULTS = {
    'ICAL_FEED_USER': None,
    'ICAL_FEED_PASS': None,
    'ICAL_FEED_VERIFY_SSL_CERT': True,
    'ICAL_FEED_TIMEOUT': 60,
    'SCOPES': 'https://www.googleapis.com/auth/calendar',
    'CLIENT_SECRET_FILE': None,
    'CREDENTIAL_PATH': None,
    'GOOGLE_CLIENT_ID': None,
    'GOOGLE_CLIENT_SECRET': None,
    'GOOGLE_REFRESH_TOKEN': None,
    'CALENDAR_TIMEZONE': 'UTC',
    'LOGFILE': None,
    'API_SLEEP_TIME': 0.10,
    'SEND_UPDATES': 'none',
    'PAST_DAYS_TO_SYNC': 30,
    'FUTURE_DAYS_TO_SYNC': 365,
    'MAX_DELETE_FRACTION': None,
    'SYNC_TOKEN': None,
    'SERVER_HOST': '127.0.0.1',
    'SERVER_PORT': 8787,
}

MANDATORY_CONFIGS = ('ICAL_FEED', 'CALENDAR_ID')


def validate_config(config):
    for mandatory in MANDATORY_CONFIGS:
        value = config.get(mandatory)
        if not value or str(value).startswith('<'):
            raise ConfigError('Must specify a non-blank value for {} in the config file'.format(mandatory))


def load_config(path):
    """Executes the python config file at `path` and returns its settings as a dict."""
    try:
        source = Path(path).read_text()
    except OSError as e:
        raise ConfigError('Unable to read config file {}: {}'.format(path, e)) from e

    namespace = {}
    exec(source, namespace)
    config = dict(DEFAULTS)
    config.update((k, v) for k, v in namespace.items() if k.isupper())
    validate_config(config)
    return config


def configure_logging(config):
    if config.get('LOGFILE'):
        handler = logging.FileHandler(filename=config['LOGFILE'], mode='a')
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter('%(asctime)s|[%(levelname)s] %(message)s'))
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)
    # the discovery client is chatty at DEBUG
    logging.getLogger('googleapiclient').setLevel(logging.WARNING)


def run_sync(config, now=None, dry_run=False):
    """Runs one full Outlook -> Google Calendar sync and returns its SyncResult.

    Failing to authenticate, to fetch the feed or to read the calendar raises
    a SyncError before anything in Google is touched.
    """
    logger.info('Starting sync...')
    if now is None:
        now = datetime.now(timezone.utc)

    creds = get_credentials(config)
    logger.info('> Got Google access token')

    ics_text = fetch_ics_feed(config['ICAL_FEED'],
                              username=config.get('ICAL_FEED_USER'),
                              password=config.get('ICAL_FEED_PASS'),
                              verify_ssl=config.get('ICAL_FEED_VERIFY_SSL_CERT', True),
                              timeout=config.get('ICAL_FEED_TIMEOUT'))
    source_events = parse_ics(ics_text)
    logger.info('> Parsed {:d} events from the iCal feed'.format(len(source_events)))

    service = build_calendar_service(creds)
    time_min, time_max = sync_window(now, config['PAST_DAYS_TO_SYNC'], config['FUTURE_DAYS_TO_SYNC'])
    destination_items = get_gcal_events(service, config['CALENDAR_ID'], time_min, time_max)
    logger.info('> Found {:d} synced events in Google Calendar'.format(
        sum(1 for item in destination_items if item.link is not None)))

    source_events, outside = split_by_window(source_events, time_min, time_max)
    if outside:
        logger.info('> Ignoring {:d} feed events outside the sync window'.format(len(outside)))

    writer = GoogleCalendarWriter(service, config['CALENDAR_ID'],
                                  send_updates=config['SEND_UPDATES'],
                                  sleep_time=config['API_SLEEP_TIME'],
                                  dry_run=dry_run)
    result = reconcile(source_events, destination_items, writer,
                       gcal_timezone=config['CALENDAR_TIMEZONE'],
                       max_delete_fraction=config['MAX_DELETE_FRACTION'],
                       keep_uids={event.uid for event in outside})

    logger.info('Completed: {} created, {} updated, {} deleted, {} unchanged, {} failed'.format(
        result.created, result.updated, result.deleted, result.unchanged, result.failed))
    return result


class SyncRequestHandler(BaseHTTPRequestHandler):
    """On-demand trigger: /sync with the right token runs a sync.

    A bad token looks exactly like an unknown path, so the endpoint
    doesn't reveal that it exists.
    """
    config = {}

    def _send(self, status, body, content_type):
        data = body.encode('utf-8')
        self.send_response(status)
        self.send_header('Content-Type', content_type)
        self.send_header('Content-Length', str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def _send_not_found(self):
        self._send(HTTPStatus.NOT_FOUND, 'Not found', 'text/plain')

    def _check_token(self, url):
        expected = self.config.get('SYNC_TOKEN')
        if not expected:
            return False
        provided = self.headers.get('X-Sync-Token') or parse_qs(url.query).get('token', [''])[0]
        return hmac.compare_digest(provided.encode('utf-8'), expected.encode('utf-8'))

    def _handle(self):
        url = urlparse(self.path)
        if url.path != '/sync' or not self._check_token(url):
            self._send_not_found()
            return

        try:
            result = run_sync(self.config)
        except Exception as e:
            logger.error('Sync failed: {}'.format(e))
            self._send(HTTPStatus.INTERNAL_SERVER_ERROR, json.dumps({'error': 'Sync failed'}), 'application/json')
            return

        self._send(HTTPStatus.OK, json.dumps(result.to_dict(), indent=2), 'application/json')

    def do_GET(self):
        self._handle()

    def do_POST(self):
        self._handle()

    def log_message(self, format, *args):
        logger.debug('{} - {}'.format(self.address_string(), format % args))


def make_server(config, host=None, port=None):
    handler = type('ConfiguredSyncRequestHandler', (SyncRequestHandler,), {'config': config})
    # single threaded, so two syncs never run at once
    return HTTPServer((host or config['SERVER_HOST'], port if port is not None else config['SERVER_PORT']), handler)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='One-way sync of an Outlook ICS feed into a Google Calendar')
    parser.add_argument('--config', default=os.environ.get('CONFIG_PATH', 'config.py'),
                        help='Path to the python config file (default: $CONFIG_PATH or config.py)')
    parser.add_argument('--authorize', action='store_true', help='Run the one-time Google consent flow')
    parser.add_argument('--serve', action='store_true', help='Serve the on-demand /sync trigger over HTTP')
    parser.add_argument('--dry-run', action='store_true', help='Log the actions without modifying the calendar')
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigError as e:
        logging.basicConfig(format='%(asctime)s|[%(levelname)s] %(message)s')
        logger.error(str(e))
        return 1
    configure_logging(config)

    try:
        if args.authorize:
            authorize(config)
            return 0
        if args.serve:
            server = make_server(config)
            logger.info('Listening on http://{}:{}'.format(*server.server_address[:2]))
            try:
                server.serve_forever()
            except KeyboardInterrupt:
                pass
            finally:
                server.server_close()
            return 0
        run_sync(config, dry_run=args.dry_run)
    except SyncError as e:
        logger.error('Sync failed: {}'.format(e))
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
