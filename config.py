# The published Outlook calendar (.ics) URL whose events should be synced to the
# Google Calendar. Note that the syncing is one-way only.
ICAL_FEED = '<OUTLOOK_ICS_URL>'

# Optional HTTP basic auth and SSL settings for fetching ICAL_FEED
ICAL_FEED_USER = None
ICAL_FEED_PASS = None
ICAL_FEED_VERIFY_SSL_CERT = True
# seconds before the feed download is abandoned
ICAL_FEED_TIMEOUT = 60

# the ID of the calendar to use for iCal events, should be of the form
# 'ID@group.calendar.google.com', check the calendar settings page to find it.
# (can also be 'primary' to use the default calendar)
CALENDAR_ID = '<GOOGLE_CALENDAR_ID@group.calendar.google.com>'

# timezone timed events are written in
CALENDAR_TIMEZONE = 'UTC'

# must use the OAuth scope that allows write access
SCOPES = 'https://www.googleapis.com/auth/calendar'

# Either set the OAuth client and refresh token directly (the refresh token is
# printed by `outlook_to_gcal_sync.py --authorize`)...
GOOGLE_CLIENT_ID = None
GOOGLE_CLIENT_SECRET = None
GOOGLE_REFRESH_TOKEN = None

# ...or point at the client secret downloaded from the Google Cloud console and
# a file where --authorize stores the credentials
CLIENT_SECRET_FILE = None
CREDENTIAL_PATH = 'credentials.json'

# File to use for logging output (None logs to stderr)
LOGFILE = None

# Time to pause between successive API calls that may trigger rate-limiting protection
API_SLEEP_TIME = 0.10

# Whether Google should email attendees about created/updated/deleted events:
# 'all', 'externalOnly' or 'none'
SEND_UPDATES = 'none'

# The window of Google Calendar events reconciled on each run. Synced events
# outside of it are left untouched.
PAST_DAYS_TO_SYNC = 30
FUTURE_DAYS_TO_SYNC = 365

# Float between 0 and 1, or None to disable.
# If a run would delete more than this fraction of the previously synced events
# (e.g. because the feed came back empty), no deletions are made at all.
MAX_DELETE_FRACTION = None

# Shared secret for the on-demand trigger (--serve). Requests to /sync must send
# it as the X-Sync-Token header or a ?token= parameter. Leave unset to disable.
SYNC_TOKEN = None
SERVER_HOST = '127.0.0.1'
SERVER_PORT = 8787
