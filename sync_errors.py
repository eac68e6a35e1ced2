class SyncError(Exception):
    """Base class for errors that abort a whole sync run."""


class ConfigError(SyncError):
    pass


class CredentialError(SyncError):
    pass


class FeedError(SyncError):
    pass


class CalendarReadError(SyncError):
    pass
