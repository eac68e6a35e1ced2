import os
import logging

from googleapiclient.discovery import build
from google_auth_oauthlib.flow import InstalledAppFlow
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from sync_errors import CredentialError

logger = logging.getLogger(__name__)

TOKEN_URI = 'https://oauth2.googleapis.com/token'
AUTH_URI = 'https://accounts.google.com/o/oauth2/auth'
DEFAULT_SCOPES = 'https://www.googleapis.com/auth/calendar'


def _scopes(config):
    scopes = config.get('SCOPES') or DEFAULT_SCOPES
    if isinstance(scopes, str):
        return [scopes]
    return list(scopes)


def _load_credentials(config):
    if config.get('GOOGLE_REFRESH_TOKEN'):
        return Credentials(token=None,
                           refresh_token=config['GOOGLE_REFRESH_TOKEN'],
                           client_id=config.get('GOOGLE_CLIENT_ID'),
                           client_secret=config.get('GOOGLE_CLIENT_SECRET'),
                           token_uri=TOKEN_URI,
                           scopes=_scopes(config))

    # this file stores your access and refresh tokens, and is
    # created by --authorize the first time
    credential_path = config.get('CREDENTIAL_PATH')
    if not credential_path or not os.path.exists(credential_path):
        raise CredentialError('No refresh token configured and no credentials file found, run with --authorize first')
    try:
        logger.info('Loading cached credentials')
        return Credentials.from_authorized_user_file(credential_path, _scopes(config))
    except (OSError, ValueError) as e:
        raise CredentialError('Failed to load cached credentials: {}'.format(e)) from e


def get_credentials(config):
    """Returns valid Google credentials, exchanging the refresh token if needed.

    Never falls back to the interactive flow, a sync run that can't
    authenticate fails outright.
    """
    creds = _load_credentials(config)
    if creds.valid:
        return creds
    if not creds.refresh_token:
        raise CredentialError('Cached credentials are invalid and have no refresh token')

    logger.info('Refreshing credentials')
    try:
        creds.refresh(Request())
    except GoogleAuthError as e:
        raise CredentialError('Failed to get access token: {}'.format(e)) from e
    return creds


def build_calendar_service(creds):
    return build('calendar', 'v3', credentials=creds, cache_discovery=False)


def authorize(config):
    """Runs the one-time browser consent flow and stores the resulting credentials.

    Consent is forced so Google always hands out a refresh token, which is
    logged so it can be copied into GOOGLE_REFRESH_TOKEN.
    """
    if config.get('CLIENT_SECRET_FILE') and os.path.exists(config['CLIENT_SECRET_FILE']):
        flow = InstalledAppFlow.from_client_secrets_file(config['CLIENT_SECRET_FILE'], _scopes(config))
    elif config.get('GOOGLE_CLIENT_ID') and config.get('GOOGLE_CLIENT_SECRET'):
        client_config = {
            'installed': {
                'client_id': config['GOOGLE_CLIENT_ID'],
                'client_secret': config['GOOGLE_CLIENT_SECRET'],
                'auth_uri': AUTH_URI,
                'token_uri': TOKEN_URI,
            }
        }
        flow = InstalledAppFlow.from_client_config(client_config, _scopes(config))
    else:
        raise CredentialError('Set CLIENT_SECRET_FILE or GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET to authorize')

    logger.info('Credentials need manually approved!')
    creds = flow.run_local_server(port=0, access_type='offline', prompt='consent')

    if config.get('CREDENTIAL_PATH'):
        with open(config['CREDENTIAL_PATH'], 'w') as token:
            token.write(creds.to_json())
        logger.info('Saved credentials to {}'.format(config['CREDENTIAL_PATH']))

    logger.info('Refresh token (set as GOOGLE_REFRESH_TOKEN): {}'.format(creds.refresh_token))
    return creds
