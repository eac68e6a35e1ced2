import json

import pytest
from google.auth.exceptions import RefreshError

import auth
from auth import get_credentials
from sync_errors import CredentialError

CONFIG = {
    'GOOGLE_CLIENT_ID': 'client-id',
    'GOOGLE_CLIENT_SECRET': 'client-secret',
    'GOOGLE_REFRESH_TOKEN': 'refresh-token',
}


def test_refresh_token_is_exchanged_for_access_token(monkeypatch):
    def fake_refresh(self, request):
        self.token = 'access-token'
    monkeypatch.setattr(auth.Credentials, 'refresh', fake_refresh)

    creds = get_credentials(CONFIG)

    assert creds.token == 'access-token'
    assert creds.refresh_token == 'refresh-token'


def test_refresh_failure_is_fatal(monkeypatch):
    def fake_refresh(self, request):
        raise RefreshError('invalid_grant')
    monkeypatch.setattr(auth.Credentials, 'refresh', fake_refresh)

    with pytest.raises(CredentialError, match='invalid_grant'):
        get_credentials(CONFIG)


def test_missing_credentials_are_fatal(tmp_path):
    with pytest.raises(CredentialError):
        get_credentials({})
    with pytest.raises(CredentialError):
        get_credentials({'CREDENTIAL_PATH': str(tmp_path / 'missing.json')})


def test_valid_cached_credentials_are_used_as_is(tmp_path, monkeypatch):
    path = tmp_path / 'credentials.json'
    path.write_text(json.dumps({
        'client_id': 'client-id',
        'client_secret': 'client-secret',
        'refresh_token': 'refresh-token',
        'token': 'cached-token',
    }))

    def fail_refresh(self, request):
        raise AssertionError('should not refresh')
    monkeypatch.setattr(auth.Credentials, 'refresh', fail_refresh)

    creds = get_credentials({'CREDENTIAL_PATH': str(path)})

    assert creds.token == 'cached-token'


def test_corrupt_cached_credentials_are_fatal(tmp_path):
    path = tmp_path / 'credentials.json'
    path.write_text('{"client_id": "only"}')

    with pytest.raises(CredentialError):
        get_credentials({'CREDENTIAL_PATH': str(path)})
