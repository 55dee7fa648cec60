"""
Unit tests for IdentityClient.
"""

from unittest.mock import Mock

import pytest
import requests

from venuesync.errors import Unauthorized
from venuesync.identity import IdentityClient, bearer_token


def make_response(status=200, payload=None, json_error=False):
    response = Mock()
    response.status_code = status
    response.ok = 200 <= status < 300
    if json_error:
        response.json.side_effect = ValueError("not json")
    else:
        response.json.return_value = payload or {}
    return response


@pytest.fixture
def session():
    return Mock(spec=requests.Session)


@pytest.fixture
def client(session):
    return IdentityClient("https://id.example.com/v1/", "proj-1", timeout=2.0, session=session)


def test_verify_sends_credential_headers(client, session):
    session.get.return_value = make_response(payload={"$id": "user-1", "email": "a@example.com"})

    identity = client.verify("jwt-token")

    assert identity.user_id == "user-1"
    assert identity.role == "user"
    assert identity.email == "a@example.com"
    session.get.assert_called_once()
    args, kwargs = session.get.call_args
    assert args[0] == "https://id.example.com/v1/account"
    assert kwargs["headers"]["X-Appwrite-JWT"] == "jwt-token"
    assert kwargs["headers"]["X-Appwrite-Project"] == "proj-1"
    assert kwargs["timeout"] == 2.0


def test_verify_reads_role(client, session):
    session.get.return_value = make_response(payload={"userId": "u2", "role": "admin"})
    assert client.verify("t").is_admin


def test_verify_reads_admin_label(client, session):
    session.get.return_value = make_response(payload={"$id": "u3", "labels": ["admin"]})
    assert client.verify("t").role == "admin"


def test_missing_token(client, session):
    with pytest.raises(Unauthorized):
        client.verify(None)
    session.get.assert_not_called()


def test_rejected_token(client, session):
    session.get.return_value = make_response(status=401)
    with pytest.raises(Unauthorized):
        client.verify("bad")


def test_rejection_is_logged(client, session, caplog):
    session.get.return_value = make_response(status=403)
    with caplog.at_level("WARNING", logger="venuesync.identity"):
        with pytest.raises(Unauthorized):
            client.verify("bad")

    assert client.logger.name == "venuesync.identity"
    assert "HTTP 403" in caplog.text


def test_positional_settings(session):
    client = IdentityClient("https://id.example.com", "proj-2", 3.0, session)
    session.get.return_value = make_response(payload={"$id": "u4"})

    assert client.verify("t").user_id == "u4"
    assert session.get.call_args.kwargs["timeout"] == 3.0
    assert client.account_url == "https://id.example.com/account"


def test_provider_unreachable(client, session):
    session.get.side_effect = requests.ConnectionError("down")
    with pytest.raises(Unauthorized):
        client.verify("t")


def test_bad_json(client, session):
    session.get.return_value = make_response(json_error=True)
    with pytest.raises(Unauthorized):
        client.verify("t")


def test_account_without_id(client, session):
    session.get.return_value = make_response(payload={"email": "x@example.com"})
    with pytest.raises(Unauthorized):
        client.verify("t")


def test_endpoint_required():
    with pytest.raises(ValueError):
        IdentityClient("")


@pytest.mark.parametrize(
    "header,expected",
    [
        ("Bearer abc", "abc"),
        ("bearer  abc ", "abc"),
        ("Basic abc", None),
        ("Bearer ", None),
        (None, None),
    ],
)
def test_bearer_token(header, expected):
    assert bearer_token(header) == expected
