from unittest.mock import patch

import pytest

from studywell.core.firebase import initialize_firebase
from studywell.reminders.exceptions import FirebaseInitError


@pytest.fixture(autouse=True)
def no_existing_app():
    with patch("studywell.core.firebase.firebase_admin.get_app", side_effect=ValueError("no app")):
        yield


@pytest.mark.parametrize("service_account", [None, "", "   "])
def test_missing_service_account(service_account):
    with pytest.raises(FirebaseInitError):
        initialize_firebase(service_account)


def test_unparseable_inline_json():
    with pytest.raises(FirebaseInitError):
        initialize_firebase('{"type": "service_account", ')


def test_path_that_does_not_exist(tmp_path):
    with pytest.raises(FirebaseInitError):
        initialize_firebase(str(tmp_path / "missing.json"))


def test_json_that_is_not_a_service_account():
    # credentials.Certificate rejects anything but type=service_account
    with pytest.raises(FirebaseInitError):
        initialize_firebase('{"type": "authorized_user"}')


def test_existing_app_is_reused():
    sentinel = object()
    with patch("studywell.core.firebase.firebase_admin.get_app", return_value=sentinel):
        assert initialize_firebase(None) is sentinel
