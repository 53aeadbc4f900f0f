import pytest

from sessiongate.errors import ConfigurationError
from sessiongate.services.shared_secret import SharedSecret
from tests.utils import TEST_AUDIENCE, TEST_ISSUER, TEST_SECRET, make_settings


def test_from_settings(shared_secret):
    loaded = SharedSecret.from_settings(make_settings())
    assert loaded == shared_secret


def test_secret_is_not_in_repr(shared_secret):
    assert TEST_SECRET not in repr(shared_secret)


@pytest.mark.parametrize("value", ["", "too-short"])
def test_weak_secret_is_refused(value):
    with pytest.raises(ConfigurationError):
        SharedSecret(value=value, issuer=TEST_ISSUER, audience=TEST_AUDIENCE)


def test_missing_secret_setting_is_refused():
    with pytest.raises(ConfigurationError):
        SharedSecret.from_settings(make_settings(shared_jwt_secret=None))


def test_fingerprint_is_stable_and_short(shared_secret):
    twin = SharedSecret(value=TEST_SECRET, issuer=TEST_ISSUER, audience=TEST_AUDIENCE)
    assert shared_secret.fingerprint() == twin.fingerprint()
    assert len(shared_secret.fingerprint()) == 16
    assert TEST_SECRET not in shared_secret.fingerprint()


@pytest.mark.parametrize(
    "other",
    [
        SharedSecret(value=TEST_SECRET + "x", issuer=TEST_ISSUER, audience=TEST_AUDIENCE),
        SharedSecret(value=TEST_SECRET, issuer="https://elsewhere", audience=TEST_AUDIENCE),
        SharedSecret(value=TEST_SECRET, issuer=TEST_ISSUER, audience="other"),
    ],
)
def test_any_difference_changes_fingerprint(shared_secret, other):
    assert shared_secret.fingerprint() != other.fingerprint()


def test_ensure_fingerprint(shared_secret):
    shared_secret.ensure_fingerprint(None, source="test")
    shared_secret.ensure_fingerprint(shared_secret.fingerprint().upper(), source="test")
    with pytest.raises(ConfigurationError):
        shared_secret.ensure_fingerprint("0" * 16, source="test")
