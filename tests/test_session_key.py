"""Tests for composite session keys."""

from opencode_mirror.session_key import build_session_key, parse_session_key


def test_build_session_key():
    assert build_session_key("/Users/me/dev/app", "ses_1") == "%2FUsers%2Fme%2Fdev%2Fapp::ses_1"


def test_directory_separator_is_encoded():
    key = build_session_key("/weird::dir", "ses_1")
    assert key.count("::") == 1
    assert parse_session_key(key) == ("/weird::dir", "ses_1")


def test_parse_session_key():
    assert parse_session_key("%2FUsers%2Fme%2Fdev%2Fapp::ses_1") == ("/Users/me/dev/app", "ses_1")


def test_windows_directory():
    key = build_session_key("C:\\Users\\me\\app", "ses_2")
    assert parse_session_key(key) == ("C:\\Users\\me\\app", "ses_2")


def test_malformed_keys():
    assert parse_session_key("ses_1") is None
    assert parse_session_key("::ses_1") is None
    assert parse_session_key("%2Ftmp::") is None
    assert parse_session_key("") is None
