import re
import time

import pyotp

from core import totp


def test_candidate_encodings_tries_raw_then_hyphenated():
    assert totp.candidate_encodings(" abcd2345 ") == ["ABCD2345", "ABCD-2345"]


def test_candidate_encodings_keeps_hyphenated_input_as_is():
    assert totp.candidate_encodings("abcd-2345") == ["ABCD-2345"]


def test_candidate_encodings_short_or_empty_input():
    assert totp.candidate_encodings("abc") == ["ABC"]
    assert totp.candidate_encodings("   ") == []
    assert totp.candidate_encodings(None) == []


def test_generate_backup_codes_shape_and_hashes():
    codes, hashes = totp.generate_backup_codes()
    assert len(codes) == 10
    assert len(set(codes)) == 10
    for code, code_hash in zip(codes, hashes):
        assert re.fullmatch(r"[A-HJKMNP-Z2-9]{4}-[A-HJKMNP-Z2-9]{4}", code)
        assert code_hash == totp.backup_hash(code)
        assert code not in code_hash


def test_verify_totp_accepts_one_step_of_skew():
    secret = totp.generate_secret()
    t = pyotp.TOTP(secret)
    now = int(time.time())
    assert totp.verify_totp(t.at(now), secret)
    assert totp.verify_totp(t.at(now - 30), secret)
    assert totp.verify_totp(t.at(now + 30), secret)


def test_verify_totp_rejects_codes_outside_the_window():
    secret = totp.generate_secret()
    t = pyotp.TOTP(secret)
    now = int(time.time())
    stale = t.at(now - 120)
    if stale not in {t.at(now + k * 30) for k in (-1, 0, 1)}:
        assert not totp.verify_totp(stale, secret)


def test_verify_totp_rejects_malformed_codes():
    secret = totp.generate_secret()
    assert not totp.verify_totp("12345", secret)
    assert not totp.verify_totp("ABCDEF", secret)
    assert not totp.verify_totp("", secret)


def test_provisioning_uri_names_issuer_and_account():
    uri = totp.provisioning_uri("JBSWY3DPEHPK3PXP", "alice@example.com")
    assert uri.startswith("otpauth://totp/")
    assert "issuer=TrustGate" in uri
    assert "alice%40example.com" in uri or "alice@example.com" in uri
