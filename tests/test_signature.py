import hashlib
import hmac

from prfocus.signature import compute_signature, verify_signature

SECRET = "It's a Secret to Everybody"
BODY = b"Hello, World!"


def test_compute_signature_matches_github_reference_vector() -> None:
    # Reference pair from GitHub's webhook validation docs.
    assert compute_signature(BODY, SECRET) == "sha256=757107ea0eb2509fc211221cce984b8a37570b6d7586c22c46f4379c8b043e17"


def test_verify_signature_accepts_valid_header() -> None:
    header = compute_signature(BODY, SECRET)
    assert verify_signature(BODY, header, SECRET) is True
    assert verify_signature(BODY.decode("utf-8"), header, SECRET) is True


def test_verify_signature_accepts_uppercase_hex_digest() -> None:
    digest = compute_signature(BODY, SECRET)[len("sha256=") :]
    assert verify_signature(BODY, f"sha256={digest.upper()}", SECRET) is True


def test_verify_signature_uses_raw_bytes_not_reserialized_json() -> None:
    raw = b'{"b": 1,  "a": 2}'
    header = "sha256=" + hmac.new(SECRET.encode(), raw, hashlib.sha256).hexdigest()
    assert verify_signature(raw, header, SECRET) is True
    assert verify_signature(b'{"a": 2, "b": 1}', header, SECRET) is False


def test_verify_signature_rejects_missing_inputs() -> None:
    header = compute_signature(BODY, SECRET)
    assert verify_signature(BODY, None, SECRET) is False
    assert verify_signature(BODY, "", SECRET) is False
    assert verify_signature(BODY, header, None) is False
    assert verify_signature(BODY, header, "") is False


def test_verify_signature_rejects_wrong_prefix_and_malformed_digest() -> None:
    digest = compute_signature(BODY, SECRET)[len("sha256=") :]
    assert verify_signature(BODY, f"sha1={digest}", SECRET) is False
    assert verify_signature(BODY, digest, SECRET) is False
    assert verify_signature(BODY, f"sha256={digest[:-2]}", SECRET) is False
    assert verify_signature(BODY, f"sha256={digest}00", SECRET) is False
    assert verify_signature(BODY, "sha256=" + "z" * 64, SECRET) is False
    assert verify_signature(BODY, "sha256=" + "é" * 64, SECRET) is False


def test_verify_signature_rejects_any_single_character_change() -> None:
    header = compute_signature(BODY, SECRET)
    digest = header[len("sha256=") :]
    for index in range(len(digest)):
        replacement = "0" if digest[index] != "0" else "1"
        tampered = digest[:index] + replacement + digest[index + 1 :]
        assert verify_signature(BODY, f"sha256={tampered}", SECRET) is False


def test_verify_signature_rejects_other_secret_or_body() -> None:
    header = compute_signature(BODY, SECRET)
    assert verify_signature(BODY, header, "other-secret") is False
    assert verify_signature(BODY + b" ", header, SECRET) is False
