"""Tests for callback signature verification."""

import pytest

from relay.core.errors import ConfigError, SignatureError
from relay.core.signing import sign_payload, verify_callback

BODY = b'{"status": "success"}'


class TestSignPayload:
    def test_format(self):
        signature = sign_payload("s3cret", BODY)
        assert signature.startswith("sha256=")
        assert len(signature) == len("sha256=") + 64

    def test_depends_on_body(self):
        assert sign_payload("s3cret", BODY) != sign_payload("s3cret", b"{}")


class TestVerifyCallback:
    def test_valid_signature(self):
        verify_callback("s3cret", BODY, signature=sign_payload("s3cret", BODY))

    def test_valid_secret_header(self):
        verify_callback("s3cret", BODY, provided_secret="s3cret")

    def test_wrong_signature(self):
        with pytest.raises(SignatureError, match="invalid callback signature"):
            verify_callback("s3cret", BODY, signature=sign_payload("other", BODY))

    def test_signature_takes_precedence(self):
        with pytest.raises(SignatureError):
            verify_callback("s3cret", BODY, signature="sha256=00", provided_secret="s3cret")

    def test_wrong_secret(self):
        with pytest.raises(SignatureError, match="invalid callback secret"):
            verify_callback("s3cret", BODY, provided_secret="guess")

    def test_missing(self):
        with pytest.raises(SignatureError, match="missing"):
            verify_callback("s3cret", BODY)

    def test_unconfigured_secret(self):
        with pytest.raises(ConfigError):
            verify_callback(None, BODY, provided_secret="anything")
