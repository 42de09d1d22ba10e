"""Tests for the L402 header helpers."""

from lightning_paywall.l402 import (
    format_challenge,
    format_challenge_body,
    parse_authorization,
)


class TestFormatChallenge:
    def test_basic_format(self):
        result = format_challenge("lnbc50n1pj...", "eyJpZCI...")
        assert result == 'L402 invoice="lnbc50n1pj...", macaroon="eyJpZCI..."'


class TestFormatChallengeBody:
    def test_includes_all_fields(self):
        body = format_challenge_body(
            resource_id="post-1",
            payment_request="lnbc50n1...",
            token="eyJpZCI...",
            payment_hash="abc123",
            amount=5,
        )
        assert body == {
            "resource_id": "post-1",
            "amount": 5,
            "token": "eyJpZCI...",
            "payment_request": "lnbc50n1...",
            "payment_hash": "abc123",
            "protocol": "L402",
        }


class TestParseAuthorization:
    def test_token_and_preimage(self):
        result = parse_authorization("L402 eyJpZCI6ImFiYzEyMyJ9:deadbeef0123")
        assert result is not None
        assert result.token == "eyJpZCI6ImFiYzEyMyJ9"
        assert result.preimage == "deadbeef0123"

    def test_token_only(self):
        result = parse_authorization("L402 eyJpZCI6ImFiYzEyMyJ9")
        assert result is not None
        assert result.token == "eyJpZCI6ImFiYzEyMyJ9"
        assert result.preimage is None

    def test_empty_preimage_means_none(self):
        result = parse_authorization("L402 token:")
        assert result is not None
        assert result.preimage is None

    def test_case_insensitive_prefix(self):
        result = parse_authorization("l402 tok123:pre456")
        assert result.token == "tok123"
        assert result.preimage == "pre456"

    def test_with_whitespace(self):
        result = parse_authorization("  L402   tok:pre  ")
        assert result.token == "tok"
        assert result.preimage == "pre"

    def test_empty_token(self):
        assert parse_authorization("L402 :preimage") is None

    def test_not_l402(self):
        assert parse_authorization("Bearer token123") is None

    def test_none_and_empty(self):
        assert parse_authorization(None) is None
        assert parse_authorization("") is None

    def test_non_string_input(self):
        assert parse_authorization(12345) is None
