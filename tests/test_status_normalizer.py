"""
Tests for gateway status normalization
"""
import logging

import pytest

from telehealth_payments.db.models.payment import TransactionStatus
from telehealth_payments.services.status_normalizer import normalize


class TestStatusNormalizer:
    """Test mapping of gateway status tokens"""

    @pytest.mark.parametrize("token", ["success", "successful", "confirmed", "completed", "paid"])
    def test_success_tokens_complete(self, token):
        assert normalize(token) == TransactionStatus.COMPLETED

    @pytest.mark.parametrize("token", ["failed", "declined", "cancelled", "canceled", "expired", "reversed"])
    def test_failure_tokens_fail(self, token):
        assert normalize(token) == TransactionStatus.FAILED

    @pytest.mark.parametrize("token", ["pending", "processing", "initiated"])
    def test_pending_tokens(self, token):
        assert normalize(token) == TransactionStatus.PENDING

    def test_case_and_whitespace_insensitive(self):
        assert normalize("  SUCCESS ") == TransactionStatus.COMPLETED
        assert normalize("Failed") == TransactionStatus.FAILED

    def test_unknown_token_is_pending_and_logged(self, caplog):
        """Unrecognized tokens never finalize a transaction"""
        with caplog.at_level(logging.WARNING, logger="telehealth_payments.services.status_normalizer"):
            assert normalize("on_hold") == TransactionStatus.PENDING
        assert "Unrecognized gateway status token" in caplog.text

    def test_missing_status_is_pending(self):
        assert normalize(None) == TransactionStatus.PENDING
        assert normalize("") == TransactionStatus.PENDING

    def test_mapping_is_deterministic(self):
        assert {normalize("success") for _ in range(5)} == {TransactionStatus.COMPLETED}
