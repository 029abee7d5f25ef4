"""Tests for relay.core.hashing."""

from relay.core.hashing import compute_hash, idempotency_key, spec_hash


class TestIdempotencyKey:
    def test_deterministic(self):
        assert idempotency_key(42, 7, "polish_document", False) == idempotency_key(
            42, 7, "polish_document", False
        )

    def test_length(self):
        assert len(idempotency_key(42, 7, "polish_document", False)) == 32

    def test_each_component_matters(self):
        base = idempotency_key(42, 7, "polish_document", False)
        assert idempotency_key(43, 7, "polish_document", False) != base
        assert idempotency_key(42, 8, "polish_document", False) != base
        assert idempotency_key(42, 7, "generate_knowledge_overview", False) != base
        assert idempotency_key(42, 7, "polish_document", True) != base

    def test_flag_normalised(self):
        assert idempotency_key(1, 1, "p", 0) == idempotency_key(1, 1, "p", False)
        assert idempotency_key(1, 1, "p", 1) == idempotency_key(1, 1, "p", True)


class TestHelpers:
    def test_compute_hash_order_dependent(self):
        assert compute_hash("a", "b") != compute_hash("b", "a")
        assert len(compute_hash("a", length=12)) == 12

    def test_spec_hash_ignores_key_order(self):
        assert spec_hash({"a": 1, "b": 2}) == spec_hash({"b": 2, "a": 1})
