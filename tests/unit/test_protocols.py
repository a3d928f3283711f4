"""
Tests for the shared data model and error taxonomy.
"""

import pytest
from rankharvest.errors import (
    ConfigurationError,
    ErrorKind,
    HarvestError,
    NavigationTimeoutError,
    PolicyDeniedError,
    ResourceExhaustedError,
    SessionLostError,
    error_kind,
)
from rankharvest.protocols import CharacterClass, Digest, Record, Target, compute_content_hash

from tests.helpers.factories import make_records, make_snapshot


@pytest.mark.unit
class TestRecords:
    def test_identity_ignores_case_and_whitespace(self):
        assert Record(rank=1, name=" Alpha ", server="ASIA011").identity == ("alpha", "asia011")

    def test_with_target_fills_region_and_missing_server(self, target):
        tagged = Record(rank=1, name="A").with_target(target)

        assert tagged.region == "ASIA1"
        assert tagged.server == "ASIA011"
        assert Record(rank=1, name="A", server="OTHER").with_target(target).server == "OTHER"

    def test_dict_round_trip_keeps_class(self):
        record = Record(rank=3, name="A", character_class=CharacterClass.ARBALIST, power_score=7)

        data = record.to_dict()

        assert data["character_class"] == "Arbalist"
        assert Record.from_dict(data) == record

    def test_unknown_class_name(self):
        assert CharacterClass.parse("Necromancer") is CharacterClass.UNKNOWN
        assert CharacterClass.parse(None) is CharacterClass.UNKNOWN


@pytest.mark.unit
class TestSnapshotsAndDigests:
    def test_content_hash_is_order_independent(self):
        records = make_records(10)

        assert compute_content_hash(records) == compute_content_hash(list(reversed(records)))
        assert compute_content_hash(records) != compute_content_hash(records[:-1])

    def test_digest_takes_lowest_ranks(self):
        snapshot = make_snapshot(list(reversed(make_records(30))))

        digest = Digest.from_snapshot(snapshot, top_n=3)

        assert digest.record_count == 30
        assert [r.rank for r in digest.top_records] == [1, 2, 3]
        assert digest.hash == snapshot.content_hash

    def test_target_key(self):
        target = Target("INMENA1", "INMENA011", 21, 201)

        assert target.key == "INMENA1_INMENA011"
        assert str(target) == "INMENA1/INMENA011"


@pytest.mark.unit
class TestErrorKinds:
    @pytest.mark.parametrize(
        "exc,kind,retryable",
        [
            (SessionLostError("x"), ErrorKind.TRANSIENT, True),
            (NavigationTimeoutError("x"), ErrorKind.TRANSIENT, True),
            (ResourceExhaustedError("x"), ErrorKind.RESOURCE_EXHAUSTED, True),
            (PolicyDeniedError("x"), ErrorKind.POLICY_DENIED, False),
            (ConfigurationError("x"), ErrorKind.PERMANENT, False),
            (TimeoutError(), ErrorKind.TRANSIENT, True),
            (ValueError(), ErrorKind.PERMANENT, False),
        ],
    )
    def test_error_kind(self, exc, kind, retryable):
        assert error_kind(exc) is kind
        assert kind.retryable is retryable

    def test_explicit_kind_overrides_class_default(self):
        error = HarvestError("x", target_key="A_B", kind=ErrorKind.TRANSIENT)

        assert error.kind is ErrorKind.TRANSIENT
        assert error.target_key == "A_B"
        assert error.retry_exhausted is False
