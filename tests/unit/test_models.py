"""
Unit tests for request validation and error types.

Tests cover:
- Push and pull body parsing (wire names, optional fields)
- Validation failures as RequestValidationError
- Error codes and retryable flags
"""

import pytest

from syncsvc.spacesync_server.api.models import parse_pull, parse_push
from syncsvc.spacesync_server.errors import (
    MutationGapError,
    MutatorError,
    RequestValidationError,
    StoreUnavailableError,
    SyncError,
    TransactionExhaustedError,
    UnknownSpaceError,
)
from syncsvc.spacesync_server.sync import Mutation, PullRequest


class TestParsePush:
    """Tests for parse_push."""

    def test_valid_body(self):
        request = parse_push(
            "p1",
            {
                "clientGroupID": "g1",
                "profileID": "prof",
                "pushVersion": 1,
                "schemaVersion": "",
                "mutations": [
                    {"clientID": "c1", "id": 1, "name": "increment", "args": {}, "timestamp": 1.5},
                    {"clientID": "c1", "id": 2, "name": "set", "args": 5},
                ],
            },
        )

        assert request.space_id == "p1"
        assert request.client_group_id == "g1"
        assert request.mutations == [
            Mutation(client_id="c1", id=1, name="increment", args={}),
            Mutation(client_id="c1", id=2, name="set", args=5),
        ]

    def test_missing_args_default_to_none(self):
        request = parse_push(
            "p1", {"clientGroupID": "g1", "mutations": [{"clientID": "c1", "id": 1, "name": "x"}]}
        )
        assert request.mutations[0].args is None

    def test_unknown_fields_ignored(self):
        request = parse_push("p1", {"clientGroupID": "g1", "mutations": [], "extra": True})
        assert request.mutations == []

    def test_missing_client_group(self):
        with pytest.raises(RequestValidationError) as exc_info:
            parse_push("p1", {"mutations": []})

        assert exc_info.value.code == "INVALID_ARGUMENT"
        assert any(e.startswith("clientGroupID") for e in exc_info.value.errors)

    def test_mutation_id_must_be_positive(self):
        body = {
            "clientGroupID": "g1",
            "mutations": [{"clientID": "c1", "id": 0, "name": "increment"}],
        }
        with pytest.raises(RequestValidationError) as exc_info:
            parse_push("p1", body)

        assert any(e.startswith("mutations.0.id") for e in exc_info.value.errors)

    def test_mutation_id_must_fit_sql_integer(self):
        body = {
            "clientGroupID": "g1",
            "mutations": [{"clientID": "c1", "id": 2**63, "name": "increment"}],
        }
        with pytest.raises(RequestValidationError) as exc_info:
            parse_push("p1", body)

        assert any(e.startswith("mutations.0.id") for e in exc_info.value.errors)
        assert parse_push("p1", {**body, "mutations": [{**body["mutations"][0], "id": 2**63 - 1}]})

    def test_body_must_be_object(self):
        with pytest.raises(RequestValidationError):
            parse_push("p1", ["not", "an", "object"])


class TestParsePull:
    """Tests for parse_pull."""

    def test_null_cookie(self):
        request = parse_pull("p1", {"clientGroupID": "g1", "cookie": None})
        assert request == PullRequest(space_id="p1", client_group_id="g1", cookie=None)

    def test_integer_cookie(self):
        request = parse_pull("p1", {"clientGroupID": "g1", "cookie": 7, "profileID": "p"})
        assert request.cookie == 7

    def test_cookie_is_required(self):
        with pytest.raises(RequestValidationError) as exc_info:
            parse_pull("p1", {"clientGroupID": "g1"})
        assert any(e.startswith("cookie") for e in exc_info.value.errors)

    def test_negative_cookie(self):
        with pytest.raises(RequestValidationError):
            parse_pull("p1", {"clientGroupID": "g1", "cookie": -1})

    def test_cookie_must_fit_sql_integer(self):
        with pytest.raises(RequestValidationError) as exc_info:
            parse_pull("p1", {"clientGroupID": "g1", "cookie": 2**70})

        assert any(e.startswith("cookie") for e in exc_info.value.errors)
        assert parse_pull("p1", {"clientGroupID": "g1", "cookie": 2**63 - 1}).cookie == 2**63 - 1


class TestErrors:
    """Tests for the error hierarchy."""

    @pytest.mark.parametrize(
        "error,code,retryable",
        [
            (TransactionExhaustedError(10), "TRANSACTION_EXHAUSTED", True),
            (MutationGapError("c1", 2, 4), "MUTATION_GAP", False),
            (UnknownSpaceError("ghost"), "UNKNOWN_SPACE", False),
            (StoreUnavailableError("down"), "STORE_UNAVAILABLE", True),
            (MutatorError("boom", mutation_name="x"), "MUTATOR_ERROR", False),
            (RequestValidationError("bad"), "INVALID_ARGUMENT", False),
        ],
    )
    def test_codes(self, error, code, retryable):
        assert isinstance(error, SyncError)
        assert error.code == code
        assert error.to_dict() == {
            "error": error.message,
            "error_code": code,
            "retryable": retryable,
        }

    def test_gap_details(self):
        error = MutationGapError("c1", expected_id=2, actual_id=4)
        assert error.details == {"client_id": "c1", "expected_id": 2, "actual_id": 4}
        assert "from the future" in str(error)
