"""Unit tests for store/repository.py -- the generic Repository[T].

Uses the auth_ips table with a tiny tuple mapper so the tests exercise only
the generic behavior: filters, policy decisions, and batch atomicity.
"""

from collections import namedtuple

import pytest

from store.repository import Repository
from store.schema import auth_ips

Row = namedtuple("Row", "id scope_key ip")


def _mapper(row) -> Row:
    return Row(row.id, row.scope_key, row.ip)


class _Rejected(Exception):
    pass


class TestRepository:
    def test_insert_without_policy(self, engine):
        repo = Repository(engine, auth_ips, _mapper)
        row = repo.create({"scope_key": "s", "ip": "10.0.0.1"})
        assert row.id is not None
        assert repo.find(scope_key="s") == [row]

    def test_policy_sees_conflicts_and_can_adopt_existing_row(self, engine):
        seen = []

        def adopt(candidate, conflicts):
            seen.append(list(conflicts))
            return conflicts[0].id if conflicts else None

        repo = Repository(engine, auth_ips, _mapper, policy=adopt, conflict_columns=("scope_key", "ip"))
        first = repo.create({"scope_key": "s", "ip": "10.0.0.1"})
        second = repo.create({"scope_key": "s", "ip": "10.0.0.1"})

        assert second.id == first.id
        assert seen[0] == []
        assert seen[1] == [first]
        assert repo.count() == 1

    def test_policy_rejection_rolls_back_whole_batch(self, engine):
        def reject_second(candidate, conflicts):
            if candidate["ip"] == "10.0.0.2":
                raise _Rejected()
            return None

        repo = Repository(engine, auth_ips, _mapper, policy=reject_second, conflict_columns=("scope_key", "ip"))
        with pytest.raises(_Rejected):
            repo.create_many(
                [
                    {"scope_key": "s", "ip": "10.0.0.1"},
                    {"scope_key": "s", "ip": "10.0.0.2"},
                ]
            )
        assert repo.count() == 0

    def test_list_filter_matches_any_member(self, engine):
        repo = Repository(engine, auth_ips, _mapper)
        repo.create({"scope_key": "a", "ip": "10.0.0.1"})
        repo.create({"scope_key": "b", "ip": "10.0.0.1"})
        repo.create({"scope_key": "c", "ip": "10.0.0.1"})
        assert [r.scope_key for r in repo.find(scope_key=["a", "c"])] == ["a", "c"]

    def test_none_filter_is_ignored(self, engine):
        repo = Repository(engine, auth_ips, _mapper)
        repo.create({"scope_key": "a", "ip": "10.0.0.1"})
        assert len(repo.find(scope_key=None)) == 1

    def test_unknown_filter_column_raises(self, engine):
        repo = Repository(engine, auth_ips, _mapper)
        with pytest.raises(ValueError, match="Unknown column"):
            repo.find(nope="x")

    def test_update_and_delete_return_affected_rows(self, engine):
        repo = Repository(engine, auth_ips, _mapper)
        repo.create({"scope_key": "a", "ip": "10.0.0.1"})
        repo.create({"scope_key": "a", "ip": "10.0.0.2"})

        updated = repo.update({"ip": "10.0.0.2"}, {"scope_key": "b"})
        assert [(r.scope_key, r.ip) for r in updated] == [("b", "10.0.0.2")]

        removed = repo.delete(scope_key="a")
        assert [r.ip for r in removed] == ["10.0.0.1"]
        assert repo.distinct("scope_key") == ["b"]

    def test_update_with_no_match_returns_empty(self, engine):
        repo = Repository(engine, auth_ips, _mapper)
        assert repo.update({"scope_key": "zzz"}, {"ip": "10.0.0.1"}) == []
