"""Tests for scope expansion and bulk actions."""
from datetime import date

import pytest

import bulk_service
import profile_service
import project_service
import task_service
from database import transaction
from errors import NotFoundError, UniquenessConflict, ValidationError
from scope_expander import check_scope, expand_scope, unique_ids
from task_store import fetch_task, insert_task


@pytest.fixture
def chain(make_task, profile_id):
    """A daily series with three occurrences (03-01 done, 03-02 done, 03-03 open) and one plain task."""
    first = make_task("Stretch", date(2024, 3, 1), repeat_enabled=True, repeat_pattern="daily")
    second = task_service.complete_occurrence(profile_id, first["id"], date(2024, 3, 1))["successor"]
    third = task_service.complete_occurrence(profile_id, second["id"], date(2024, 3, 2))["successor"]
    plain = make_task("Call plumber", date(2024, 3, 2))
    return first, second, third, plain


def _get(profile_id, task_id):
    return task_service.get_task(profile_id, task_id)


class TestScopeExpander:
    def test_check_scope(self):
        assert check_scope(None) == "this"
        assert check_scope(" Future ") == "future"
        with pytest.raises(ValidationError):
            check_scope("all")

    def test_unique_ids(self):
        assert unique_ids(["a", "b", "a", "", "  ", None, 3]) == ["a", "b"]
        with pytest.raises(ValidationError) as exc:
            unique_ids([])
        assert exc.value.field == "task_ids"

    def test_expansions(self, chain, profile_id):
        first, second, third, plain = chain
        with transaction() as conn:
            selected = [fetch_task(conn, profile_id, second["id"]), fetch_task(conn, profile_id, plain["id"])]
            this = {t["id"] for t in expand_scope(conn, profile_id, selected, "this")}
            future = {t["id"] for t in expand_scope(conn, profile_id, selected, "future")}
            series = {t["id"] for t in expand_scope(conn, profile_id, selected, "series")}
        assert this == {second["id"], plain["id"]}
        assert future == {second["id"], third["id"], plain["id"]}
        assert series == {first["id"], second["id"], third["id"], plain["id"]}

    def test_future_uses_earliest_selected(self, chain, profile_id):
        first, second, third, _ = chain
        with transaction() as conn:
            selected = [fetch_task(conn, profile_id, third["id"]), fetch_task(conn, profile_id, second["id"])]
            future = {t["id"] for t in expand_scope(conn, profile_id, selected, "future")}
        assert future == {second["id"], third["id"]}


class TestBulkApply:
    def test_set_category_series(self, chain, profile_id):
        first, second, third, plain = chain
        out = bulk_service.bulk_apply(profile_id, [second["id"]], "series", "set-category", category="health")
        assert out == {"targets": 3}
        assert {_get(profile_id, t["id"])["category"] for t in (first, second, third)} == {"health"}
        assert _get(profile_id, plain["id"])["category"] is None

    def test_move_project_future(self, chain, profile_id):
        first, second, third, _ = chain
        proj = project_service.create_project(profile_id, "Health")
        out = bulk_service.bulk_apply(profile_id, [second["id"]], "future", "move-project", project_id=proj["id"])
        assert out["targets"] == 2
        assert _get(profile_id, first["id"])["project_id"] is None
        assert _get(profile_id, second["id"])["project_id"] == proj["id"]
        assert _get(profile_id, third["id"])["project_id"] == proj["id"]

    def test_move_project_unknown(self, chain, profile_id):
        with pytest.raises(NotFoundError):
            bulk_service.bulk_apply(profile_id, [chain[3]["id"]], "this", "move-project", project_id="nope")

    def test_due_dates(self, chain, profile_id):
        plain = chain[3]
        bulk_service.bulk_apply(profile_id, [plain["id"]], "this", "set-due-date", due_at=date(2024, 4, 1))
        assert _get(profile_id, plain["id"])["due_at"] == "2024-04-01"
        bulk_service.bulk_apply(profile_id, [plain["id"]], "this", "clear-due-date")
        assert _get(profile_id, plain["id"])["due_at"] is None

    def test_set_due_date_requires_value(self, chain, profile_id):
        with pytest.raises(ValidationError) as exc:
            bulk_service.bulk_apply(profile_id, [chain[3]["id"]], "this", "set-due-date")
        assert exc.value.field == "due_at"

    def test_mark_done_this_materializes_successor(self, chain, profile_id):
        first, second, third, _ = chain
        bulk_service.bulk_apply(profile_id, [third["id"]], "this", "mark-done", completed_on=date(2024, 3, 3))
        rows = task_service.list_tasks(profile_id, series_id=first["id"])
        assert sorted(r["start_date"] for r in rows) == ["2024-03-01", "2024-03-02", "2024-03-03", "2024-03-04"]

    def test_mark_done_series_does_not_materialize(self, chain, profile_id):
        first, _, third, _ = chain
        out = bulk_service.bulk_apply(profile_id, [first["id"]], "series", "mark-done", completed_on=date(2024, 3, 5))
        assert out["targets"] == 3
        assert _get(profile_id, third["id"])["completed_on"] == "2024-03-05"
        # Already-done rows keep their original completion day
        assert _get(profile_id, first["id"])["completed_on"] == "2024-03-01"
        assert len(task_service.list_tasks(profile_id, series_id=first["id"])) == 3

    def test_mark_open(self, chain, profile_id):
        first, second, _, _ = chain
        bulk_service.bulk_apply(profile_id, [first["id"]], "series", "mark-open")
        assert task_service.list_tasks(profile_id, status="done") == []
        bulk_service.bulk_apply(profile_id, [second["id"]], "this", "mark-done", completed_on=date(2024, 3, 2))
        bulk_service.bulk_apply(profile_id, [second["id"]], "this", "mark-open")
        assert _get(profile_id, second["id"])["completed_on"] is None

    def test_delete_this_newest_materializes(self, chain, profile_id):
        first, _, third, _ = chain
        bulk_service.bulk_apply(profile_id, [third["id"]], "this", "delete")
        rows = task_service.list_tasks(profile_id, series_id=first["id"])
        assert sorted(r["start_date"] for r in rows) == ["2024-03-01", "2024-03-02", "2024-03-04"]

    def test_delete_future(self, chain, profile_id):
        first, second, _, plain = chain
        out = bulk_service.bulk_apply(profile_id, [second["id"], plain["id"]], "future", "delete")
        assert out["targets"] == 3
        assert [t["id"] for t in task_service.list_tasks(profile_id)] == [first["id"]]

    def test_set_start_date_collision_rolls_back(self, chain, profile_id):
        first, second, third, plain = chain
        with pytest.raises(UniquenessConflict):
            bulk_service.bulk_apply(profile_id, [second["id"]], "series", "set-start-date",
                                    start_date=date(2024, 3, 9))
        assert _get(profile_id, first["id"])["start_date"] == "2024-03-01"
        assert _get(profile_id, second["id"])["start_date"] == "2024-03-02"

    def test_set_start_date_plain(self, chain, profile_id):
        plain = chain[3]
        bulk_service.bulk_apply(profile_id, [plain["id"]], "this", "set-start-date", start_date=date(2024, 3, 9))
        assert _get(profile_id, plain["id"])["start_date"] == "2024-03-09"

    def test_missing_id_changes_nothing(self, chain, profile_id):
        plain = chain[3]
        with pytest.raises(NotFoundError):
            bulk_service.bulk_apply(profile_id, [plain["id"], "missing"], "this", "set-category", category="x")
        assert _get(profile_id, plain["id"])["category"] is None

    def test_failure_midway_rolls_back(self, chain, profile_id, monkeypatch):
        first, second, third, _ = chain
        real = bulk_service.update_columns
        calls = []

        def failing(conn, task_id, values, where=""):
            calls.append(task_id)
            if len(calls) == 2:
                raise UniquenessConflict("boom")
            return real(conn, task_id, values, where=where)

        monkeypatch.setattr(bulk_service, "update_columns", failing)
        with pytest.raises(UniquenessConflict):
            bulk_service.bulk_apply(profile_id, [first["id"]], "series", "set-category", category="x")
        assert all(_get(profile_id, t["id"])["category"] is None for t in (first, second, third))

    def test_unknown_action(self, chain, profile_id):
        with pytest.raises(ValidationError) as exc:
            bulk_service.bulk_apply(profile_id, [chain[3]["id"]], "this", "archive")
        assert exc.value.field == "action"

    def test_bad_scope(self, chain, profile_id):
        with pytest.raises(ValidationError) as exc:
            bulk_service.bulk_apply(profile_id, [chain[3]["id"]], "forever", "delete")
        assert exc.value.field == "scope"


class TestOtherProfiles:
    @pytest.fixture
    def foreign(self, chain):
        """A row in a second profile that carries the same series id."""
        other = profile_service.create_profile("Work")
        with transaction() as conn:
            row = insert_task(conn, {
                "profile_id": other["id"],
                "title": "Stretch",
                "start_date": date(2024, 3, 2),
                "series_id": chain[0]["id"],
                "repeat_enabled": True,
                "repeat_pattern": "daily",
                "repeat_days": 127,
            })
        return other["id"], row

    def test_expansion_stays_in_profile(self, chain, foreign, profile_id):
        first = chain[0]
        _, row = foreign
        with transaction() as conn:
            selected = [fetch_task(conn, profile_id, first["id"])]
            for scope in ("future", "series"):
                ids = {t["id"] for t in expand_scope(conn, profile_id, selected, scope)}
                assert row["id"] not in ids
                assert len(ids) == 3

    def test_bulk_leaves_other_profile_alone(self, chain, foreign, profile_id):
        other_id, row = foreign
        out = bulk_service.bulk_apply(profile_id, [chain[0]["id"]], "series", "set-category", category="x")
        assert out["targets"] == 3
        assert task_service.get_task(other_id, row["id"])["category"] is None
        bulk_service.bulk_apply(profile_id, [chain[0]["id"]], "series", "delete")
        assert task_service.get_task(other_id, row["id"]) is not None

    def test_other_profile_ids_are_not_found(self, chain, foreign, profile_id):
        _, row = foreign
        with pytest.raises(NotFoundError):
            bulk_service.bulk_apply(profile_id, [row["id"]], "this", "delete")
