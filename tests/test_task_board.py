"""
Task board ordering tests.

Covers:
  - append on create, reorder within a column, move across columns
  - clamping of out-of-range positions
  - gap closing on delete
  - the dense-position invariant under a random operation sequence
  - atomicity: a failed transaction leaves every column untouched
"""

import random

import pytest

from cutroom.core.exceptions import NotFoundError, ValidationError
from cutroom.models import db
from cutroom.models.task import TASK_STATUSES, Task
from cutroom.services import task_board
from cutroom.utils.helpers import unit_of_work


def _move(task_id, status, position):
    with unit_of_work():
        return task_board.move(task_id, status, position)


def _titles(project_id, status):
    return [
        t.title for t in Task.query.filter_by(project_id=project_id, status=status).order_by(Task.position)
    ]


@pytest.fixture()
def board(make_user, make_project, make_task):
    manager = make_user(role="manager")
    project = make_project(manager)
    todo = [make_task(project, manager, title=f"T{i}") for i in range(3)]
    done = [make_task(project, manager, status="done", title=f"D{i}") for i in range(2)]
    return project, todo, done


# ═══════════════════════════════════════════════════════════════
# Placement
# ═══════════════════════════════════════════════════════════════

class TestPlace:
    def test_new_tasks_append_to_their_column(self, board):
        project, todo, done = board
        assert [db.session.get(Task, t.id).position for t in todo] == [0, 1, 2]
        assert [db.session.get(Task, t.id).position for t in done] == [0, 1]

    def test_invalid_status_rejected(self, make_user, make_project):
        manager = make_user(role="manager")
        project = make_project(manager)
        with pytest.raises(ValidationError):
            with unit_of_work():
                task_board.place(Task(project_id=project.id, title="x", status="blocked", reporter_id=manager.id))


# ═══════════════════════════════════════════════════════════════
# Moves
# ═══════════════════════════════════════════════════════════════

class TestMove:
    def test_cross_column_move(self, board):
        """Moving the head of todo to the head of done renumbers both columns."""
        project, todo, done = board
        task, old_status, old_position = _move(todo[0].id, "done", 0)

        assert (old_status, old_position) == ("todo", 0)
        assert (task.status, task.position) == ("done", 0)
        assert _titles(project.id, "todo") == ["T1", "T2"]
        assert _titles(project.id, "done") == ["T0", "D0", "D1"]
        assert task_board.column_positions(project.id, "todo") == [0, 1]
        assert task_board.column_positions(project.id, "done") == [0, 1, 2]

    def test_reorder_down_within_column(self, board):
        project, todo, _ = board
        _move(todo[0].id, "todo", 2)
        assert _titles(project.id, "todo") == ["T1", "T2", "T0"]
        assert task_board.column_positions(project.id, "todo") == [0, 1, 2]

    def test_reorder_up_within_column(self, board):
        project, todo, _ = board
        _move(todo[2].id, "todo", 0)
        assert _titles(project.id, "todo") == ["T2", "T0", "T1"]

    def test_same_place_is_a_no_op(self, board):
        project, todo, _ = board
        task, old_status, old_position = _move(todo[1].id, "todo", 1)
        assert (task.status, task.position) == (old_status, old_position) == ("todo", 1)
        assert _titles(project.id, "todo") == ["T0", "T1", "T2"]

    def test_position_past_end_is_clamped(self, board):
        project, todo, done = board
        task, _, _ = _move(todo[0].id, "done", 99)
        assert task.position == 2
        assert _titles(project.id, "done") == ["D0", "D1", "T0"]

        task, _, _ = _move(todo[1].id, "todo", 50)
        assert task.position == 1
        assert _titles(project.id, "todo") == ["T2", "T1"]

    def test_move_into_empty_column(self, board):
        project, todo, _ = board
        task, _, _ = _move(todo[1].id, "review", 3)
        assert (task.status, task.position) == ("review", 0)
        assert _titles(project.id, "todo") == ["T0", "T2"]

    def test_unknown_task(self):
        with pytest.raises(NotFoundError):
            _move(987654, "todo", 0)

    @pytest.mark.parametrize("position", [-1, "2", 1.5, True, None])
    def test_invalid_position(self, board, position):
        _, todo, _ = board
        with pytest.raises(ValidationError):
            _move(todo[0].id, "todo", position)

    def test_invalid_status(self, board):
        _, todo, _ = board
        with pytest.raises(ValidationError):
            _move(todo[0].id, "blocked", 0)

    def test_failed_transaction_leaves_columns_untouched(self, board):
        project, todo, _ = board
        with pytest.raises(RuntimeError):
            with unit_of_work():
                task_board.move(todo[0].id, "done", 0)
                raise RuntimeError("boom")

        assert _titles(project.id, "todo") == ["T0", "T1", "T2"]
        assert _titles(project.id, "done") == ["D0", "D1"]


# ═══════════════════════════════════════════════════════════════
# Removal
# ═══════════════════════════════════════════════════════════════

class TestRemove:
    def test_delete_closes_the_gap(self, board):
        project, todo, _ = board
        with unit_of_work():
            snapshot = task_board.remove(todo[1].id)

        assert snapshot["title"] == "T1"
        assert _titles(project.id, "todo") == ["T0", "T2"]
        assert task_board.column_positions(project.id, "todo") == [0, 1]

    def test_delete_unknown_task(self):
        with pytest.raises(NotFoundError):
            with unit_of_work():
                task_board.remove(424242)


# ═══════════════════════════════════════════════════════════════
# Invariant
# ═══════════════════════════════════════════════════════════════

class TestDensePositions:
    def test_random_sequence_keeps_columns_dense(self, make_user, make_project, make_task):
        manager = make_user(role="manager")
        project = make_project(manager)
        rng = random.Random(1337)
        ids = [make_task(project, manager, status=rng.choice(TASK_STATUSES)).id for _ in range(12)]

        for step in range(60):
            if rng.random() < 0.15 and len(ids) > 3:
                victim = ids.pop(rng.randrange(len(ids)))
                with unit_of_work():
                    task_board.remove(victim)
            elif rng.random() < 0.1:
                ids.append(make_task(project, manager, status=rng.choice(TASK_STATUSES)).id)
            else:
                _move(rng.choice(ids), rng.choice(TASK_STATUSES), rng.randrange(0, 8))

            for status in TASK_STATUSES:
                positions = task_board.column_positions(project.id, status)
                assert positions == list(range(len(positions))), f"step {step}: {status} {positions}"

        assert sum(task_board.column_count(project.id, s) for s in TASK_STATUSES) == len(ids)

    def test_board_view_is_ordered(self, board):
        project, _, _ = board
        columns = task_board.board(project.id)
        assert set(columns) == set(TASK_STATUSES)
        assert [t["title"] for t in columns["todo"]] == ["T0", "T1", "T2"]
        assert columns["review"] == []
        assert all(t["subtask_count"] == 0 for t in columns["todo"])

    def test_board_view_nests_subtasks(self, board, make_user, make_task):
        project, todo, _ = board
        manager = make_user(role="manager")
        first = make_task(project, manager, title="S-first", parent=todo[1])
        make_task(project, manager, title="S-done", status="done", parent=todo[1])

        columns = task_board.board(project.id)
        parent = next(t for t in columns["todo"] if t["id"] == todo[1].id)
        assert [s["title"] for s in parent["subtasks"]] == ["S-done", "S-first"]
        assert parent["subtask_count"] == 2
        assert [t["title"] for t in columns["todo"]] == ["T0", "T1", "T2", "S-first"]
        nested = parent["subtasks"][1]
        assert (nested["id"], nested["status"], nested["position"]) == (first.id, "todo", 3)
