# tests/test_views.py

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import views
from schemas import is_overdue

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def test_overdue_classification():
    past = (NOW - timedelta(days=1)).isoformat()
    future = (NOW + timedelta(days=1)).isoformat()
    assert is_overdue({"status": "todo", "due_date": past}, NOW)
    assert is_overdue({"status": "in_progress", "due_date": past}, NOW)
    assert not is_overdue({"status": "completed", "due_date": past}, NOW)
    assert not is_overdue({"status": "todo", "due_date": future}, NOW)
    assert not is_overdue({"status": "todo", "due_date": None}, NOW)


def test_format_due():
    task = {"status": "todo", "due_date": "2025-03-04T09:00:00+00:00"}
    assert views.format_due(task, NOW) == "Mar 4, 2025 (Overdue)"
    assert views.format_due({**task, "status": "completed"}, NOW) == "Mar 4, 2025"
    assert views.format_due({"status": "todo"}, NOW) == ""


def test_group_by_status():
    tasks = [{"id": "1", "status": "todo"}, {"id": "2", "status": "completed"}, {"id": "3", "status": "todo"}]
    groups = views.group_by_status(tasks)
    assert [t["id"] for t in groups["todo"]] == ["1", "3"]
    assert groups["in_progress"] == []
    assert [t["id"] for t in groups["completed"]] == ["2"]


def test_task_badges():
    task = {"priority": "high", "category": "Work", "status": "todo",
            "due_date": "2025-03-01T00:00:00Z", "task_shares": [{"id": "s"}]}
    assert views.task_badges(task, now=NOW) == ["high", "Work", "Overdue", "Shared"]
    assert views.task_badges({"priority": "low"}, shared_with_me=True, now=NOW) == ["low", "Shared with you"]


def test_splice_and_drop():
    tasks = [{"id": "1", "title": "a"}, {"id": "2", "title": "b"}]
    spliced = views.splice_task(tasks, {"id": "2", "title": "B"})
    assert [t["title"] for t in spliced] == ["a", "B"]
    assert views.drop_task(tasks, "1") == [{"id": "2", "title": "b"}]


def test_confirm_dialog():
    dialog = views.ConfirmDialog(title="Delete task", message="Sure?", confirm_text="Delete")
    shown = []
    assert dialog.ask(lambda prompt: "y", shown.append)
    assert shown == ["Delete task", "Sure?"]
    assert not dialog.ask(lambda prompt: "", shown.append)
    assert not dialog.ask(lambda prompt: "nope", shown.append)

    def eof(prompt):
        raise EOFError

    assert not dialog.ask(eof, shown.append)


def test_search_box_debounces():
    calls = []
    done = threading.Event()
    results = []

    def search(q):
        calls.append(q)
        return [{"email": f"{q}@example.com"}]

    def on_results(users):
        results.append(users)
        done.set()

    box = views.SearchBox(search, on_results, delay=0.05)
    box.set_query("a")
    box.set_query("al")
    box.set_query("ali")
    assert done.wait(2.0)
    assert calls == ["ali"]
    assert results == [[{"email": "ali@example.com"}]]


def test_search_box_blank_query_skips_search():
    calls = []
    done = threading.Event()
    results = []

    def on_results(users):
        results.append(users)
        done.set()

    box = views.SearchBox(calls.append, on_results, delay=0.01)
    box.set_query("   ")
    assert done.wait(2.0)
    assert calls == []
    assert results == [[]]


def test_search_box_drops_results_for_superseded_query():
    first_started = threading.Event()
    release_first = threading.Event()
    second_done = threading.Event()
    results = []

    def search(q):
        if q == "al":
            first_started.set()
            release_first.wait(2.0)
        return [{"email": f"{q}@example.com"}]

    def on_results(users):
        results.append(users)
        if users and users[0]["email"] == "bob@example.com":
            second_done.set()

    box = views.SearchBox(search, on_results, delay=0.01)
    box.set_query("al")
    assert first_started.wait(2.0)
    first = box._timer
    box.set_query("bob")
    assert second_done.wait(2.0)
    release_first.set()
    first.join(2.0)
    assert not first.is_alive()
    assert results == [[{"email": "bob@example.com"}]]


def test_render_dashboard_columns():
    owned = [{"id": "1", "title": "<script>", "status": "todo", "priority": "low"}]
    shared = [{"id": "2", "title": "Shared one", "status": "completed", "priority": "high"}]
    page = views.render_dashboard(owned, shared, "me@example.com", NOW)
    assert "To Do (1)" in page
    assert "Completed (1)" in page
    assert "&lt;script&gt;" in page
    assert "Shared with you" in page
