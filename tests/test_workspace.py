from goal_planner.core.errors import StorageError, ValidationError
from goal_planner.core.service.mutations import MutationService
from goal_planner.core.service.workspace import GoalWorkspace
from goal_planner.core.storage.memory import InMemoryStorage


class FlakyStorage(InMemoryStorage):
    def __init__(self):
        super().__init__()
        self.fail_update_task = False

    def update_task(self, user_id, task):
        if self.fail_update_task:
            raise RuntimeError("disk unavailable")
        return super().update_task(user_id, task)


def _workspace(storage=None):
    svc = MutationService(storage or InMemoryStorage(), user_id="alice")
    return svc, GoalWorkspace(svc)


def test_add_task_chains_to_previous_sibling():
    _, ws = _workspace()
    g = ws.add_goal("Read more")
    m = ws.add_milestone(g.id, "January")
    a = ws.add_task(m.id, "Pick a book")
    b = ws.add_task(m.id, "Read chapter one")
    free = ws.add_task(m.id, "Join a club", depends_on=[])

    assert b.depends_on == (a.id,)
    assert free.depends_on == ()
    assert [t.id for t in ws.available_tasks(g.id)] == [a.id, free.id]
    assert ws.is_task_available(a, g.id)
    assert not ws.is_task_available(b, g.id)


def test_toggle_updates_cache_and_progress():
    _, ws = _workspace()
    g = ws.add_goal("G")
    m = ws.add_milestone(g.id, "M")
    a = ws.add_task(m.id, "A")
    b = ws.add_task(m.id, "B")

    ws.toggle_task(a.id)
    assert [t.id for t in ws.available_tasks(g.id)] == [b.id]
    p = ws.progress(g.id)
    assert (p.completed, p.total) == (1, 2)


def test_failed_toggle_leaves_cache_unchanged():
    storage = FlakyStorage()
    _, ws = _workspace(storage)
    g = ws.add_goal("G")
    m = ws.add_milestone(g.id, "M")
    a = ws.add_task(m.id, "A")

    storage.fail_update_task = True
    try:
        ws.toggle_task(a.id)
        assert False, "expected StorageError"
    except StorageError:
        pass
    assert not ws.snapshot(g.id).task_by_id()[a.id].is_completed
    assert [t.id for t in ws.available_tasks(g.id)] == [a.id]


def test_rejected_add_leaves_cache_unchanged():
    _, ws = _workspace()
    g = ws.add_goal("G")
    m = ws.add_milestone(g.id, "M")
    try:
        ws.add_task(m.id, "  ")
        assert False, "expected ValidationError"
    except ValidationError:
        pass
    assert ws.tasks_by_milestone[m.id] == []


def test_delete_task_refreshes_dependents():
    _, ws = _workspace()
    g = ws.add_goal("G")
    m = ws.add_milestone(g.id, "M")
    a = ws.add_task(m.id, "A")
    b = ws.add_task(m.id, "B")

    ws.delete_task(a.id)
    cached = ws.snapshot(g.id).task_by_id()
    assert a.id not in cached
    assert cached[b.id].depends_on == ()


def test_delete_goal_and_milestone_drop_cached_rows():
    _, ws = _workspace()
    g = ws.add_goal("G")
    m = ws.add_milestone(g.id, "M")
    ws.add_task(m.id, "A")

    ws.delete_milestone(m.id)
    assert ws.milestones_by_goal[g.id] == []
    assert m.id not in ws.tasks_by_milestone

    ws.delete_goal(g.id)
    assert ws.goals == []
    assert ws.all_available_tasks() == []


def test_refresh_picks_up_writes_made_elsewhere():
    svc, ws = _workspace()
    g = svc.create_goal("From the assistant")
    m = svc.create_milestone(g.id, "M")
    svc.create_task(m.id, "T")

    ws.refresh()
    assert [x.id for x in ws.goals] == [g.id]
    items = ws.all_available_tasks()
    assert [i.task.title for i in items] == ["T"]

    svc.delete_goal(g.id)
    ws.refresh_goal(g.id)
    assert ws.goals == []
