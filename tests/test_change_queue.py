"""Tests for the change queue and its coalescing rules."""

import threading

from folder_sync.change_queue import Change, ChangeQueue, ChangeType


def _change(change_type, path, name=None):
    return Change(change_type=change_type, full_path=path, name=name or path.rsplit("/", 1)[-1])


class TestChangeQueue:
    """ChangeQueue tests."""

    def test_fifo_order(self):
        queue = ChangeQueue()
        first = _change(ChangeType.CREATED, "/in/a")
        second = _change(ChangeType.DELETED, "/in/b")
        queue.put(first)
        queue.put(second)

        assert queue.pop() is first
        assert queue.pop() is second
        assert queue.pop() is None

    def test_put_rejects_when_full(self):
        """Test that the buffer bound drops new notifications."""
        queue = ChangeQueue(max_size=2)

        assert queue.put(_change(ChangeType.CREATED, "/in/a")) is True
        assert queue.put(_change(ChangeType.CREATED, "/in/b")) is True
        assert queue.put(_change(ChangeType.CREATED, "/in/c")) is False
        assert len(queue) == 2

    def test_requeue_ignores_bound(self):
        """Test that a failed change is never lost to the bound."""
        queue = ChangeQueue(max_size=1)
        queue.put(_change(ChangeType.CREATED, "/in/a"))
        retry = _change(ChangeType.MODIFIED, "/in/b")

        queue.requeue(retry)

        assert len(queue) == 2
        assert queue.snapshot()[-1] is retry

    def test_clear(self):
        queue = ChangeQueue()
        queue.put(_change(ChangeType.CREATED, "/in/a"))
        queue.clear()

        assert len(queue) == 0

    def test_concurrent_puts(self):
        """Test that puts from several threads are all recorded."""
        queue = ChangeQueue()

        def producer(n):
            for i in range(200):
                queue.put(_change(ChangeType.MODIFIED, f"/in/{n}/{i}"))

        threads = [threading.Thread(target=producer, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(queue) == 800


class TestCoalescing:
    """Coalescing tests."""

    def test_repeated_modifications_collapse(self):
        """Test that [M(A), M(A), M(A)] leaves a single M(A)."""
        queue = ChangeQueue()
        for _ in range(3):
            queue.put(_change(ChangeType.MODIFIED, "/in/a.txt"))

        removed = queue.coalesce(_change(ChangeType.MODIFIED, "/in/other.txt"))

        assert removed == 2
        remaining = queue.snapshot()
        assert len(remaining) == 1
        assert remaining[0].change_type is ChangeType.MODIFIED
        assert remaining[0].full_path == "/in/a.txt"

    def test_dequeued_modification_collapses_backlog(self):
        """Test the worker path: pop M(A), then coalesce the two left."""
        queue = ChangeQueue()
        for _ in range(3):
            queue.put(_change(ChangeType.MODIFIED, "/in/a.txt"))

        change = queue.pop()
        queue.coalesce(change)

        assert [c.full_path for c in queue.snapshot()] == ["/in/a.txt"]

    def test_modification_keeps_other_paths_and_types_in_order(self):
        queue = ChangeQueue()
        queue.put(_change(ChangeType.MODIFIED, "/in/b"))
        queue.put(_change(ChangeType.DELETED, "/in/c"))
        queue.put(_change(ChangeType.MODIFIED, "/in/a"))
        queue.put(_change(ChangeType.MODIFIED, "/in/b"))
        queue.put(_change(ChangeType.DELETED, "/in/c"))

        queue.coalesce(_change(ChangeType.MODIFIED, "/in/z"))

        assert [(c.change_type, c.full_path) for c in queue.snapshot()] == [
            (ChangeType.MODIFIED, "/in/b"),
            (ChangeType.DELETED, "/in/c"),
            (ChangeType.MODIFIED, "/in/a"),
            (ChangeType.DELETED, "/in/c"),
        ]

    def test_directory_creation_subsumes_nested_changes(self):
        """Test that [C(D), C(D/f), M(D/f)] leaves nothing under D once C(D) runs."""
        queue = ChangeQueue()
        queue.put(_change(ChangeType.CREATED, "/in/D"))
        queue.put(_change(ChangeType.CREATED, "/in/D/f"))
        queue.put(_change(ChangeType.MODIFIED, "/in/D/f"))

        created_dir = queue.pop()
        queue.coalesce(created_dir, is_directory=True)

        assert queue.snapshot() == []

    def test_directory_creation_keeps_unrelated_changes(self):
        """Test that deletions, renames and sibling paths survive."""
        queue = ChangeQueue()
        queue.put(_change(ChangeType.DELETED, "/in/D/old"))
        queue.put(_change(ChangeType.RENAMED, "/in/D/x"))
        queue.put(_change(ChangeType.CREATED, "/in/D2/f"))
        queue.put(_change(ChangeType.MODIFIED, "/in/other"))

        queue.coalesce(_change(ChangeType.CREATED, "/in/D"), is_directory=True)

        assert [c.full_path for c in queue.snapshot()] == [
            "/in/D/old",
            "/in/D/x",
            "/in/D2/f",
            "/in/other",
        ]

    def test_file_creation_drops_its_modifications(self):
        queue = ChangeQueue()
        queue.put(_change(ChangeType.MODIFIED, "/in/f.txt"))
        queue.put(_change(ChangeType.MODIFIED, "/in/g.txt"))
        queue.put(_change(ChangeType.CREATED, "/in/f.txt"))
        queue.put(_change(ChangeType.MODIFIED, "/in/f.txt"))

        removed = queue.coalesce(_change(ChangeType.CREATED, "/in/f.txt"), is_directory=False)

        assert removed == 2
        assert [(c.change_type, c.full_path) for c in queue.snapshot()] == [
            (ChangeType.MODIFIED, "/in/g.txt"),
            (ChangeType.CREATED, "/in/f.txt"),
        ]

    def test_deletion_does_not_coalesce(self):
        queue = ChangeQueue()
        queue.put(_change(ChangeType.MODIFIED, "/in/a"))
        queue.put(_change(ChangeType.MODIFIED, "/in/a"))

        assert queue.coalesce(_change(ChangeType.DELETED, "/in/a")) == 0
        assert len(queue) == 2


def test_change_str_mentions_both_paths_for_renames():
    change = Change(
        change_type=ChangeType.RENAMED,
        full_path="/in/new",
        name="new",
        old_full_path="/in/old",
        old_name="old",
    )

    assert str(change) == "/in/old -> /in/new (renamed)"
