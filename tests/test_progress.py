"""
Tests for download progress tracking.
"""

from queue import Queue

from restyle.downloads import DownloadProgress, DownloadProgressTracker


def drain(queue):
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


class TestDownloadProgress:
    """Percentage math."""

    def test_percentage(self):
        """Percentage is downloaded over total."""
        assert DownloadProgress("t", "o/r", None, 50, 200).percentage == 25

    def test_percentage_unknown_total(self):
        """No total means no percentage."""
        assert DownloadProgress("t", "o/r", None, 50, None).percentage is None

    def test_percentage_is_clamped(self):
        """Percentage never exceeds 100."""
        # Auxiliary files push the byte count past the primary file's size
        assert DownloadProgress("t", "o/r", None, 250, 200).percentage == 100


class TestDownloadProgressTracker:
    """Byte accounting and throttled pushes."""

    def test_bytes_sum_across_files(self):
        """Bytes from every file are summed."""
        tracker = DownloadProgressTracker("t", "o/r")
        tracker.begin_file("info.json")
        tracker.add(10)
        tracker.end_file("info.json")
        tracker.begin_file("model.gguf")
        snapshot = tracker.add(90)
        assert snapshot.downloaded_bytes == 100
        assert snapshot.filename == "model.gguf"
        assert tracker.downloaded == 100

    def test_end_file_clears_filename(self):
        """Ending a file clears the current filename."""
        tracker = DownloadProgressTracker("t", "o/r")
        tracker.begin_file("a")
        assert tracker.end_file("a").filename is None

    def test_set_total_ignores_non_positive(self):
        """Zero or negative totals are ignored."""
        tracker = DownloadProgressTracker("t", "o/r")
        tracker.set_total(0)
        assert tracker.total is None
        tracker.set_total(-5)
        assert tracker.total is None

    def test_offer_total_only_fills_unknown(self):
        """A Content-Length total only fills a missing total."""
        tracker = DownloadProgressTracker("t", "o/r")
        tracker.offer_total(500)
        assert tracker.total == 500
        tracker.offer_total(900)
        assert tracker.total == 500

        seeded = DownloadProgressTracker("t", "o/r")
        seeded.set_total(100)
        seeded.offer_total(900)
        assert seeded.total == 100

    def test_file_boundaries_always_push(self):
        """File start and end always push a message."""
        queue = Queue()
        tracker = DownloadProgressTracker("t", "o/r", queue, throttle_ms=60_000)
        tracker.begin_file("a")
        tracker.end_file("a")
        tracker.begin_file("b")
        kinds = [kind for kind, _ in drain(queue)]
        assert kinds == ['download_progress'] * 3

    def test_block_updates_are_throttled(self):
        """Block updates inside the interval are dropped."""
        queue = Queue()
        tracker = DownloadProgressTracker("t", "o/r", queue, throttle_ms=60_000)
        tracker.begin_file("a")
        drain(queue)
        for _ in range(50):
            tracker.add(1)
        assert drain(queue) == []
        assert tracker.downloaded == 50

    def test_unthrottled_pushes_every_block(self):
        """A zero interval pushes every block."""
        queue = Queue()
        tracker = DownloadProgressTracker("t", "o/r", queue, throttle_ms=0)
        for _ in range(5):
            tracker.add(1)
        payloads = [p for _, p in drain(queue)]
        assert [p.downloaded_bytes for p in payloads] == [1, 2, 3, 4, 5]
