from __future__ import annotations

import threading

from support.progress import CountingObserver, LoggingObserver, NullObserver, SyncObserver


class _Recorder(SyncObserver):
    def __init__(self):
        self.events = []

    def entity_completed(self, entity_id, status):
        self.events.append((entity_id, status))


def test_counting_observer_tallies_and_forwards():
    recorder = _Recorder()
    observer = CountingObserver(forward_to=recorder)

    observer.document_acquired("1", "a.pdf", "fetch_new")
    observer.document_merged("1", "a.pdf", True)
    observer.document_merged("1", "b.pdf", False)
    observer.entity_completed("1", "successful")
    observer.entity_completed("2", "crawl_failed")

    snap = observer.snapshot()
    assert snap.documents_acquired == 1
    assert snap.documents_merged == 1
    assert snap.documents_failed == 1
    assert snap.entities_completed == 2
    assert snap.statuses == {"successful": 1, "crawl_failed": 1}
    assert recorder.events == [("1", "successful"), ("2", "crawl_failed")]


def test_counting_observer_is_thread_safe():
    observer = CountingObserver()

    def _work():
        for _ in range(500):
            observer.document_merged("1", "a.pdf", True)

    threads = [threading.Thread(target=_work) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert observer.snapshot().documents_merged == 4000


def test_default_observers_accept_every_checkpoint():
    for observer in (NullObserver(), LoggingObserver()):
        observer.document_acquired("1", "a.pdf", "skip")
        observer.document_merged("1", "a.pdf", False)
        observer.entity_completed("1", "scan_failed")
