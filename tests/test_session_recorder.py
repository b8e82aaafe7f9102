import json

from adaptive_handtracker.performance_tracker import PerformanceTracker, STAGE_HAND_DETECTION
from adaptive_handtracker.session_recorder import SessionRecorder

from conftest import make_hand


def read_lines(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def make_sample():
    perf = PerformanceTracker()
    perf.end_frame(now=1.0)
    perf.record(STAGE_HAND_DETECTION, 8.0)
    return perf.end_frame(now=1.05)


def test_full_batch_is_written(tmp_path):
    recorder = SessionRecorder("abc", tmp_path, batch_size=3)
    sample = make_sample()
    for i in range(3):
        recorder.record(i + 1, [make_hand()], sample)

    assert recorder.path == tmp_path / "session_abc.jsonl"
    assert recorder.written_count == 3
    assert recorder.pending_count == 0

    entries = read_lines(recorder.path)
    assert [e["frameNumber"] for e in entries] == [1, 2, 3]
    entry = entries[0]
    assert set(entry) == {"sessionId", "frameNumber", "timestamp", "landmarks",
                          "connections", "performanceMetrics", "averageFps"}
    assert entry["sessionId"] == "abc"
    assert len(entry["landmarks"]) == 1
    assert len(entry["landmarks"][0]["landmarks"]) == 21
    assert [0, 1] in entry["connections"]
    assert entry["performanceMetrics"]["stages"]["handDetection"] == 8.0
    assert entry["averageFps"] == sample.estimated_fps


def test_partial_batch_waits_for_flush(tmp_path):
    recorder = SessionRecorder("s1", tmp_path, batch_size=30)
    recorder.record(1, [], None)
    assert not recorder.path.exists()
    assert recorder.pending_count == 1

    recorder.close()
    entries = read_lines(recorder.path)
    assert entries[0]["landmarks"] == []
    assert entries[0]["performanceMetrics"] is None
    assert entries[0]["averageFps"] is None


def test_batches_are_appended(tmp_path):
    recorder = SessionRecorder("s2", tmp_path, batch_size=2)
    for i in range(5):
        recorder.record(i, [make_hand()])
    recorder.close()
    assert len(read_lines(recorder.path)) == 5


def test_closed_recorder_ignores_records(tmp_path):
    recorder = SessionRecorder("s3", tmp_path, batch_size=1)
    recorder.close()
    recorder.record(1, [make_hand()])
    assert recorder.written_count == 0
    assert not recorder.path.exists()


def test_write_failure_is_swallowed(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")

    recorder = SessionRecorder("s4", blocker / "sessions", batch_size=2)
    recorder.record(1, [make_hand()])
    recorder.record(2, [make_hand()])  # flush fails here

    assert recorder.written_count == 0
    assert recorder.dropped_count == 2
    assert recorder.pending_count == 0

    recorder.record(3, [make_hand()])
    recorder.close()
    assert recorder.dropped_count == 3
