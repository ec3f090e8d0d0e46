from __future__ import annotations

import threading
import time

import pytest

from emotion_detector import EmotionCandidate, EmotionDetector, FaceDetection, dominant_emotion
from emotion_log.emotion_log_entry import Emotion
from emotion_log.log_store import EmotionLogStore
from logging_gate import LoggingGate


class FakeAnalyzer:
    def __init__(self, faces=None, is_ready=True):
        self.faces = faces if faces is not None else []
        self.is_ready = is_ready
        self.calls = 0
        self.on_classify = None

    def classify_frame(self, frame):
        self.calls += 1
        if self.on_classify:
            self.on_classify()
        if isinstance(self.faces, Exception):
            raise self.faces
        return self.faces


class FakeSource:
    def __init__(self, is_active=True):
        self.is_active = is_active

    def read_frame(self):
        return "frame"


class RecordingGate:
    def __init__(self):
        self.offers = []
        self.last_entry = None

    def offer(self, emotion, confidence):
        self.offers.append((emotion, confidence))


def _face(**expressions):
    return FaceDetection(box=(10, 20, 30, 40), expressions=expressions)


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


def test_dominant_emotion_picks_highest():
    assert dominant_emotion({"happy": 0.1, "sad": 0.7, "neutral": 0.2}) == (Emotion.SAD, 0.7)


def test_dominant_emotion_tie_goes_to_declaration_order():
    assert dominant_emotion({"neutral": 0.5, "angry": 0.5}) == (Emotion.ANGRY, 0.5)
    assert dominant_emotion({"disgusted": 0.4, "happy": 0.4, "sad": 0.2}) == (Emotion.HAPPY, 0.4)


def test_dominant_emotion_ignores_unknown_labels():
    assert dominant_emotion({"contempt": 0.9, "fearful": 0.1}) == (Emotion.FEARFUL, 0.1)
    assert dominant_emotion({}) is None
    assert dominant_emotion({"contempt": 0.9}) is None


def test_sample_offers_first_face_to_gate():
    gate = RecordingGate()
    analyzer = FakeAnalyzer([_face(happy=0.8, sad=0.2), _face(angry=0.99)])
    detector = EmotionDetector(analyzer, FakeSource(), gate)

    candidate = detector.sample_once()
    assert candidate == EmotionCandidate(Emotion.HAPPY, 0.8, (10, 20, 30, 40))
    assert gate.offers == [(Emotion.HAPPY, 0.8)]
    frame, current, _ = detector.get_latest_data()
    assert frame == "frame"
    assert current == candidate


def test_no_face_clears_current_candidate():
    analyzer = FakeAnalyzer([_face(happy=0.9)])
    gate = RecordingGate()
    detector = EmotionDetector(analyzer, FakeSource(), gate)
    detector.sample_once()

    analyzer.faces = []
    assert detector.sample_once() is None
    assert detector.current_candidate is None
    assert len(gate.offers) == 1


def test_detector_failure_drops_sample():
    analyzer = FakeAnalyzer(RuntimeError("inference failed"))
    gate = RecordingGate()
    detector = EmotionDetector(analyzer, FakeSource(), gate)
    assert detector.sample_once() is None
    assert gate.offers == []

    analyzer.faces = [_face(surprised=0.9)]
    assert detector.sample_once().emotion is Emotion.SURPRISED


@pytest.mark.parametrize("ready, active", [(False, True), (True, False)])
def test_sampling_suspended_until_ready_and_active(ready, active):
    analyzer = FakeAnalyzer([_face(happy=0.9)], is_ready=ready)
    detector = EmotionDetector(analyzer, FakeSource(is_active=active), RecordingGate())
    detector.current_candidate = EmotionCandidate(Emotion.SAD, 0.9)

    assert detector.sample_once() is None
    assert analyzer.calls == 0
    assert detector.current_candidate is None


def test_result_finishing_after_stop_is_discarded():
    analyzer = FakeAnalyzer([_face(happy=0.9)])
    gate = RecordingGate()
    detector = EmotionDetector(analyzer, FakeSource(), gate)
    analyzer.on_classify = detector.stop

    assert detector.sample_once() is None
    assert gate.offers == []
    assert detector.current_candidate is None


def test_capture_going_inactive_mid_sample_discards_result():
    source = FakeSource()
    analyzer = FakeAnalyzer([_face(happy=0.9)])
    gate = RecordingGate()
    detector = EmotionDetector(analyzer, source, gate)

    def deactivate():
        source.is_active = False

    analyzer.on_classify = deactivate
    assert detector.sample_once() is None
    assert gate.offers == []


def test_loop_logs_through_gate_and_stops(db_path):
    store = EmotionLogStore(db_path)
    gate = LoggingGate(store)
    analyzer = FakeAnalyzer([_face(happy=0.9)])
    detector = EmotionDetector(analyzer, FakeSource(), gate, sample_interval=0.01)

    detector.start()
    try:
        assert _wait_for(lambda: analyzer.calls >= 5)
    finally:
        detector.stop()

    assert not detector.is_running
    # same emotion within the debounce window: one entry only
    assert [e.emotion for e in store.load()] == [Emotion.HAPPY]
    calls = analyzer.calls
    time.sleep(0.05)
    assert analyzer.calls == calls
    assert detector.get_latest_data()[1] is None


def test_start_is_idempotent_and_restartable():
    analyzer = FakeAnalyzer([])
    detector = EmotionDetector(analyzer, FakeSource(), RecordingGate(), sample_interval=0.01)
    detector.start()
    thread = detector.sampling_thread
    detector.start()
    assert detector.sampling_thread is thread
    detector.stop()

    detector.start()
    assert _wait_for(lambda: analyzer.calls > 0)
    detector.stop()
    assert not detector.is_running


def test_dominant_emotion_skips_nan_and_clamps():
    assert dominant_emotion({"happy": float("nan"), "sad": 0.9}) == (Emotion.SAD, 0.9)
    assert dominant_emotion({"happy": 1.0000001, "sad": 0.2}) == (Emotion.HAPPY, 1.0)
    assert dominant_emotion({"happy": float("inf")}) is None
    assert dominant_emotion({"angry": -0.01, "neutral": -0.5}) == (Emotion.ANGRY, 0.0)


@pytest.mark.parametrize(
    "expressions, expected",
    [
        ({"happy": 1.0000001}, Emotion.HAPPY),
        ({"happy": float("nan"), "sad": 0.9}, Emotion.SAD),
    ],
)
def test_loop_survives_odd_detector_values(db_path, expressions, expected):
    store = EmotionLogStore(db_path)
    analyzer = FakeAnalyzer([_face(**expressions)])
    detector = EmotionDetector(analyzer, FakeSource(), LoggingGate(store), sample_interval=0.01)

    detector.start()
    try:
        assert _wait_for(lambda: analyzer.calls >= 5)
        assert detector.is_running
    finally:
        detector.stop()
    assert [e.emotion for e in store.load()] == [expected]


def test_loop_survives_unexpected_gate_errors():
    class ExplodingGate(RecordingGate):
        def offer(self, emotion, confidence):
            super().offer(emotion, confidence)
            raise RuntimeError("gate broke")

    gate = ExplodingGate()
    detector = EmotionDetector(FakeAnalyzer([_face(happy=0.9)]), FakeSource(), gate, sample_interval=0.01)
    detector.start()
    try:
        assert _wait_for(lambda: len(gate.offers) >= 3)
        assert detector.is_running
    finally:
        detector.stop()


def test_restart_after_slow_stop_runs_a_single_worker():
    release = threading.Event()
    blocked = threading.Event()
    analyzer = FakeAnalyzer([_face(happy=0.9)])

    def block_first_call():
        if analyzer.calls == 1:
            blocked.set()
            release.wait(2.0)

    analyzer.on_classify = block_first_call
    gate = RecordingGate()
    detector = EmotionDetector(analyzer, FakeSource(), gate, sample_interval=0.01)

    detector.start()
    assert blocked.wait(2.0)
    old_thread = detector.sampling_thread
    detector.stop(timeout=0.05)
    assert old_thread.is_alive()

    detector.start()
    release.set()
    old_thread.join(2.0)
    assert not old_thread.is_alive()

    calls = analyzer.calls
    assert _wait_for(lambda: analyzer.calls > calls + 3)
    workers = [t for t in threading.enumerate() if t.name == "emotion-sampling" and t.is_alive()]
    assert workers == [detector.sampling_thread]
    detector.stop()
    # the blocked sample finished after stop and was discarded
    assert all(offer == (Emotion.HAPPY, 0.9) for offer in gate.offers)
