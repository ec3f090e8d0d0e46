# emotion_detector.py
import argparse
import logging
import math
import threading
import time
from dataclasses import dataclass

from emotion_log.emotion_log_entry import Emotion

logger = logging.getLogger(__name__)

SAMPLE_INTERVAL = 0.1  # 10 samples per second


@dataclass
class FaceDetection:
    """One detected face: bounding box (x, y, width, height) and label -> confidence map."""
    box: tuple
    expressions: dict


@dataclass(frozen=True)
class EmotionCandidate:
    emotion: Emotion
    confidence: float
    box: tuple = None


def dominant_emotion(expressions):
    """
    Pick the label with the highest confidence.

    Labels are scanned in Emotion declaration order and only a strictly
    greater value replaces the current best, so ties go to the label declared
    first. Unknown labels and non-finite values are ignored; the rest are
    clamped to [0, 1].

    Returns:
        (Emotion, float) or None if no known label is present
    """
    best = None
    best_confidence = None
    for emotion in Emotion:
        confidence = expressions.get(emotion.value)
        if confidence is None:
            continue
        confidence = float(confidence)
        if not math.isfinite(confidence):
            continue
        confidence = min(max(confidence, 0.0), 1.0)
        if best is None or confidence > best_confidence:
            best, best_confidence = emotion, confidence
    if best is None:
        return None
    return best, best_confidence


class EmotionDetector:
    """
    Samples the detector at a fixed cadence on a background thread and feeds
    the dominant emotion of the first face to the logging gate.

    Sampling is suspended while the model is not ready or the capture source
    is inactive. Results of a sample that completes after stop() are dropped.
    """
    def __init__(self, face_analyzer, capture_source, logging_gate, sample_interval=SAMPLE_INTERVAL):
        # --- Components ---
        self.face_analyzer = face_analyzer
        self.capture_source = capture_source
        self.logging_gate = logging_gate
        self.sample_interval = sample_interval

        # --- Shared Data ---
        self.latest_frame = None
        self.current_candidate = None
        self.frame_lock = threading.Lock()
        self.emotion_lock = threading.Lock()

        # --- Thread Control ---
        self.stop_event = threading.Event()
        self.sampling_thread = None
        self._generation = 0
        self._generation_lock = threading.Lock()
        self._stale_thread = None

    @property
    def is_running(self):
        return self.sampling_thread is not None and self.sampling_thread.is_alive()

    def _is_live(self):
        return bool(self.face_analyzer.is_ready) and bool(self.capture_source.is_active)

    def _current_generation(self):
        with self._generation_lock:
            return self._generation

    def _set_current(self, candidate):
        with self.emotion_lock:
            self.current_candidate = candidate

    def sample_once(self):
        """Run one sampling tick. Returns the candidate offered to the gate, or None."""
        generation = self._current_generation()
        if not self._is_live():
            self._set_current(None)
            return None

        try:
            frame = self.capture_source.read_frame()
            faces = self.face_analyzer.classify_frame(frame) if frame is not None else []
        except Exception as e:
            logger.warning("Dropped sample, detector failed: %s", e)
            return None

        # stopped or suspended while the detector was running
        if generation != self._current_generation() or not self._is_live():
            logger.debug("Discarded a sample that finished after stop")
            return None

        with self.frame_lock:
            self.latest_frame = frame

        result = dominant_emotion(faces[0].expressions) if faces else None
        if result is None:
            self._set_current(None)
            return None

        emotion, confidence = result
        candidate = EmotionCandidate(emotion=emotion, confidence=confidence, box=faces[0].box)
        self._set_current(candidate)
        self.logging_gate.offer(emotion, confidence)
        return candidate

    def _sampling_loop(self, stop_event):
        logger.info("Sampling loop started (every %.3fs)", self.sample_interval)
        while not stop_event.is_set():
            started = time.monotonic()
            try:
                self.sample_once()
            except Exception:
                logger.exception("Sampling tick failed")
            # an overrunning tick is followed immediately by the next; missed ticks are not replayed
            remaining = self.sample_interval - (time.monotonic() - started)
            if remaining > 0:
                stop_event.wait(remaining)
        logger.info("Sampling loop stopped")

    def get_latest_data(self):
        """Latest frame, current raw candidate and last confirmed entry."""
        with self.frame_lock:
            frame = self.latest_frame
        with self.emotion_lock:
            candidate = self.current_candidate
        return frame, candidate, self.logging_gate.last_entry

    # --- Control ---
    def start(self):
        if self.is_running:
            return
        if self._stale_thread and self._stale_thread.is_alive():
            # its own stop event is set, so it exits after its pending sample
            logger.warning("Previous sampling thread is still finishing a sample")
        # each worker gets its own event so a new start() cannot revive an old thread
        self.stop_event = threading.Event()
        self.sampling_thread = threading.Thread(
            target=self._sampling_loop, args=(self.stop_event,), name="emotion-sampling", daemon=True
        )
        self.sampling_thread.start()

    def stop(self, timeout=None):
        """Stop sampling. Nothing a pending detector call returns is applied afterwards."""
        with self._generation_lock:
            self._generation += 1
        self.stop_event.set()

        thread = self.sampling_thread
        self.sampling_thread = None
        if thread and thread.is_alive():
            thread.join(timeout=timeout if timeout is not None else max(2.0, self.sample_interval * 2))
            if thread.is_alive():
                logger.warning("Sampling thread did not stop in time; its result will be discarded")
                self._stale_thread = thread
        self._set_current(None)


def build_arg_parser():
    ap = argparse.ArgumentParser(description="Track emotions from the webcam and keep a local history.")
    ap.add_argument("--config", default="config/emotion_tracker.yaml", help="YAML config file")
    ap.add_argument("--db-path", dest="db_path")
    ap.add_argument("--model-path", dest="model_path")
    ap.add_argument("--camera-index", dest="camera_index", type=int)
    ap.add_argument("--sample-interval", dest="sample_interval", type=float)
    ap.add_argument("--log-level", dest="log_level")
    return ap


def main(argv=None):
    from ttkbootstrap import Style

    from capture_source import WebcamSource
    from emotion_log.log_store import EmotionLogStore
    from face_analyzer import FaceAnalyzer
    from logging_gate import LoggingGate
    from tracker_config import apply_overrides, load_config
    from ui_controller import EmotionGUI

    args = build_arg_parser().parse_args(argv)
    cfg = apply_overrides(load_config(args.config), vars(args))
    logging.basicConfig(
        level=getattr(logging, str(cfg.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    store = None
    detector = None
    face_analyzer = None
    capture_source = None
    try:
        store = EmotionLogStore(
            cfg.db_path,
            key=cfg.storage_key,
            quota_bytes=cfg.quota_bytes,
            watch_interval=cfg.watch_interval,
        )
        store.start_watching()

        face_analyzer = FaceAnalyzer(model_path=cfg.model_path)
        face_analyzer.load()
        capture_source = WebcamSource(camera_index=cfg.camera_index)
        gate = LoggingGate(store, confidence_threshold=cfg.confidence_threshold, debounce_ms=cfg.debounce_ms)
        detector = EmotionDetector(face_analyzer, capture_source, gate, sample_interval=cfg.sample_interval)

        style = Style("superhero")
        root = style.master
        gui = EmotionGUI(root, store, detector, capture_source, recent_window_hours=cfg.recent_window_hours)
        detector.start()

        def update_gui():
            gui.refresh()
            root.after(30, update_gui)

        update_gui()
        root.mainloop()
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except (ValueError, TypeError, RuntimeError, IOError) as e:
        logger.error("Emotion tracker failed: %s", e)
        return 1
    finally:
        if detector:
            detector.stop()
        if capture_source:
            capture_source.release()
        if face_analyzer:
            face_analyzer.close()
        if store:
            store.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
