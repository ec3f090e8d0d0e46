import logging
import time

import cv2
import ttkbootstrap as ttk
from PIL import Image, ImageDraw, ImageFont, ImageTk
from ttkbootstrap.constants import DANGER, INFO, PRIMARY, SECONDARY, SUCCESS, WARNING

from emotion_log.emotion_log_entry import Emotion
from emotion_log.log_store import StorageWriteError
from emotion_stats import compute_stats, emotion_percentages, recent_entries
from time_of_day import TimeOfDay

logger = logging.getLogger(__name__)

# history is re-rendered at least this often so old entries leave the recent table
HISTORY_REFRESH_SECONDS = 60


def history_refresh_due(dirty, last_render, now, period=HISTORY_REFRESH_SECONDS):
    return dirty or now - last_render >= period


COLOR_MAP = {
    Emotion.HAPPY: WARNING,
    Emotion.SAD: PRIMARY,
    Emotion.ANGRY: DANGER,
    Emotion.FEARFUL: INFO,
    Emotion.SURPRISED: SUCCESS,
    Emotion.DISGUSTED: SUCCESS,
    Emotion.NEUTRAL: SECONDARY,
}


class EmotionGUI:
    def __init__(self, root, store, detector, capture_source, recent_window_hours=24):
        self.root = root
        self.root.title("Emotion Tracker")
        self.store = store
        self.detector = detector
        self.capture_source = capture_source
        self.recent_window_hours = recent_window_hours

        # store listeners run on worker threads; Tk is only touched from refresh()
        self._history_dirty = True
        self._last_render = 0.0
        self._unsubscribe = store.subscribe(self._on_log_changed)

        # --- LAYOUT ---
        self.frame_video = ttk.LabelFrame(root, text="🎥 Webcam", padding=10, bootstyle=PRIMARY)
        self.frame_video.grid(row=0, column=0, padx=10, pady=10, sticky="n")

        self.frame_trends = ttk.LabelFrame(root, text="📈 Emotion Trends", padding=10, bootstyle=INFO)
        self.frame_trends.grid(row=0, column=1, padx=10, pady=10, sticky="n")

        self.frame_controls = ttk.Frame(root, padding=10)
        self.frame_controls.grid(row=1, column=0, columnspan=2)

        # --- VIDEO ---
        self.video_label = ttk.Label(self.frame_video, text="Camera is off")
        self.video_label.pack()
        self.emotion_label = ttk.Label(self.frame_video, text="Current: -")
        self.emotion_label.pack(pady=(5, 0))
        self.last_logged_label = ttk.Label(self.frame_video, text="Last logged: -")
        self.last_logged_label.pack()

        # --- TRENDS ---
        self.summary_label = ttk.Label(self.frame_trends, text="", justify="left")
        self.summary_label.pack(anchor="w")

        self.emotion_bars = {}
        for emotion in Emotion:
            ttk.Label(self.frame_trends, text=emotion.value.capitalize(), width=15, anchor="w").pack(pady=1)
            bar = ttk.Progressbar(self.frame_trends, length=200, maximum=100, bootstyle=COLOR_MAP[emotion])
            bar.pack(pady=1)
            self.emotion_bars[emotion.value] = bar

        self.time_label = ttk.Label(self.frame_trends, text="", justify="left")
        self.time_label.pack(anchor="w", pady=(10, 0))

        self.tree = ttk.Treeview(self.frame_trends, columns=("time", "emotion", "confidence"), show="headings", height=8)
        self.tree.heading("time", text="Time")
        self.tree.heading("emotion", text="Emotion")
        self.tree.heading("confidence", text="Confidence")
        self.tree.column("time", width=130)
        self.tree.column("emotion", width=90)
        self.tree.column("confidence", width=90)
        self.tree.pack(fill="both", expand=True, pady=(10, 0))

        # --- BUTTONS ---
        self.camera_toggle = ttk.Checkbutton(
            self.frame_controls,
            text="📷 Camera",
            bootstyle="info-outline-toolbutton",
            command=self.toggle_camera,
        )
        self.camera_toggle.pack(side="left", padx=5)
        ttk.Button(self.frame_controls, text="🧹 Clear All", bootstyle="danger-outline", command=self.clear_all).pack(
            side="left", padx=10
        )

    def _on_log_changed(self):
        self._history_dirty = True

    def toggle_camera(self):
        if self.camera_toggle.instate(["selected"]):
            try:
                self.capture_source.open()
            except IOError as e:
                logger.error("Could not start camera: %s", e)
                self.camera_toggle.state(["!selected"])
        else:
            self.capture_source.release()
            self.video_label.config(image="", text="Camera is off")
            self.video_label.image = None

    def clear_all(self):
        try:
            self.store.clear()
        except StorageWriteError as e:
            logger.error("Could not clear history: %s", e)

    def refresh(self):
        frame, candidate, last_entry = self.detector.get_latest_data()
        if self.capture_source.is_active:
            self.update_video_frame(frame, candidate)

        if candidate is not None:
            self.emotion_label.config(text=f"Current: {candidate.emotion.value} ({candidate.confidence * 100:.1f}%)")
        else:
            self.emotion_label.config(text="Current: -")
        if last_entry is not None:
            self.last_logged_label.config(
                text=f"Last logged: {last_entry.emotion.value} at {last_entry.timestamp.strftime('%H:%M:%S')}"
            )

        now = time.monotonic()
        if history_refresh_due(self._history_dirty, self._last_render, now):
            self._history_dirty = False
            self._last_render = now
            self.render_history()

    def update_video_frame(self, frame, candidate):
        if frame is None:
            return
        img = Image.fromarray(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))
        if candidate is not None and candidate.box:
            x, y, width, height = candidate.box
            draw = ImageDraw.Draw(img)
            try:
                font = ImageFont.truetype("arial.ttf", 20)
            except OSError:
                font = ImageFont.load_default()
            draw.rectangle((x, y, x + width, y + height), outline=(0, 255, 0), width=3)
            draw.text((x, max(0, y - 24)), f"{candidate.emotion.value}: {candidate.confidence * 100:.1f}%",
                      font=font, fill=(255, 255, 0))

        img = img.resize((480, 360))
        photo = ImageTk.PhotoImage(img)
        self.video_label.config(image=photo, text="")
        self.video_label.image = photo

    def render_history(self):
        log = self.store.entries
        stats = compute_stats(log)
        self.summary_label.config(
            text=(
                f"Total: {stats.total_emotions}\n"
                f"Most common: {stats.most_common_emotion}\n"
                f"Avg confidence: {stats.average_confidence * 100:.1f}%"
            )
        )

        percentages = emotion_percentages(stats)
        for emotion, bar in self.emotion_bars.items():
            bar["value"] = percentages.get(emotion, 0)

        self.time_label.config(
            text="\n".join(
                f"{bucket.value.capitalize()}: {stats.time_patterns.get(bucket.value, 0)}" for bucket in TimeOfDay
            )
        )

        self.tree.delete(*self.tree.get_children())
        # newest first
        for entry in reversed(recent_entries(log, self.recent_window_hours)):
            self.tree.insert("", "end", iid=entry.id, values=(
                entry.timestamp.strftime("%H:%M:%S %d/%m"),
                entry.emotion.value,
                f"{entry.confidence * 100:.1f}%",
            ))

    def destroy(self):
        self._unsubscribe()
        self.root.destroy()
