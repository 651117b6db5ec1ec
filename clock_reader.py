#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Segment Clock Reader – Seven-Segment Game Clock to Multicast
============================================================
Dependencies (install first):
    pip install opencv-python pillow mss numpy

What it does
------------
• Capture from a camera (OpenCV), a screen region (MSS) or a still image.
• Tk/ttk UI with a live viewer for calibrating the 28 segment centres
  (4 digits × 7 segments) by clicking on them.
• Decodes each frame by sampling the calibrated points and matching the
  digit patterns; M:SS above one minute, SS.T below.
• Sends the value (tenths of a second, -1 if undecodable) as a UDP
  multicast datagram per frame, and optionally writes clock.txt/json/csv.

Quick start
-----------
1) Run:  python clock_reader.py --camera 0
2) Click the centre of digit 0's middle bar, then go counter-clockwise
   around the digit (lower-left, bottom, lower-right, upper-right, top,
   upper-left). The swatch bottom-left shows the colour of the next click.
3) Press 'n' for the next digit (digit 0 is the right-most), repeat.
4) Press 'r' to run, 's' to go back to setup. Save the profile for next time.

Test mode
---------
    python clock_reader.py --test-image "/path/to/frame.png"

License: MIT
"""
from __future__ import annotations

import logging
import queue
import sys
import threading
import time
from typing import Optional

import cv2
import numpy as np
from PIL import Image, ImageTk

import tkinter as tk
from tkinter import ttk, filedialog

from clock_capture import CaptureSource, probe_cameras
from clock_config import ReaderConfig, build_arg_parser, config_from_args, load_profile, save_profile
from clock_output import Destination, build_destination
from clock_session import RUNNING, ReaderSession, run_headless
from segment_clock import SegmentMap, format_clock

logger = logging.getLogger(__name__)

# ----------------------------- GUI / App ----------------------------------

class App:
    def __init__(self, root, cfg: ReaderConfig, session: ReaderSession):
        self.root = root
        root.title("Segment Clock Reader")
        self.cfg = cfg
        self.session = session
        self.paused = False
        self.last_frame: Optional[np.ndarray] = None

        # Threading
        self.frame_q = queue.Queue(maxsize=2)
        self.stop_flag = threading.Event()

        self._canvas_img_id = None   # single canvas image item id
        self._tk_im = None           # keep PhotoImage reference
        self._view = (1.0, 0, 0)     # scale, pad_x, pad_y of the last drawn frame
        self._build_ui()
        self._start_threads()

    # ---------- UI ----------
    def _build_ui(self):
        root = self.root
        root.geometry("1000x640")
        root.configure(bg="#111")

        top = ttk.Frame(root); top.pack(side="top", fill="x", padx=6, pady=6)
        ttk.Button(top, text="Setup (s)", command=lambda: self.on_key("s")).pack(side="left", padx=3)
        ttk.Button(top, text="Next Digit (n)", command=lambda: self.on_key("n")).pack(side="left", padx=3)
        ttk.Button(top, text="Run (r)", command=lambda: self.on_key("r")).pack(side="left", padx=3)
        self.btn_pause = ttk.Button(top, text="Pause (Space)", command=self.toggle_pause)
        self.btn_pause.pack(side="left", padx=6)
        ttk.Button(top, text="Save Profile…", command=self.save_profile).pack(side="left", padx=3)
        ttk.Button(top, text="Load Profile…", command=self.load_profile).pack(side="left", padx=3)

        ttk.Label(top, text="Threshold").pack(side="left", padx=(12, 3))
        self.var_thr = tk.IntVar(value=self.cfg.threshold)
        ttk.Scale(top, from_=0, to=255, orient="horizontal", variable=self.var_thr, length=160).pack(side="left")
        self.entry_thr = ttk.Entry(top, width=4, textvariable=self.var_thr)
        self.entry_thr.pack(side="left", padx=3)
        # slider and entry both write var_thr
        self.var_thr.trace_add("write", lambda *a: self._on_threshold_var())

        self.lbl_now = ttk.Label(top, text="CLOCK: --:--", font=("Segoe UI", 16, "bold"))
        self.lbl_now.pack(side="right")

        # Viewer
        self.canvas = tk.Canvas(root, bg="black", width=960, height=540, highlightthickness=0)
        self.canvas.pack(fill="both", expand=True, padx=6, pady=6)
        self.canvas.bind("<ButtonPress-1>", self.on_click)
        for key in ("s", "r", "n"):
            root.bind(key, lambda e, k=key: self._on_shortcut(k))
        root.bind("<Escape>", lambda e: self.on_key("escape"))
        root.bind("<space>", lambda e: self._on_shortcut(None))

        # Status bar
        self.status = tk.StringVar(value=self.session.status_text())
        ttk.Label(root, textvariable=self.status, anchor="w").pack(side="bottom", fill="x")

    def _on_threshold_var(self):
        # raw text, the slider writes floats and the entry may be half typed
        self.session.set_threshold(self.entry_thr.get())

    def _on_shortcut(self, key):
        """Single-letter shortcuts; ignored while typing in the threshold entry."""
        if self.root.focus_get() is self.entry_thr:
            return
        if key is None:
            self.toggle_pause()
        else:
            self.on_key(key)

    def on_key(self, key: str):
        if not self.session.handle_key(key):
            self.close()
            return
        self.status.set(self.session.status_text())

    def on_click(self, e):
        if self.last_frame is None:
            return
        scale, pad_x, pad_y = self._view
        fh, fw = self.last_frame.shape[:2]
        fx = int((e.x - pad_x) / scale); fy = int((e.y - pad_y) / scale)
        if not (0 <= fx < fw and 0 <= fy < fh):
            return
        if self.session.click(fx, fy):
            self.status.set(self.session.status_text())

    def toggle_pause(self):
        self.paused = not self.paused
        self.btn_pause.config(text="Resume (Space)" if self.paused else "Pause (Space)")

    def save_profile(self):
        path = filedialog.asksaveasfilename(
            title="Save Profile",
            defaultextension=".json",
            filetypes=[("JSON files", "*.json"), ("All files", "*.*")],
        )
        if not path:
            return
        try:
            save_profile(path, self.cfg, self.session.segment_map)
            self.status.set(f"Profile saved to {path}")
        except OSError as e:
            self.status.set(f"Failed to save profile: {e}")

    def load_profile(self):
        """Restore the segment map and threshold from a profile.

        Capture and transport settings take effect on the next start only.
        """
        path = filedialog.askopenfilename(
            title="Load Profile",
            filetypes=[("JSON files", "*.json"), ("All files", "*.*")],
        )
        if not path:
            return
        try:
            cfg, segment_map = load_profile(path)
        except (OSError, ValueError) as e:
            self.status.set(f"Failed to load profile: {e}")
            return
        self.session.segment_map = segment_map
        self.cfg.threshold = cfg.threshold
        self.var_thr.set(cfg.threshold)
        self.session.start_setup()
        self.status.set(f"Profile loaded from {path}")

    # ---------- Threads ----------
    def _start_threads(self):
        self.cap_thread = threading.Thread(target=self._capture_loop, daemon=True)
        self.dec_thread = threading.Thread(target=self._decode_loop, daemon=True)
        self.cap_thread.start()
        self.dec_thread.start()

    def _capture_loop(self):
        """Background thread: read frames, queue them for decoding and show them."""
        cs = CaptureSource(mode=self.cfg.capture_mode,
                           camera_index=self.cfg.camera_index,
                           screen_box=self.cfg.screen_box,
                           test_image=self.cfg.test_image)
        opened = False
        while not self.stop_flag.is_set():
            if self.paused:
                time.sleep(0.03)
                continue
            if not opened:
                try:
                    opened = cs.open()
                except RuntimeError as e:
                    self._set_status(str(e))
                    logger.error("%s", e)
                    return
                if not opened:
                    self._set_status(f"Failed to open {self.cfg.capture_mode} source, retrying…")
                    time.sleep(1.0)
                    continue
            frame = cs.read()
            if frame is None:
                time.sleep(0.01)
                continue
            self.last_frame = frame
            # Push to queue (drop oldest if queue is full)
            try:
                if self.frame_q.full():
                    self.frame_q.get_nowait()
                self.frame_q.put_nowait(frame)
            except (queue.Full, queue.Empty):
                pass
            overlay = self.session.annotate(frame)
            self.root.after(0, lambda f=overlay: self._update_viewer(f))
            if self.cfg.capture_mode == "image":
                # still images are re-served at ~20 fps
                time.sleep(0.05)
        cs.release()

    def _decode_loop(self):
        while not self.stop_flag.is_set():
            try:
                frame = self.frame_q.get(timeout=0.5)
            except queue.Empty:
                continue
            reading = self.session.process(frame)
            if reading is not None:
                text = format_clock(reading.value) if reading.ok else f"?? (digit {reading.failed_digit})"
                self.root.after(0, lambda t=text: self.lbl_now.config(text=f"CLOCK: {t:>5}"))

    def _set_status(self, text: str):
        self.root.after(0, lambda: self.status.set(text))

    def _update_viewer(self, frame):
        vis_w = self.canvas.winfo_width()
        vis_h = self.canvas.winfo_height()
        fh, fw = frame.shape[:2]
        if fw == 0 or fh == 0 or vis_w <= 1 or vis_h <= 1:
            return
        scale = min(vis_w/fw, vis_h/fh)
        disp_w, disp_h = max(1, int(fw*scale)), max(1, int(fh*scale))
        # nearest keeps the 5×5 calibration boxes crisp when zoomed in
        disp = cv2.resize(frame, (disp_w, disp_h), interpolation=cv2.INTER_NEAREST)
        pad_x = (vis_w - disp_w) // 2
        pad_y = (vis_h - disp_h) // 2
        self._view = (scale, pad_x, pad_y)

        rgb = cv2.cvtColor(disp, cv2.COLOR_BGR2RGB)
        self._tk_im = ImageTk.PhotoImage(Image.fromarray(rgb))
        cx = pad_x + disp_w//2
        cy = pad_y + disp_h//2
        if self._canvas_img_id is None:
            self._canvas_img_id = self.canvas.create_image(cx, cy, image=self._tk_im)
        else:
            self.canvas.itemconfig(self._canvas_img_id, image=self._tk_im)
            self.canvas.coords(self._canvas_img_id, cx, cy)

    # ---------- Cleanup ----------
    def close(self):
        self.stop_flag.set()
        self.session.destination.close()
        self.root.after(150, self.root.destroy)

# ----------------------------- Main ---------------------------------------

def _run_headless(cfg: ReaderConfig, session: ReaderSession) -> int:
    if session.segment_map == SegmentMap.blank():
        logger.error("headless mode needs a calibrated profile (--profile)")
        return 2
    stop = threading.Event()
    try:
        with CaptureSource(mode=cfg.capture_mode, camera_index=cfg.camera_index,
                           screen_box=cfg.screen_box, test_image=cfg.test_image) as cs:
            # a still image is re-served instantly; pace it like the window does
            frame_delay = 0.05 if cfg.capture_mode == "image" else 0.0
            run_headless(session, cs, stop, frame_delay=frame_delay)
    except KeyboardInterrupt:
        stop.set()
    finally:
        session.destination.close()
    return 0


def main(argv=None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.list_cameras:
        for idx in probe_cameras():
            print(f"camera {idx}")
        return 0

    try:
        cfg, segment_map = config_from_args(args)
    except (OSError, ValueError) as e:
        parser.error(str(e))

    dest: Destination = build_destination(cfg)
    session = ReaderSession(cfg, segment_map, dest)

    if args.headless:
        try:
            return _run_headless(cfg, session)
        except RuntimeError as e:
            logger.error("%s", e)
            return 1

    if args.profile:
        # calibrated already; start decoding straight away
        session.mode = RUNNING

    root = tk.Tk()
    style = ttk.Style(root)
    if "clam" in style.theme_names():
        style.theme_use("clam")
    app = App(root, cfg, session)
    root.protocol("WM_DELETE_WINDOW", app.close)
    root.mainloop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
