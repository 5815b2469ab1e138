"""
Horizon Tracking - Live Video Runner
=====================================
Reads a video (file or camera), tracks the horizon and shows the overlay.

Keys:
  Esc      exit
  x / X    toggle the frame delay (play as fast as possible)

Run examples:
  python3 src/create_video.py --video data/sea_clip.mp4
  python3 src/create_video.py --video 0 --mode region --config horizon.yaml
  python3 src/create_video.py --video data/sea_clip.mp4 --output output/sea_clip_horizon.mp4
"""

import argparse
import logging
import os
import sys
import time

import cv2

from pipeline import load_horizon_params, resolve_horizon_params
from line_detection import LoopControl, make_pipeline, process_stream

WINDOW_NAME = "Horizon Detection"
KEY_ESC = 0x1B


def _open_source(video):
    """Open a video file, or a camera when given a device index."""
    if str(video).isdigit():
        return cv2.VideoCapture(int(video))
    return cv2.VideoCapture(video)


def _read_frames(cap):
    """Yield frames until the capture runs out."""
    while True:
        ret, frame = cap.read()
        if not ret:
            break
        yield frame


def _open_writer(output_path, fps, width, height):
    """Create a video writer, XVID first and mp4v as fallback."""
    os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)

    fourcc = cv2.VideoWriter_fourcc(*'XVID')
    out = cv2.VideoWriter(output_path, fourcc, fps, (width, height))
    if not out.isOpened():
        print("[WARN] XVID failed, trying mp4v...")
        fourcc = cv2.VideoWriter_fourcc(*'mp4v')
        out = cv2.VideoWriter(output_path, fourcc, fps, (width, height))
        if not out.isOpened():
            return None
    return out


class FramePacer:
    """
    Waits between frames to match the source frame rate and polls the keyboard.

    Args:
        fps: Source frame rate (falls back to 30 when unknown)
    """

    def __init__(self, fps):
        fps = fps if fps and fps > 0 else 30.0
        self.frame_delay = int(1000 / fps)
        self.last_frame_moment = time.monotonic()

    def __call__(self, control):
        now = time.monotonic()
        elapsed = int((now - self.last_frame_moment) * 1000)
        delay = max(self.frame_delay - elapsed, 1)
        self.last_frame_moment = now

        key_pressed = cv2.waitKey(1 if control.skip_delay else delay) & 0xFF
        if key_pressed == KEY_ESC:
            control.request_stop()
        elif key_pressed in (ord('x'), ord('X')):
            print(f"Skip delay: {control.toggle_delay()}")


def run(video, mode="line", params=None, output_path=None):
    """
    Track the horizon on a live source until end of stream or Esc.

    Args:
        video: Video path or camera index
        mode: "line" or "region"
        params: HorizonDefaults (defaults if None)
        output_path: Optional path to record the rendered stream

    Returns:
        Process exit status (0 = ok, 1 = source or writer could not be opened)
    """
    params = params or resolve_horizon_params()
    cap = _open_source(video)

    if not cap.isOpened():
        print(f"[ERROR] Cannot open video: {video}")
        return 1

    width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
    height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
    fps = cap.get(cv2.CAP_PROP_FPS)

    print(f"{'='*60}")
    print(f"VIDEO INFO")
    print(f"{'='*60}")
    print(f"Input: {video}")
    print(f"Resolution: {width}x{height}")
    print(f"FPS: {fps}")
    print(f"Mode: {mode}")
    print(f"History size: {params.history_size}")
    if output_path:
        print(f"Recording to: {output_path}")
    print(f"{'='*60}\n")
    print("Press Escape to exit")
    print("Press x to toggle frame delay")

    writer = None
    if output_path:
        writer = _open_writer(output_path, fps if fps and fps > 0 else 30.0, width, height)
        if writer is None:
            print("[ERROR] Cannot create video writer")
            cap.release()
            return 1

    pipeline = make_pipeline(mode, params)
    control = LoopControl()
    pacer = FramePacer(fps)

    def _show(frame):
        cv2.imshow(WINDOW_NAME, frame)
        if writer is not None:
            writer.write(frame)

    try:
        frame_count = process_stream(_read_frames(cap), pipeline, _show, control=control, wait=pacer)
    finally:
        cap.release()
        if writer is not None:
            writer.release()
        cv2.destroyAllWindows()

    print(f"\n{'='*60}")
    print(f"SESSION COMPLETE")
    print(f"{'='*60}")
    print(f"Frames processed: {frame_count}")
    print(f"Frames with detections: {pipeline.update_count}")
    print(f"Final horizon: {pipeline.tracker.state if mode == 'line' else 'region'}")
    print(f"{'='*60}")
    return 0


def main(argv=None):
    """
    Main entry point for the live horizon runner.

    Parses command-line arguments and runs the tracking loop.
    """
    p = argparse.ArgumentParser(description="Track the horizon in a live video stream.")
    p.add_argument("--video", required=True, help="Input video path or camera index")
    p.add_argument("--mode", choices=("line", "region"), default="line",
                   help="line = Hough line tracking, region = skyline contour")
    p.add_argument("--config", default="", help="YAML file with HorizonDefaults overrides")
    p.add_argument("--history-size", type=int, default=None, help="Frames averaged by the tracker")
    p.add_argument("--cluster-distance", type=float, default=None,
                   help="Max offset gap (px) between lines of one cluster")
    p.add_argument("--output", default="", help="Optional path to record the rendered stream")
    p.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, ...)")

    args = p.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    overrides = {
        "history_size": args.history_size,
        "cluster_distance_px": args.cluster_distance,
    }
    if args.config:
        params = load_horizon_params(args.config, overrides)
    else:
        params = resolve_horizon_params(overrides)

    return run(args.video, mode=args.mode, params=params, output_path=args.output or None)


if __name__ == "__main__":
    sys.exit(main())
