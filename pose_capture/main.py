# pose_capture/main.py
import argparse
import asyncio
import cv2
import logging
import os
import sys
import time
import numpy as np
from collections import deque

from capture_engine.common.config import configure_logging, load_config
from capture_engine.common.enums import CameraErrorKind
from capture_engine.common.errors import CameraSessionError, ConfigError
from capture_engine.measurement.height_store import HeightStore
from capture_engine.measurement.synthesizer import MeasurementTable, ResultSynthesizer
from capture_engine.session.capture_session import CaptureSession
from capture_engine.visualization.visualizer import Visualizer

logger = logging.getLogger("pose_capture")

class ConsoleNavigator:
    """Minimal navigation shell: remembers where the capture flow wants to go next."""

    def __init__(self):
        self.next_view = None
        self.results = None

    @property
    def finished(self) -> bool:
        return self.next_view is not None

    def on_capture_complete(self, record):
        self.results = record
        self.next_view = 'RESULTS'

    def on_need_height(self):
        self.next_view = 'HEIGHT_INPUT'

async def run_capture(config: dict, navigator: ConsoleNavigator):
    """Display loop: renders the live capture state until the flow finishes or the user quits."""
    storage = config['storage']
    height_store = HeightStore(storage['height_file'], storage['min_height_cm'], storage['max_height_cm'])
    table = MeasurementTable.from_json(config['measurements']['table_path'])
    synthesizer = ResultSynthesizer(table, np.random.default_rng(config['measurements'].get('seed')))

    session = CaptureSession(config, navigator, height_store, synthesizer)
    visualizer = Visualizer({**config['visualization'], 'min_keypoint_score': config['capture']['min_keypoint_score']})
    window = config['visualization']['window_name']
    width, height = config['camera']['resolution']
    frame_interval = 1.0 / config['camera']['target_fps']
    fps_history = deque(maxlen=100)

    enter_task = asyncio.ensure_future(session.enter())
    try:
        while not navigator.finished:
            frame_start_time = time.perf_counter()

            frame, _ = session.latest_frame()
            if frame is None:
                frame = np.zeros((height, width, 3), dtype=np.uint8)
            avg_fps = np.mean(fps_history) if fps_history else 0
            output_frame = visualizer.render(frame, session.last_estimate, session.snapshot(), avg_fps)

            try:
                cv2.imshow(window, output_frame)
                key = cv2.waitKey(1) & 0xFF
            except cv2.error as e:
                session.fail(CameraSessionError(CameraErrorKind.DISPLAY_ERROR, str(e)))
                break

            if key == ord('q'):
                logger.info("Shutdown signal received.")
                break
            if key == ord('r') and session.can_retake:
                enter_task.cancel()
                enter_task = asyncio.ensure_future(session.retake())

            latency = time.perf_counter() - frame_start_time
            await asyncio.sleep(max(0.0, frame_interval - latency))
            elapsed = time.perf_counter() - frame_start_time
            fps_history.append(1.0 / elapsed if elapsed > 0 else 0)
    finally:
        enter_task.cancel()
        session.close()
        cv2.destroyAllWindows()

def print_results(record):
    print(f"Height: {record.height:g} cm (table row {record.matched_height} cm)")
    for name in record.values:
        print(f"  {name}: {record.display_value(name)}")

def main(argv=None) -> int:
    script_dir = os.path.dirname(os.path.abspath(__file__))
    parser = argparse.ArgumentParser(description="Guided front/side pose capture.")
    parser.add_argument('--config', default=os.path.join(script_dir, 'config.yaml'))
    parser.add_argument('--height', type=float, help="store the user's height in cm before capturing")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
        configure_logging(config['logging'])
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    if args.height is not None:
        storage = config['storage']
        store = HeightStore(storage['height_file'], storage['min_height_cm'], storage['max_height_cm'])
        try:
            store.save(args.height)
        except ValueError as e:
            logger.error("%s", e)
            return 2

    navigator = ConsoleNavigator()
    try:
        asyncio.run(run_capture(config, navigator))
    except (OSError, ValueError) as e:
        logger.error("Failed to initialize. %s", e)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted.")

    if navigator.next_view == 'RESULTS':
        print_results(navigator.results)
    elif navigator.next_view == 'HEIGHT_INPUT':
        logger.error("No height stored. Run again with --height <cm>.")
        return 1
    logger.info("Application terminated.")
    return 0

if __name__ == "__main__":
    sys.exit(main())
