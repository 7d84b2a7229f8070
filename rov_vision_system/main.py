#!/usr/bin/env python3
"""
ROV Vision System - Main Application
Wires capture, tracking, stereo and output stages around the dashboard control loop.
"""
import argparse
import signal
import sys
import threading
import time
from typing import List, Optional

from loguru import logger

from rov_vision_system.config.settings import CONTROL_LOOP_SLEEP, SystemConfig
from rov_vision_system.config.tuning import STEREO_TUNING_KEY, TuningStore
from rov_vision_system.core.camera_manager import CameraSink, FrameSource, open_cameras
from rov_vision_system.core.config_store import (
    ConfigStore, InMemoryConfigStore, Keys, PipelineParameters, populate_defaults,
)
from rov_vision_system.core.detector_engine import DetectionEngine, build_default_engine
from rov_vision_system.core.frame_buffer import FrameBuffers, join_threads
from rov_vision_system.core.frame_sink import FrameOutput, FrameSink, LatestFrameOutput, WindowOutput
from rov_vision_system.core.state_machine import ModeController
from rov_vision_system.core.stereo_processor import StereoProcessor
from rov_vision_system.core.tracker_system import TrackingProcessor
from rov_vision_system.exceptions import ConfigurationError
from rov_vision_system.utils.logger import get_component_logger, init_logger, log_error_with_context
from rov_vision_system.utils.performance import PerformanceMonitor, system_info

HEARTBEAT_INTERVAL = 30.0


class VisionOrchestrator:
    """Owns the pipeline stages and runs the dashboard control loop"""

    def __init__(self, config: SystemConfig, store: ConfigStore, tuning: TuningStore,
                 sinks: List[CameraSink], outputs: List[FrameOutput],
                 engine: Optional[DetectionEngine] = None,
                 join_timeout: Optional[float] = None):
        self.config = config
        self.store = store
        self.tuning = tuning
        self.sinks = sinks
        self.outputs = outputs
        self.join_timeout = join_timeout
        self.system_logger = get_component_logger('VisionOrchestrator')

        self.buffers = FrameBuffers()
        self.params = PipelineParameters()
        self.modes = ModeController()

        self.frame_source = FrameSource(join_timeout=join_timeout)
        self.tracker = TrackingProcessor(
            self.buffers.vision, self.buffers.processed_vision,
            self.params, self.modes, engine=engine,
            frame_source=self.frame_source, tracking=config.tracking,
        )
        self.stereo = StereoProcessor(
            self.buffers.left_stereo, self.buffers.right_stereo,
            self.buffers.processed_stereo, self.params, frame_source=self.frame_source,
        )
        self.frame_sink = FrameSink(join_timeout=join_timeout)
        self.perf_monitor = PerformanceMonitor()

        self.shutdown_event = threading.Event()
        self.threads: List[threading.Thread] = []
        self.running = False
        self.last_heartbeat = time.monotonic()

    def start(self):
        """Spawn the capture, tracking, stereo and output threads"""
        if self.running:
            self.system_logger.warning("System is already running")
            return

        self.system_logger.info("Starting vision pipeline...")
        targets = [
            ("VideoCapture", self.frame_source.start_capture, (self.buffers, self.sinks)),
            ("TrackingProcessor", self.tracker.run, ()),
            ("StereoProcessor", self.stereo.run, ()),
            ("FrameOutput", self.frame_sink.show_frames, (self.buffers, self.outputs)),
        ]
        for name, target, args in targets:
            thread = threading.Thread(target=target, args=args, name=name, daemon=True)
            thread.start()
            self.threads.append(thread)

        self.running = True
        self.system_logger.info("✓ Pipeline threads started")

    def stages_running(self) -> bool:
        return not (self.frame_source.is_stopped or self.tracker.is_stopped
                    or self.stereo.is_stopped or self.frame_sink.is_stopped)

    def run_cycle(self):
        """One control loop iteration: read the dashboard, switch modes, publish results"""
        started = time.monotonic()

        self.params.refresh(self.store)
        self.stereo.stereo_params.refresh(self.store)
        self.modes.step(self.store, self.tuning)

        result = self.tracker.latest_result()
        offset = int(self.store.get(Keys.X_SETPOINT_OFFSET, 0))
        self.store.put(Keys.TARGET_CENTER_X, result.target_center_x + offset)
        self.store.put(Keys.TARGET_WIDTH, result.target_center_y)
        if result.values:
            self.store.put(Keys.LINE_IS_VERTICAL, bool(result.values[0]))
            self.store.put(Keys.TRACKING_RESULTS, list(result.values))
        self.store.put(Keys.SPNP_VALUES, self.tracker.pose_values())

        if self.store.get(Keys.WRITE_JSON, False):
            self.write_tuning()

        self.perf_monitor.log_cycle_time(time.monotonic() - started)

    def write_tuning(self):
        """Persist the active mode and stereo values, then clear the request"""
        try:
            self.tuning.capture_from_store(self.store, self.modes.mode.tuning_key)
            self.tuning.capture_from_store(self.store, STEREO_TUNING_KEY)
            self.tuning.flush()
        except OSError as e:
            self.system_logger.error(f"Unable to write tuning values to {self.tuning.path}: {e}")
        finally:
            self.store.put(Keys.WRITE_JSON, False)

    def run(self):
        """Control loop. Returns when a restart is requested, a stage stops, or on signal."""
        while not self.shutdown_event.is_set():
            try:
                if self.store.get(Keys.RESTART_PROGRAM, False):
                    self.system_logger.info("Restart requested from dashboard")
                    break
                if not self.stages_running():
                    self.system_logger.warning("A pipeline stage stopped, shutting down")
                    break
                self.run_cycle()
                if time.monotonic() - self.last_heartbeat > HEARTBEAT_INTERVAL:
                    self._heartbeat()
            except Exception as e:
                log_error_with_context(e, {'component': 'control_loop',
                                           'mode': self.modes.mode.name},
                                       component='VisionOrchestrator')
            self.shutdown_event.wait(CONTROL_LOOP_SLEEP)

    def _heartbeat(self):
        """Log stage rates and host load"""
        self.perf_monitor.update_system_stats()
        stats = self.perf_monitor.get_current_stats()
        self.system_logger.info(
            f"Heartbeat - mode: {self.modes.mode.name}, camera FPS: {self.frame_source.fps(0)}, "
            f"tracking FPS: {self.tracker.fps()}, stereo FPS: {self.stereo.fps()}, "
            f"CPU: {stats['cpu_percent']:.0f}%, memory: {stats['memory_percent']:.0f}%")
        self.last_heartbeat = time.monotonic()

    def request_shutdown(self):
        self.shutdown_event.set()

    def shutdown(self, join_timeout: Optional[float] = None) -> bool:
        """Stop every stage and join the threads. Returns False if any thread is wedged."""
        timeout = self.join_timeout if join_timeout is None else join_timeout
        self.system_logger.info("Stopping vision pipeline...")
        self.shutdown_event.set()

        self.frame_source.stop(timeout)
        self.tracker.stop()
        self.stereo.stop()
        self.frame_sink.stop(timeout)
        clean = join_threads(self.threads, timeout)
        self.running = False

        # Avoid an endless restart loop on the next launch.
        self.store.put(Keys.RESTART_PROGRAM, False)

        stats = self.perf_monitor.get_current_stats()
        self.system_logger.info(f"Average control cycle: {stats.get('avg_cycle_time', 0.0) * 1000:.2f} ms")
        self.system_logger.info("All threads have been released")
        return clean


def setup_signal_handlers(system: VisionOrchestrator):
    """Setup signal handlers for graceful shutdown"""
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        system.request_shutdown()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def build_outputs(config: SystemConfig, show_windows: bool) -> List[FrameOutput]:
    output_class = WindowOutput if show_windows else LatestFrameOutput
    return [output_class(name) for name in config.output_names()]


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description='ROV Vision System',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument('--config', type=str, default='/boot/frc.json',
                        help='Camera and team configuration file path')
    parser.add_argument('--tuning', type=str, default=None,
                        help='Tuning values file path, overrides the configuration')
    parser.add_argument('--model-dir', type=str, default=None,
                        help='Directory holding the detection models')
    parser.add_argument('--log-level', type=str, default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level')
    parser.add_argument('--log-dir', type=str, default='logs',
                        help='Directory for log files')
    parser.add_argument('--join-timeout', type=float, default=5.0,
                        help='Seconds to wait for each stage on shutdown')
    parser.add_argument('--show-windows', action='store_true',
                        help='Show processed streams in local windows')
    parser.add_argument('--virtual-cam', action='store_true',
                        help='Treat camera paths as video files played in a loop')
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main entry point"""
    args = parse_args(argv)

    init_logger(log_dir=args.log_dir, log_level=args.log_level, console_output=True)
    logger.info("ROV Vision System starting...")
    logger.debug(f"Command line args: {vars(args)}")
    for key, value in system_info().items():
        logger.info(f"{key}: {value}")

    try:
        config = SystemConfig.load_from_file(args.config)
        if args.model_dir:
            config.detection.model_dir = args.model_dir
        tuning = TuningStore.load(args.tuning or config.tuning_file)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    sinks = open_cameras(config.cameras, virtual=args.virtual_cam)
    if not sinks:
        logger.error("No cameras could be opened, nothing to do")
        return 0

    store = InMemoryConfigStore()
    populate_defaults(store)
    tuning.apply_to_store(store, STEREO_TUNING_KEY)

    engine = build_default_engine(config.detection)
    system = VisionOrchestrator(config, store, tuning, sinks,
                                build_outputs(config, args.show_windows),
                                engine=engine, join_timeout=args.join_timeout)
    setup_signal_handlers(system)

    system.start()
    try:
        system.run()
    finally:
        system.shutdown()
        logger.info("System shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
