#!/usr/bin/env python3
"""
Tramo - a rally-style co-driver for the open road
Narrates curves, zones and progress from live GPS, either along a
planned GPX route or freely on whatever road is ahead.
"""

import argparse
import logging
import os
import sys
import time

from dotenv import load_dotenv

from codriver.callouts import DrivingMode
from codriver.curves import CurveDetector
from codriver.gps import GPSReader
from codriver.lookahead import LookaheadConfig
from codriver.planner import PlannerConfig
from codriver.routing import MapboxDirectionsClient, OSRMClient
from codriver.session import CoDriverSession
from codriver.simulator import GPXRouteLoader, RouteSimulator
from codriver.speech import LoggingSpeaker, TTSSpeaker
from codriver.zones import ZoneClassifier, ZoneConfig
from utils.settings import get_settings
from config import (
    APP_VERSION,
    CODRIVER_AUDIO_ENABLED,
    CODRIVER_ENV_FILE,
    CODRIVER_GPS_BAUDRATE,
    CODRIVER_GPS_PORT,
    CODRIVER_ROUTES_DIR,
    CODRIVER_SIM_SPEED_MPH,
    CODRIVER_TTS_SPEED,
    CODRIVER_TTS_VOICE,
)

logger = logging.getLogger('tramo')

# Seconds between status lines on the console
STATUS_INTERVAL_S = 5.0


class CoDriverApp:
    """Wires telemetry, routing and speech into one co-driver session."""

    def __init__(self, args):
        self.args = args
        self.running = False
        self.settings = get_settings()

        self.speaker = self._init_speaker()
        self.route_points = self._load_route()
        self.telemetry = self._init_telemetry()
        routing = None if self.route_points else self._init_routing()

        mode = None if args.mode == "auto" else DrivingMode(args.mode)
        self.session = CoDriverSession(
            telemetry=self.telemetry,
            speech=self.speaker,
            routing=routing,
            mode=mode,
            detector=CurveDetector.from_settings(self.settings),
            classifier=ZoneClassifier(ZoneConfig.from_settings(self.settings)),
            planner_config=PlannerConfig.from_settings(self.settings),
            lookahead_config=LookaheadConfig.from_settings(self.settings),
        )
        if self.route_points:
            self.session.load_route(self.route_points)

    def _init_speaker(self):
        if self.args.no_audio or not CODRIVER_AUDIO_ENABLED:
            logger.info("Audio disabled, callouts go to the log only")
            return LoggingSpeaker()
        return TTSSpeaker(voice=CODRIVER_TTS_VOICE, speed=CODRIVER_TTS_SPEED)

    def _load_route(self):
        if not self.args.route:
            return []
        path = self.args.route
        if not os.path.exists(path):
            candidate = os.path.join(CODRIVER_ROUTES_DIR, path)
            if os.path.exists(candidate):
                path = candidate
        loader = GPXRouteLoader(path)
        if not loader.load():
            raise SystemExit(f"No route points found in {path}")
        return loader.points

    def _init_telemetry(self):
        if self.args.simulate:
            if not self.route_points:
                raise SystemExit("--simulate needs a --route to drive along")
            return RouteSimulator(self.route_points, speed_mph=self.args.speed)
        return GPSReader(port=self.args.gps_port, baudrate=CODRIVER_GPS_BAUDRATE)

    def _init_routing(self):
        if self.args.routing == "mapbox":
            token = os.environ.get("MAPBOX_ACCESS_TOKEN", "").strip()
            if token:
                return MapboxDirectionsClient(token)
            logger.warning("MAPBOX_ACCESS_TOKEN is not set, using OSRM instead")
        return OSRMClient()

    def run(self):
        """Run until interrupted (or the simulated route ends)."""
        logger.info("Tramo co-driver v%s starting (%s)", APP_VERSION,
                    "route mode" if self.route_points else "free drive")
        self.session.start()
        self.running = True
        last_status = 0.0

        try:
            while self.running:
                time.sleep(0.5)

                if isinstance(self.telemetry, RouteSimulator) and self.telemetry.finished:
                    logger.info("Simulated route finished")
                    self.running = False

                now = time.monotonic()
                if now - last_status >= STATUS_INTERVAL_S:
                    last_status = now
                    self._log_status()
        except KeyboardInterrupt:
            logger.info("Interrupted, exiting gracefully")
        finally:
            self._cleanup()

    def _log_status(self):
        data = self.session.get_data()
        if not data:
            return
        next_curve = data.get('next_curve')
        upcoming = "-"
        if next_curve:
            upcoming = "%s %d in %dm" % (
                next_curve['direction'], next_curve['severity'], next_curve['distance_m'],
            )
        logger.info(
            "%s | %.0fmph | %.2fkm | %s/%s | next: %s | %.1fHz",
            data.get('status'), data.get('speed_mph') or 0.0,
            (data.get('distance_m') or 0.0) / 1000.0,
            data.get('mode') or "-", data.get('zone') or "-",
            upcoming, self.session.get_update_rate(),
        )

    def _cleanup(self):
        """Stop the session and release hardware."""
        logger.info("Shutting down co-driver...")
        self.session.stop()
        logger.info("Shutdown complete")


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Tramo - rally-style co-driver for the open road"
    )
    parser.add_argument(
        "--route",
        help="GPX file to follow (absolute, or relative to %s)" % CODRIVER_ROUTES_DIR,
    )
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Drive the route in simulation instead of reading GPS",
    )
    parser.add_argument(
        "--speed",
        type=float,
        default=CODRIVER_SIM_SPEED_MPH,
        help="Simulation speed in mph",
    )
    parser.add_argument(
        "--mode",
        choices=["auto"] + [m.value for m in DrivingMode],
        default="auto",
        help="Fix the callout mode instead of following the road",
    )
    parser.add_argument(
        "--gps-port",
        default=CODRIVER_GPS_PORT,
        help="Serial port of the NMEA GPS receiver",
    )
    parser.add_argument(
        "--routing",
        choices=["mapbox", "osrm"],
        default="mapbox",
        help="Routing backend for free-drive lookahead",
    )
    parser.add_argument(
        "--no-audio",
        action="store_true",
        help="Log callouts instead of speaking them",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Debug logging",
    )
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    load_dotenv(CODRIVER_ENV_FILE)

    app = CoDriverApp(args)
    app.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
