"""
Configuration settings for the Tramo co-driver.
Contains constants for lookahead, curve detection, zones, speech planning
and the supporting hardware (GPS, audio).

Organised into logical sections:
1. Application & Paths
2. Units
3. Lookahead & Routing
4. Curve Detection
5. Zone Classification
6. Speech Planner
7. Chatter
8. Audio
9. GPS
10. Simulation
11. Threading & Performance

Values here are defaults. Any of the tuning sections can be overridden from
the persistent settings file (see utils/settings.py) using the dotted keys
noted next to each section.
"""

import os

# ##############################################################################
#
#                        1. APPLICATION & PATHS
#
# ##############################################################################

# Format: MAJOR.MINOR.PATCH
APP_VERSION = "0.4.2"

_PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))

# Local data directory (GPX routes, cached chatter)
DATA_DIR = os.path.expanduser("~/.tramo")

CODRIVER_ROUTES_DIR = os.path.join(DATA_DIR, "routes")

# Environment file holding routing credentials (MAPBOX_ACCESS_TOKEN)
CODRIVER_ENV_FILE = os.path.join(_PROJECT_ROOT, ".env")

# ##############################################################################
#
#                        2. UNITS
#
# ##############################################################################

METRES_PER_MILE = 1609.34
FEET_PER_METRE = 3.28084
MPS_PER_MPH = 0.44704
MPS_PER_KNOT = 0.514444

# ##############################################################################
#
#                        3. LOOKAHEAD & ROUTING   (settings: "lookahead.*")
#
# ##############################################################################

# Distance ahead of the vehicle to project the routing target (metres)
CODRIVER_LOOKAHEAD_M = 2500

# Minimum seconds between routine fetches
CODRIVER_FETCH_MIN_INTERVAL_S = 10.0

# Immediate refetch when moved / turned this much since the last fetch
CODRIVER_REFETCH_DISTANCE_M = 200
CODRIVER_REFETCH_HEADING_DEG = 15.0

# Immediate refetch when further than this from the cached geometry
CODRIVER_OFF_PATH_M = 50

# Below this speed fetching pauses entirely (mph)
CODRIVER_FETCH_MIN_SPEED_MPH = 5.0

# GPS heading is only trusted above this speed; below it the last value is held (mph)
CODRIVER_HEADING_HOLD_SPEED_MPH = 10.0

# Routing backends
CODRIVER_ROUTING_PROFILE = "driving"
CODRIVER_OSRM_URL = "https://router.project-osrm.org"
CODRIVER_MAPBOX_URL = "https://api.mapbox.com/directions/v5/mapbox"
CODRIVER_ROUTING_TIMEOUT_S = 8.0

# Failure backoff
CODRIVER_BACKOFF_INITIAL_S = 1.0
CODRIVER_BACKOFF_MULTIPLIER = 2.0
CODRIVER_BACKOFF_MAX_S = 64.0

# ##############################################################################
#
#                        4. CURVE DETECTION   (settings: "curves.*")
#
# ##############################################################################

# Any heading change at or above this is a raw turn event (degrees)
CODRIVER_CURVE_NOISE_DEG = 15.0

# Raw turns of the same sign within this distance merge into one curve (metres)
CODRIVER_CURVE_MERGE_DISTANCE_M = 40.0

# Merged curves below this total are discarded (degrees)
CODRIVER_CURVE_MIN_ANGLE_DEG = 15.0

# Opposite-direction curves within this gap become a chicane (metres)
CODRIVER_CHICANE_MAX_GAP_M = 60.0

# Curve modifiers: hairpin and sharp by angle (degrees), long by arc length (metres)
CODRIVER_HAIRPIN_ANGLE_DEG = 150.0
CODRIVER_SHARP_ANGLE_DEG = 120.0
CODRIVER_SHARP_RADIUS_M = 20.0
CODRIVER_LONG_CURVE_M = 150.0
CODRIVER_LONG_HARD_CURVE_M = 120.0

# ##############################################################################
#
#                        5. ZONE CLASSIFICATION   (settings: "zones.*")
#
# ##############################################################################

CODRIVER_ZONE_MIN_ANGLE_DEG = 12.0
CODRIVER_ZONE_CLUSTER_WINDOW_MI = 0.5
CODRIVER_ZONE_MIN_CLUSTER_CURVES = 3
CODRIVER_ZONE_MIN_AVG_ANGLE_DEG = 18.0
CODRIVER_ZONE_DANGER_ANGLE_DEG = 50.0
CODRIVER_ZONE_DANGER_BUFFER_MI = 0.15
CODRIVER_ZONE_MERGE_GAP_MI = 0.3
CODRIVER_ZONE_MIN_TECHNICAL_MI = 0.25
CODRIVER_ZONE_MAX_URBAN_MI = 1.5

# ##############################################################################
#
#                        6. SPEECH PLANNER   (settings: "planner.*")
#
# ##############################################################################

# Hybrid planning trigger: plan when either threshold is crossed
CODRIVER_PLAN_DISTANCE_M = 100
CODRIVER_PLAN_INTERVAL_S = 2.0

# Events further ahead than this are ignored (metres)
CODRIVER_PLAN_LOOKAHEAD_M = 3000

# Speech budget
CODRIVER_TTS_OVERHEAD_S = 1.5
CODRIVER_WORDS_PER_SECOND = 2.5
CODRIVER_BUDGET_MIN_SPEED_MPH = 5.0
CODRIVER_NO_CURVE_DISTANCE_M = 10000

# Gatekeeper windows (metres)
CODRIVER_DEDUP_TEXT_M = 500
CODRIVER_DEDUP_SOURCE_M = 200

# Recent utterances checked for repeated text
CODRIVER_DEDUP_HISTORY = 8

# Announced-curve proximity identity (metres)
CODRIVER_CURVE_IDENTITY_M = 50

# Passed-curve cleanup
CODRIVER_PASSED_BEARING_DEG = 90.0
CODRIVER_PASSED_BUFFER_M = 30.0
CODRIVER_PASSED_BEHIND_M = 50.0

# Budget thresholds for each kind of speech (seconds)
CODRIVER_BRIEFING_MIN_BUDGET_S = 3.0
CODRIVER_CHATTER_MIN_BUDGET_S = 15.0
CODRIVER_TRANSITION_MIN_BUDGET_S = 5.0

# Chatter and transition windows (metres)
CODRIVER_CHATTER_WINDOW_M = 200
CODRIVER_CHATTER_QUIET_M = 400
CODRIVER_TRANSITION_MIN_AHEAD_M = 200
CODRIVER_TRANSITION_MAX_AHEAD_M = 600

# Final "now" call is skipped this close to the curve (metres)
CODRIVER_FINAL_MIN_AHEAD_M = 15.0

# "Clear" calls (technical mode): straight length and silence needed
CODRIVER_CLEAR_MIN_STRAIGHT_M = 400
CODRIVER_CLEAR_MIN_SILENCE_S = 8.0

# Runtime summary log interval (seconds)
CODRIVER_STATS_LOG_INTERVAL_S = 60.0

# ##############################################################################
#
#                        7. CHATTER
#
# ##############################################################################

# Speed bands for chatter variants (mph)
CODRIVER_CHATTER_SLOW_MPH = 50
CODRIVER_CHATTER_CRUISE_MPH = 70

# Progress milestone spacing (miles)
CODRIVER_CHATTER_MILESTONE_MI = 10

# Transit zones longer than this get a preview line (miles)
CODRIVER_CHATTER_PREVIEW_MIN_MI = 3.0

# ##############################################################################
#
#                        8. AUDIO
#
# ##############################################################################

CODRIVER_AUDIO_ENABLED = True
CODRIVER_TTS_VOICE = "Daniel"  # British male voice (macOS), falls back to en-gb on Linux
CODRIVER_TTS_SPEED = 190  # Words per minute at voice rate 1.0

# ##############################################################################
#
#                        9. GPS
#
# ##############################################################################

CODRIVER_GPS_PORT = "/dev/ttyUSB0"
CODRIVER_GPS_BAUDRATE = 9600

# ##############################################################################
#
#                        10. SIMULATION
#
# ##############################################################################

CODRIVER_SIM_SPEED_MPH = 45.0
CODRIVER_SIM_MAX_DT_S = 2.0

# ##############################################################################
#
#                        11. THREADING & PERFORMANCE
#
# ##############################################################################

CODRIVER_UPDATE_INTERVAL_S = 0.5
CODRIVER_SNAPSHOT_QUEUE_DEPTH = 2
CODRIVER_THREAD_JOIN_TIMEOUT_S = 5.0
