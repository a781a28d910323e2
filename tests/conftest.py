"""
Shared pytest fixtures for co-driver tests.
"""

import os
import sys
import pytest
import tempfile
import json

# Add project root (and the fixture helpers) to path for imports
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)
sys.path.insert(0, os.path.join(PROJECT_ROOT, 'tests', 'fixtures'))


@pytest.fixture
def temp_settings_file():
    """Create a temporary settings file for testing SettingsManager."""
    with tempfile.NamedTemporaryFile(mode='w', suffix='.json', delete=False) as f:
        f.write('{}')
        temp_path = f.name
    yield temp_path
    # Cleanup
    if os.path.exists(temp_path):
        os.remove(temp_path)


@pytest.fixture
def temp_settings_with_data():
    """Create a temporary settings file with tuning overrides."""
    test_data = {
        "zones": {
            "danger_angle": 55,
            "min_curves_for_cluster": "4",
        },
        "planner": {
            "plan_distance_m": 50.0,
            "not_a_setting": 1,
        },
        "curves": {
            "min_angle": 20.0,
        },
    }
    with tempfile.NamedTemporaryFile(mode='w', suffix='.json', delete=False) as f:
        json.dump(test_data, f)
        temp_path = f.name
    yield temp_path
    # Cleanup
    if os.path.exists(temp_path):
        os.remove(temp_path)


@pytest.fixture
def settings_from_file():
    """Factory building an isolated SettingsManager over a given file."""
    from utils.settings import SettingsManager
    import threading

    def make(path):
        manager = object.__new__(SettingsManager)
        manager._initialised = False
        manager._settings = {}
        manager._file_path = path
        manager._save_lock = threading.Lock()
        manager._load()
        manager._initialised = True
        return manager

    return make


@pytest.fixture
def sample_gps_path():
    """Sample GPS path for geometry tests (a simple rectangular course)."""
    return [
        (51.5074, -0.1278),   # London (start)
        (51.5074, -0.1178),   # East
        (51.5174, -0.1178),   # North
        (51.5174, -0.1278),   # West
        (51.5074, -0.1278),   # Back to start
    ]


@pytest.fixture
def cardinal_bearing_points():
    """Points for testing cardinal directions (N, E, S, W)."""
    # Origin point
    origin = (51.5074, -0.1278)
    return {
        'origin': origin,
        # North is +latitude
        'north': (51.5174, -0.1278),
        # East is +longitude
        'east': (51.5074, -0.1178),
        # South is -latitude
        'south': (51.4974, -0.1278),
        # West is -longitude
        'west': (51.5074, -0.1378),
    }


@pytest.fixture
def fake_clock():
    """Manually advanced monotonic clock."""
    class FakeClock:
        def __init__(self):
            self.now = 1000.0

        def __call__(self):
            return self.now

        def advance(self, seconds):
            self.now += seconds

    return FakeClock()
