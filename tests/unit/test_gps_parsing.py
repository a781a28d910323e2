"""
Unit tests for GPS NMEA sentence parsing.
Tests the parsing logic without requiring actual serial hardware.
"""

import pytest
import serial
from unittest.mock import patch

from codriver.gps import GPSReader, nmea_checksum, parse_nmea_coord, parse_rmc


class TestNMEAChecksum:
    """Tests for NMEA checksum calculation."""

    @pytest.mark.unit
    def test_checksum_calculation(self):
        """Test checksum calculation for known sentences."""
        test_cases = [
            ("GPGGA,123519,4807.038,N,01131.000,E,1,08,0.9,545.4,M,47.0,M,,", "4F"),
            ("GPRMC,123519,A,4807.038,N,01131.000,E,022.4,084.4,230394,003.1,W", "6A"),
        ]
        for body, expected in test_cases:
            assert nmea_checksum(body) == expected


class TestRMCParsing:
    """Tests for GPRMC sentence parsing."""

    @pytest.mark.unit
    def test_parse_valid_rmc(self):
        """Test parsing a valid RMC sentence."""
        sentence = "$GPRMC,123519,A,4807.038,N,01131.000,E,022.4,084.4,230394,003.1,W*6A"
        fix = parse_rmc(sentence, timestamp=12.5)

        assert fix is not None
        # Latitude: 48 + 07.038/60 = 48.1173
        assert pytest.approx(fix.lat, abs=0.0001) == 48.1173
        # Longitude: 11 + 31.000/60 = 11.5167
        assert pytest.approx(fix.lon, abs=0.0001) == 11.5167
        # Speed: 22.4 knots = 25.78 mph
        assert pytest.approx(fix.speed_mph, abs=0.01) == 25.78
        assert pytest.approx(fix.heading, abs=0.1) == 84.4
        assert fix.timestamp == 12.5

    @pytest.mark.unit
    def test_parse_rmc_southern_hemisphere(self):
        """Test parsing RMC with southern latitude."""
        sentence = "$GPRMC,123519,A,3352.038,S,15112.000,E,010.0,180.0,230394,,,*2C"
        fix = parse_rmc(sentence)

        # Southern latitude should be negative
        assert fix.lat < 0
        assert pytest.approx(fix.lat, abs=0.0001) == -33.8673

    @pytest.mark.unit
    def test_parse_rmc_western_longitude(self):
        """Test parsing RMC with western longitude."""
        sentence = "$GPRMC,123519,A,5130.444,N,00007.670,W,000.0,000.0,230394,,,*24"
        fix = parse_rmc(sentence)

        # Western longitude should be negative
        assert fix.lon < 0
        assert pytest.approx(fix.lon, abs=0.0001) == -0.1278
        assert fix.speed_mph == 0.0

    @pytest.mark.unit
    def test_parse_rmc_no_fix(self):
        """Test parsing RMC with no fix (status V)."""
        assert parse_rmc("$GPRMC,123519,V,,,,,,,230394,,,*28") is None

    @pytest.mark.unit
    def test_parse_rmc_invalid_checksum(self):
        """Test that invalid checksum is rejected."""
        # Wrong checksum (should be 6A, not FF)
        sentence = "$GPRMC,123519,A,4807.038,N,01131.000,E,022.4,084.4,230394,003.1,W*FF"
        assert parse_rmc(sentence) is None

    @pytest.mark.unit
    def test_parse_rmc_missing_checksum(self):
        """Test that sentence without checksum is rejected."""
        sentence = "$GPRMC,123519,A,4807.038,N,01131.000,E,022.4,084.4,230394,003.1,W"
        assert parse_rmc(sentence) is None

    @pytest.mark.unit
    def test_parse_gnrmc_variant(self):
        """Test parsing GNRMC (multi-constellation) variant."""
        sentence = "$GNRMC,123519,A,4807.038,N,01131.000,E,022.4,084.4,230394,003.1,W*74"
        fix = parse_rmc(sentence)

        assert pytest.approx(fix.lat, abs=0.0001) == 48.1173


class TestCoordinateConversion:
    """Tests for NMEA coordinate format conversion."""

    @pytest.mark.unit
    @pytest.mark.parametrize("value,hemisphere,expected", [
        ("4807.038", "N", 48.1173),    # DDMM.MMMM
        ("01131.000", "E", 11.5167),   # DDDMM.MMMM
        ("5130.444", "N", 51.5074),    # London
        ("00007.670", "W", -0.1278),   # West is negative
        ("3352.038", "S", -33.8673),   # South is negative
    ])
    def test_parse_nmea_coord(self, value, hemisphere, expected):
        assert pytest.approx(parse_nmea_coord(value, hemisphere), abs=0.0001) == expected


def nmea(body):
    """Full sentence with checksum and line ending, as the module sends it."""
    return f"${body}*{nmea_checksum(body)}\r\n".encode("ascii")


def rmc(lat):
    return nmea(f"GPRMC,123519,A,{lat},N,00007.670,W,030.0,090.0,230394,,")


GGA = nmea("GPGGA,123519,4807.038,N,01131.000,E,1,08,0.9,545.4,M,47.0,M,,")


class TestGPSReader:
    """Tests for the serial reader with the port mocked out."""

    @pytest.fixture
    def reader(self):
        with patch('codriver.gps.serial.Serial') as mock_serial:
            reader = GPSReader(port="/dev/null", baudrate=9600)
            reader.connect()
            yield reader, mock_serial.return_value

    @staticmethod
    def feed(port, data):
        port.in_waiting = len(data)
        port.read.return_value = data

    @pytest.mark.unit
    def test_reads_rmc(self, reader):
        gps, port = reader
        self.feed(port, b"$GPRMC,123519,A,5130.444,N,00007.670,W,000.0,000.0,230394,,,*24\r\n")
        fix = gps.read_position()
        assert pytest.approx(fix.lat, abs=0.0001) == 51.5074
        port.read.assert_called_once_with(len(port.read.return_value))

    @pytest.mark.unit
    def test_newest_fix_wins(self, reader):
        """A backlog of sentences yields the last RMC, not the first."""
        gps, port = reader
        self.feed(port, rmc("5130.0000") + GGA + rmc("5131.0000"))

        fix = gps.read_position()

        assert pytest.approx(fix.lat, abs=0.0001) == 51.5167
        assert pytest.approx(fix.speed_mph, abs=0.1) == 34.5

    @pytest.mark.unit
    def test_partial_sentence_kept(self, reader):
        gps, port = reader
        sentence = rmc("5131.0000")
        self.feed(port, rmc("5130.0000") + sentence[:20])
        first = gps.read_position()

        self.feed(port, sentence[20:])
        second = gps.read_position()

        assert pytest.approx(first.lat, abs=0.0001) == 51.5
        assert pytest.approx(second.lat, abs=0.0001) == 51.5167

    @pytest.mark.unit
    def test_nothing_waiting(self, reader):
        gps, port = reader
        port.in_waiting = 0
        assert gps.read_position() is None
        port.read.assert_not_called()

    @pytest.mark.unit
    def test_ignores_other_sentences(self, reader):
        gps, port = reader
        self.feed(port, GGA)
        assert gps.read_position() is None

    @pytest.mark.unit
    def test_no_fix_does_not_hide_earlier_fix(self, reader):
        gps, port = reader
        self.feed(port, rmc("5130.0000") + nmea("GPRMC,123520,V,,,,,,,230394,,"))
        assert pytest.approx(gps.read_position().lat, abs=0.0001) == 51.5

    @pytest.mark.unit
    def test_runaway_garbage_discarded(self, reader):
        gps, port = reader
        self.feed(port, b"x" * (GPSReader.MAX_BUFFER + 1))
        assert gps.read_position() is None

        self.feed(port, rmc("5130.0000"))
        assert gps.read_position() is not None

    @pytest.mark.unit
    def test_serial_error_returns_none(self, reader):
        gps, port = reader
        port.in_waiting = 10
        port.read.side_effect = serial.SerialException("device unplugged")
        assert gps.read_position() is None

    @pytest.mark.unit
    def test_disconnect_closes_port(self, reader):
        gps, port = reader
        gps.disconnect()
        port.close.assert_called_once()
        assert gps.read_position() is None

    @pytest.mark.unit
    def test_not_connected(self):
        assert GPSReader(port="/dev/null").read_position() is None

    @pytest.mark.unit
    def test_connect_opens_configured_port(self):
        with patch('codriver.gps.serial.Serial') as mock_serial:
            GPSReader(port="/dev/ttyACM0", baudrate=38400).connect()
        mock_serial.assert_called_once_with("/dev/ttyACM0", 38400, timeout=1)
