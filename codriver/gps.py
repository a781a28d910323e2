"""GPS telemetry: snapshot type and NMEA serial reader."""

import logging
import time
from dataclasses import dataclass
from typing import Optional, Protocol

import serial

from utils.conversions import knots_to_mph
from config import CODRIVER_GPS_BAUDRATE, CODRIVER_GPS_PORT

logger = logging.getLogger('tramo.gps')


@dataclass(frozen=True)
class TelemetrySnapshot:
    lat: float
    lon: float
    heading: float  # degrees, 0 = north, clockwise
    speed_mph: float
    timestamp: float  # time.monotonic() at read


class TelemetrySource(Protocol):
    """Anything that can produce position fixes (GPS, simulator, replay)."""

    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    def read_position(self) -> Optional[TelemetrySnapshot]: ...


def nmea_checksum(body: str) -> str:
    """XOR of every character between '$' and '*', as two hex digits."""
    checksum = 0
    for char in body:
        checksum ^= ord(char)
    return f"{checksum:02X}"


def parse_nmea_coord(value: str, hemisphere: str) -> float:
    """
    Convert an NMEA DDMM.MMMM / DDDMM.MMMM coordinate to decimal degrees.

    Minutes are always the two digits before the decimal point, so latitude
    and longitude share one parser.
    """
    dot = value.find(".")
    if dot < 0:
        dot = len(value)
    degrees = float(value[:dot - 2]) if dot > 2 else 0.0
    minutes = float(value[dot - 2:])
    result = degrees + minutes / 60.0
    if hemisphere in ("S", "W"):
        result = -result
    return result


def parse_rmc(sentence: str, timestamp: Optional[float] = None) -> Optional[TelemetrySnapshot]:
    """
    Parse a GPRMC/GNRMC sentence into a snapshot.

    Format: $GPRMC,time,status,lat,N/S,lon,E/W,speed,course,date,mag,mode*checksum

    Returns:
        TelemetrySnapshot, or None for no fix, bad checksum or garbage
    """
    if "*" not in sentence:
        return None
    data_part, checksum = sentence.split("*", 1)
    if nmea_checksum(data_part[1:]) != checksum.strip().upper():
        return None

    parts = data_part.split(",")
    if len(parts) < 10 or parts[2] != "A":  # A = valid fix
        return None

    try:
        if not parts[3] or not parts[5]:
            return None
        lat = parse_nmea_coord(parts[3], parts[4])
        lon = parse_nmea_coord(parts[5], parts[6])
        speed_knots = float(parts[7]) if parts[7] else 0.0
        heading = float(parts[8]) if parts[8] else 0.0
    except (ValueError, IndexError):
        return None

    return TelemetrySnapshot(
        lat=lat,
        lon=lon,
        heading=heading % 360.0,
        speed_mph=knots_to_mph(speed_knots),
        timestamp=time.monotonic() if timestamp is None else timestamp,
    )


class GPSReader:
    """Reads NMEA data from a GPS module via serial."""

    # Partial sentence kept between reads is capped (no NMEA line is this long)
    MAX_BUFFER = 1024

    def __init__(self, port: str = CODRIVER_GPS_PORT, baudrate: int = CODRIVER_GPS_BAUDRATE):
        self.port = port
        self.baudrate = baudrate
        self._serial: Optional[serial.Serial] = None
        self._buffer = ""

    def connect(self) -> None:
        self._serial = serial.Serial(self.port, self.baudrate, timeout=1)
        self._buffer = ""
        logger.info("GPS connected on %s at %d baud", self.port, self.baudrate)

    def disconnect(self) -> None:
        if self._serial:
            self._serial.close()
            self._serial = None
        self._buffer = ""

    def read_position(self) -> Optional[TelemetrySnapshot]:
        """
        Drain everything the port has buffered and return the newest fix.

        Complete sentences are split on CRLF; a trailing partial sentence is
        kept for the next call. Returns None if no RMC with a fix arrived
        since the last read.
        """
        if not self._serial:
            return None

        try:
            waiting = self._serial.in_waiting
            if waiting <= 0:
                return None
            data = self._serial.read(waiting)
        except serial.SerialException as e:
            logger.warning("GPS read failed: %s", e)
            return None

        self._buffer += data.decode("ascii", errors="ignore")
        latest = None
        while "\r\n" in self._buffer:
            line, self._buffer = self._buffer.split("\r\n", 1)
            line = line.strip()
            if line.startswith("$GPRMC") or line.startswith("$GNRMC"):
                fix = parse_rmc(line)
                if fix is not None:
                    latest = fix
        if len(self._buffer) > self.MAX_BUFFER:
            logger.debug("Discarding %d bytes of unterminated NMEA", len(self._buffer))
            self._buffer = ""
        return latest
