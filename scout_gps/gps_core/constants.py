"""GPS/NMEA/UBX protocol constants and engine defaults."""

# Speed conversion factors
KMH_PER_KNOT = 1.852

# Fix mode mapping (from NMEA GSA sentence)
FIX_MODE_MAP = {
    1: "No fix",
    2: "2D",
    3: "3D",
}

# NMEA framing
NMEA_START = b"$"
NMEA_END = b"\n"
MAX_SENTENCE_LENGTH = 120  # NMEA-0183 allows 82, receivers in practice stay well below

# UBX framing
UBX_SYNC = b"\xb5\x62"
UBX_HEADER_LENGTH = 6  # sync(2) + class + id + length(2)
UBX_MAX_PAYLOAD = 4096

# Signal strength
STRONG_SIGNAL_SNR_DB = 30.0

# GSV satellite groups not refreshed within this window are dropped
SATELLITE_GROUP_TTL = 5.0

# Serial defaults
DEFAULT_BAUD_RATE = 9600
CANDIDATE_BAUD_RATES = (4800, 9600, 38400, 115200)
DEFAULT_PROBE_TIMEOUT = 3.0
DEFAULT_READ_TIMEOUT = 0.2
DEFAULT_READ_SIZE = 512
DEFAULT_WRITE_TIMEOUT = 2.0
DEFAULT_NMEA_HISTORY = 100

# Sampling / liveness
DEFAULT_SAMPLE_INTERVAL = 0.5
DEFAULT_STALE_AFTER = 3.0

# Optimization workflow timing
DEFAULT_IDENTIFY_TIMEOUT = 5.0
DEFAULT_ACK_TIMEOUT = 2.0
DEFAULT_BASELINE_DURATION = 30.0
DEFAULT_STABILIZATION_DURATION = 30.0
DEFAULT_RESULT_DURATION = 30.0

# Test history kept in memory
RECENT_RESULTS_LIMIT = 50
