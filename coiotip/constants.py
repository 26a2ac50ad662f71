# CoAP / CoIoT protocol constants
# Reference: RFC 7252 (CoAP), Shelly CoIoT v1 ("cit") vendor extensions

COIOT_PORT = 5683
COIOT_MULTICAST = "224.0.1.187"

# Header
HEADER_SIZE = 4
VERSION = 1
PAYLOAD_MARKER = 0xFF
MAX_TOKEN_LENGTH = 8

# Message types (2 bits)
TYPE_CON = 0
TYPE_NON = 1
TYPE_ACK = 2
TYPE_RST = 3

# Codes (class.detail packed as ccc ddddd)
CODE_EMPTY = 0x00
CODE_GET = 0x01
CODE_CONTENT = 0x45  # 2.05
CODE_NOT_FOUND = 0x84  # 4.04
CODE_COIOT_STATUS = 0x1E  # 0.30 - unsolicited CoIoT status publish

# Option numbers
OPTION_URI_HOST = 3
OPTION_OBSERVE = 6
OPTION_URI_PORT = 7
OPTION_URI_PATH = 11
OPTION_CONTENT_FORMAT = 12

# CoIoT vendor options
OPTION_GLOBAL_DEVID = 3332  # "<type>#<mac>#<version>"
OPTION_STATUS_VALIDITY = 3412
OPTION_STATUS_SERIAL = 3420

# Extended option delta/length nibbles
OPTION_EXT_8BIT = 13
OPTION_EXT_16BIT = 14
OPTION_EXT_RESERVED = 15

# CoIoT resources
URI_BASE = "/cit/"
URI_DEVDESC = "/cit/d"
URI_DEVSTATUS = "/cit/s"

# Payload tags used when a message carries no URI path
TAG_BLOCKS = '"blk"'
TAG_GENERIC = '"G"'

# Exchange lifetime used for CoAP-level duplicate detection (seconds)
EXCHANGE_LIFETIME = 247.0
DEFAULT_REQUEST_TIMEOUT = 5.0
# Minimum spacing of timeout sweeps, independent of traffic (seconds)
SWEEP_INTERVAL = 1.0
