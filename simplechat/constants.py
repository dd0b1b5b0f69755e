# simplechat protocol constants (directives, defaults and fixed strings)

DEFAULT_PORT = 5555
DEFAULT_HOST = "localhost"

# A line starting with this sentinel is a directive, not chat text.
DIRECTIVE_PREFIX = "#"

# Directive words
D_QUIT = "#quit"
D_LOGOFF = "#logoff"
D_CLOSE = "#close"
D_STOP = "#stop"
D_SETHOST = "#sethost"
D_SETPORT = "#setport"
D_LOGIN = "#login"
D_GETHOST = "#gethost"
D_GETPORT = "#getport"
D_START = "#start"

PORT_MIN = 0
PORT_MAX = 65535

# Broadcast formats
LOGGED_ON_SUFFIX = " has logged on."
SERVER_MESSAGE_PREFIX = "SERVER MESSAGE> "

# Prefix the consoles put in front of everything they display.
DISPLAY_PREFIX = "> "

LOGIN_ID_MAX_CHARS = 64

# Wire framing: 4-byte big-endian length header, then a CBOR text string.
FRAME_HEADER_SIZE = 4
MAX_FRAME_BYTES = 64 * 1024

# Largest payload a sender may produce. The gap up to MAX_FRAME_BYTES covers
# the "<id>: " prefix the server adds when rebroadcasting, with an id of up to
# LOGIN_ID_MAX_CHARS characters (at most 4 UTF-8 bytes each).
MAX_MESSAGE_BYTES = MAX_FRAME_BYTES - 1024
