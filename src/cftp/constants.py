from __future__ import annotations

LENGTH_FORMAT = "!H"  # unsigned big-endian length prefix of a control frame
MAX_FRAME_LEN = 0xFFFF

# request kinds
TYPE_INVALID = -1
TYPE_PING = 0
TYPE_FILE = 1
TYPE_CATALOG = 2

# response connection values
CLOSE_CONNECTION = 0
OPEN_CONNECTION = 1

STATUS_OK = 200
STATUS_PARTIAL_CONTENT = 206
STATUS_BAD_REQUEST = 400
STATUS_UNAUTHORIZED = 401
STATUS_NOT_FOUND = 404
STATUS_RANGE_NOT_SATISFIABLE = 416
STATUS_INTERNAL_ERROR = 500

END_OF_STREAM = -1
UNKNOWN_CONTENT_LENGTH = -1

FIELD_TYPE = "type"
FIELD_CONTENT_FILE_ID = "contentFileId"
FIELD_RANGE_START = "rangeStart"
FIELD_RANGE_END = "rangeEnd"
FIELD_AUTHORIZATION = "authorization"
FIELD_CLIENT = "client"
FIELD_CUSTOM_DATA = "customData"
FIELD_PAGE = "page"
FIELD_SIZE = "size"
FIELD_PERSIST_CONNECTION = "persistConnection"

FIELD_STATUS = "status"
FIELD_CONNECTION = "connection"
FIELD_DATE = "date"
FIELD_CONTENT_LENGTH = "contentLength"
FIELD_MD5 = "md5"

DEFAULT_PORT = 9099
DEFAULT_CHUNK_SIZE = 64 * 1024
