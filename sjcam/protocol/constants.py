# sjcam/protocol/constants.py
from enum import IntEnum


class MessageType(IntEnum):
    NONE = 0
    SET_TIME = 2          # Set camera clock
    FORMAT = 4            # Sent when the user taps 'Format' in the settings menu
    INFO = 7              # Events: record start/stop, menu enter/leave, ...
    CAMERA_INFO = 11      # Brand, model, firmware, media folder
    BATTERY_INFO = 13     # Power source and charge level
    TOKEN = 257           # Acquire session token
    PERMIT_RECEIVER = 261 # Reserve local address before a download
    GET_FILE = 1285       # Start file transfer on the data channel
    CLOSED = 1793         # Another client took the token
    MEDIA_LIST = 2049     # Images and videos on the card
    SET_RTSP_OFF = 2051
    SET_RTSP_ON = 2052


class ResultCode(IntEnum):
    SUCCESS = 0
    INVALID_ARGUMENTS = -1
    INVALID_TOKEN = -4
    CAMERA_NOT_READY = -14
    FILE_NOT_FOUND = -25


def describe_message_type(value: int) -> str:
    """Readable name for a msg_id, including ids we have no constant for."""
    try:
        return f"{MessageType(value).name} ({value})"
    except ValueError:
        return f"UNKNOWN ({value})"


def describe_result_code(value: int) -> str:
    try:
        return f"{ResultCode(value).name} ({value})"
    except ValueError:
        return f"UNRECOGNIZED ({value})"
