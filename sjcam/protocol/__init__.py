"""Control-channel protocol of the camera.

Message ids, result codes and the JSON request/response documents exchanged
on the control port.
"""

from .constants import MessageType, ResultCode
from .messages import (
    DecodeError,
    Response,
    TokenRequest,
    CameraInfoRequest,
    BatteryInfoRequest,
    MediaListRequest,
    PermitReceiverRequest,
    GetFileRequest,
    TokenResponse,
    CameraInfoResponse,
    BatteryInfoResponse,
    MediaListResponse,
    GetFileResponse,
    PermitReceiverResponse,
    parse_media_entry,
    remote_media_path,
)

__all__ = [
    'MessageType',
    'ResultCode',
    'DecodeError',
    'Response',
    'TokenRequest',
    'CameraInfoRequest',
    'BatteryInfoRequest',
    'MediaListRequest',
    'PermitReceiverRequest',
    'GetFileRequest',
    'TokenResponse',
    'CameraInfoResponse',
    'BatteryInfoResponse',
    'MediaListResponse',
    'GetFileResponse',
    'PermitReceiverResponse',
    'parse_media_entry',
    'remote_media_path',
]
