# sjcam/protocol/messages.py
"""Request and response documents of the control channel.

Every document is a flat JSON object. Requests carry ``msg_id`` and, except
for the token request, the session ``token``. Responses carry ``rval`` and
``msg_id`` plus a payload whose shape depends on ``msg_id``.

Example exchange:
    >>> TokenRequest().to_dict()
    {'msg_id': 257}
    >>> TokenResponse.from_dict({"rval": 0, "msg_id": 257, "param": 3})
    TokenResponse(rval=0, msg_id=257, token=3)
"""

from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Dict, List, Tuple

import config
from sjcam.protocol.constants import MessageType


RECEIVER_PROTOCOLS = ("TCP", "UDP")


class DecodeError(ValueError):
    """Raised when a document does not have the expected structure."""


def _is_int(value: Any) -> bool:
    # bool is a subclass of int, JSON true/false must not pass as numbers
    return isinstance(value, int) and not isinstance(value, bool)


def _get_int(document: Dict[str, Any], key: str, required: bool = True, default: int = 0) -> int:
    if key not in document:
        if required:
            raise DecodeError(f"missing integer field '{key}'")
        return default
    value = document[key]
    if not _is_int(value):
        raise DecodeError(f"field '{key}' must be an integer, got {type(value).__name__}")
    return value


def _get_text(document: Dict[str, Any], key: str, required: bool = False) -> str:
    if key not in document:
        if required:
            raise DecodeError(f"missing text field '{key}'")
        return ""
    value = document[key]
    if not isinstance(value, str):
        raise DecodeError(f"field '{key}' must be text, got {type(value).__name__}")
    return value


def _parse_decimal(text: str, what: str) -> int:
    stripped = text.strip()
    if not (stripped.isascii() and stripped.isdigit()):
        raise DecodeError(f"{what} must be decimal text, got {text!r}")
    return int(stripped)


# ============================================================================
# Requests
# ============================================================================

@dataclass
class TokenRequest:
    msg_id = MessageType.TOKEN

    def to_dict(self) -> Dict[str, Any]:
        return {"msg_id": int(self.msg_id)}


@dataclass
class _TokenizedRequest:
    token: int

    msg_id = MessageType.NONE

    def to_dict(self) -> Dict[str, Any]:
        return {"msg_id": int(self.msg_id), "token": self.token}


@dataclass
class CameraInfoRequest(_TokenizedRequest):
    msg_id = MessageType.CAMERA_INFO


@dataclass
class BatteryInfoRequest(_TokenizedRequest):
    msg_id = MessageType.BATTERY_INFO


@dataclass
class MediaListRequest(_TokenizedRequest):
    msg_id = MessageType.MEDIA_LIST


@dataclass
class PermitReceiverRequest(_TokenizedRequest):
    """Reserve ``address`` as the receiver of the next data-channel transfer."""
    address: str = ""
    proto: str = "TCP"

    msg_id = MessageType.PERMIT_RECEIVER

    def __post_init__(self):
        if self.proto not in RECEIVER_PROTOCOLS:
            raise ValueError(
                f"PermitReceiverRequest: only {' and '.join(RECEIVER_PROTOCOLS)} allowed to proto, "
                f"got {self.proto!r}"
            )

    def to_dict(self) -> Dict[str, Any]:
        document = super().to_dict()
        document.update({"param": self.address, "type": self.proto})
        return document


@dataclass
class GetFileRequest(_TokenizedRequest):
    """Ask the camera to stream ``path`` from ``offset`` on the data port."""
    offset: int = 0
    path: str = ""

    msg_id = MessageType.GET_FILE

    def to_dict(self) -> Dict[str, Any]:
        document = super().to_dict()
        document.update({"offset": self.offset, "param": self.path})
        return document


# ============================================================================
# Responses
# ============================================================================

@dataclass
class Response:
    """Common envelope, enough to route a message and inspect its result."""
    rval: int
    msg_id: int

    @classmethod
    def from_dict(cls, document: Any) -> "Response":
        if not isinstance(document, dict):
            raise DecodeError(f"envelope must be a JSON object, got {type(document).__name__}")
        msg_id = _get_int(document, "msg_id")
        # Notifications pushed by the camera (msg_id 7) have no rval
        rval = _get_int(document, "rval", required=False, default=0)
        return cls(rval=rval, msg_id=msg_id)


@dataclass
class TokenResponse(Response):
    token: int

    @classmethod
    def from_dict(cls, document: Any) -> "TokenResponse":
        envelope = Response.from_dict(document)
        return cls(envelope.rval, envelope.msg_id, token=_get_int(document, "param"))


@dataclass
class CameraInfoResponse(Response):
    brand: str
    model: str
    chip: str
    api_version: str
    media_folder: str
    event_folder: str
    firmware_version: str

    @classmethod
    def from_dict(cls, document: Any) -> "CameraInfoResponse":
        envelope = Response.from_dict(document)
        return cls(
            envelope.rval,
            envelope.msg_id,
            brand=_get_text(document, "brand"),
            model=_get_text(document, "model"),
            chip=_get_text(document, "chip"),
            api_version=_get_text(document, "api_ver"),
            media_folder=_get_text(document, "media_folder", required=True),
            event_folder=_get_text(document, "event_folder"),
            firmware_version=_get_text(document, "firmwareVersion"),
        )


@dataclass
class BatteryInfoResponse(Response):
    power_supply: str
    charge_percent: int

    @classmethod
    def from_dict(cls, document: Any) -> "BatteryInfoResponse":
        envelope = Response.from_dict(document)
        return cls(
            envelope.rval,
            envelope.msg_id,
            power_supply=_get_text(document, "type"),
            charge_percent=_get_int(document, "param", required=False),
        )


@dataclass
class MediaListResponse(Response):
    index: int
    total: int
    media: List[str]

    @classmethod
    def from_dict(cls, document: Any) -> "MediaListResponse":
        envelope = Response.from_dict(document)
        media = document.get("param", [])
        if not isinstance(media, list) or not all(isinstance(entry, str) for entry in media):
            raise DecodeError("field 'param' must be a list of text entries")
        return cls(
            envelope.rval,
            envelope.msg_id,
            index=_get_int(document, "index", required=False),
            total=_get_int(document, "total", required=False),
            media=list(media),
        )


@dataclass
class GetFileResponse(Response):
    remaining_size: int
    size: str

    @classmethod
    def from_dict(cls, document: Any) -> "GetFileResponse":
        envelope = Response.from_dict(document)
        size = _get_text(document, "size", required=True)
        # Fail here rather than inside the session handler
        _parse_decimal(size, "field 'size'")
        return cls(
            envelope.rval,
            envelope.msg_id,
            remaining_size=_get_int(document, "rem_size"),
            size=size,
        )

    @property
    def total_size(self) -> int:
        """Full size of the file; the camera reports it as decimal text."""
        return _parse_decimal(self.size, "field 'size'")


@dataclass
class PermitReceiverResponse(Response):

    @classmethod
    def from_dict(cls, document: Any) -> "PermitReceiverResponse":
        envelope = Response.from_dict(document)
        return cls(envelope.rval, envelope.msg_id)


# ============================================================================
# Media helpers
# ============================================================================

def parse_media_entry(entry: str) -> Tuple[str, int]:
    """Split a media-list entry ``"name,...,size"`` into ``(name, size)``.

    Only the first and the last comma-delimited fields are meaningful; the
    fields in between vary between firmware versions. The name must be a
    plain file name, it is used as-is below the local media directory.
    """
    fields = entry.split(",")
    name = fields[0].strip()
    if len(fields) < 2 or not name:
        raise DecodeError(f"media entry {entry!r} has no name/size")
    if PurePosixPath(name).name != name or name == ".." or "\\" in name:
        raise DecodeError(f"media entry {entry!r} is not a plain file name")
    return name, _parse_decimal(fields[-1], f"size of media entry {entry!r}")


def remote_media_path(media_folder: str, filename: str) -> str:
    # TODO: MediaListResponse.index probably selects the <N>MEDIA directory on cards with more than one
    return f"{media_folder.rstrip('/')}/{config.MEDIA_SUBFOLDER}/{filename}"
