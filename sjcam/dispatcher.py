# sjcam/dispatcher.py
"""Routing of inbound control-channel documents to typed handlers.

Every call to ``MessageDispatcher.dispatch`` ends in exactly one callback:

    raw text ──► envelope decode ──fail──► generic_error(description)
                      │
                 rval != 0 ──────────────► error(Response) | no_handler("on_error", raw)
                      │
                 unknown msg_id ─────────► unsupported(raw)
                      │
                 payload decode ─fail────► generic_error(description)
                      │
                 handler missing ────────► no_handler("on_<type>", raw)
                      │
                      └──────────────────► handler(typed response)

The three diagnostic callbacks are mandatory and checked when the dispatcher
is built, so a misconfigured session fails before the first request is sent.
"""

import json
import logging
from enum import Enum, auto
from typing import Any, Callable, Dict, NamedTuple, Optional, Type, Union

from sjcam.protocol.constants import MessageType, describe_message_type
from sjcam.protocol.messages import (
    BatteryInfoResponse,
    CameraInfoResponse,
    DecodeError,
    GetFileResponse,
    MediaListResponse,
    PermitReceiverResponse,
    Response,
    TokenResponse,
)


class DispatchOutcome(Enum):
    HANDLED = auto()
    ERROR = auto()
    GENERIC_ERROR = auto()
    UNSUPPORTED = auto()
    NO_HANDLER = auto()


class ResponseKind(NamedTuple):
    response_class: Type[Response]
    handler_name: str


# Message types with a typed payload. Anything else is reported as unsupported.
RESPONSE_KINDS: Dict[MessageType, ResponseKind] = {
    MessageType.TOKEN: ResponseKind(TokenResponse, "on_token"),
    MessageType.CAMERA_INFO: ResponseKind(CameraInfoResponse, "on_camera_info"),
    MessageType.BATTERY_INFO: ResponseKind(BatteryInfoResponse, "on_battery_info"),
    MessageType.MEDIA_LIST: ResponseKind(MediaListResponse, "on_media_list"),
    MessageType.GET_FILE: ResponseKind(GetFileResponse, "on_get_file"),
    MessageType.PERMIT_RECEIVER: ResponseKind(PermitReceiverResponse, "on_permit_receiver"),
}

ERROR_HANDLER_NAME = "on_error"


class MessageDispatcher:
    """Decodes raw envelopes and invokes exactly one registered callback.

    Args:
        generic_error: Called with a description when a document cannot be decoded
        unsupported: Called with the raw text of a message type without a decoder
        no_handler: Called with (handler name, raw text) for a known type nobody handles
        error: Optional handler for envelopes with a non-zero rval
        handlers: Optional mapping of MessageType to typed handlers
    """

    def __init__(
        self,
        generic_error: Callable[[str], Any],
        unsupported: Callable[[str], Any],
        no_handler: Callable[[str, str], Any],
        error: Optional[Callable[[Response], Any]] = None,
        handlers: Optional[Dict[MessageType, Callable[[Any], Any]]] = None,
        logger=None,
    ):
        for name, callback in (
            ("generic_error", generic_error),
            ("unsupported", unsupported),
            ("no_handler", no_handler),
        ):
            if not callable(callback):
                raise ValueError(f"MessageDispatcher: '{name}' callback must be defined")

        self.logger = logger or logging.getLogger(__name__)
        self._generic_error = generic_error
        self._unsupported = unsupported
        self._no_handler = no_handler
        self._error: Optional[Callable[[Response], Any]] = None
        self._handlers: Dict[MessageType, Callable[[Any], Any]] = {}

        if error is not None:
            self.set_error_handler(error)
        for message_type, handler in (handlers or {}).items():
            self.register(message_type, handler)

    def register(self, message_type: MessageType, handler: Callable[[Any], Any]) -> None:
        if message_type not in RESPONSE_KINDS:
            raise ValueError(
                f"No response decoder for {describe_message_type(message_type)}, cannot register handler"
            )
        if not callable(handler):
            raise ValueError(f"Handler for {describe_message_type(message_type)} is not callable")
        self._handlers[MessageType(message_type)] = handler

    def set_error_handler(self, handler: Callable[[Response], Any]) -> None:
        if not callable(handler):
            raise ValueError("Error handler is not callable")
        self._error = handler

    def dispatch(self, raw: Union[str, bytes]) -> DispatchOutcome:
        try:
            document = json.loads(raw)
            envelope = Response.from_dict(document)
        except (ValueError, TypeError) as e:
            # json.JSONDecodeError and DecodeError are both ValueErrors
            self._generic_error(f"Cannot decode envelope: {e}")
            return DispatchOutcome.GENERIC_ERROR

        if envelope.rval != 0:
            if self._error is None:
                self._no_handler(ERROR_HANDLER_NAME, self._text(raw))
                return DispatchOutcome.NO_HANDLER
            self._error(envelope)
            return DispatchOutcome.ERROR

        kind = RESPONSE_KINDS.get(envelope.msg_id)
        if kind is None:
            self._unsupported(self._text(raw))
            return DispatchOutcome.UNSUPPORTED

        try:
            response = kind.response_class.from_dict(document)
        except DecodeError as e:
            self._generic_error(f"Cannot decode {describe_message_type(envelope.msg_id)} payload: {e}")
            return DispatchOutcome.GENERIC_ERROR

        handler = self._handlers.get(envelope.msg_id)
        if handler is None:
            self._no_handler(kind.handler_name, self._text(raw))
            return DispatchOutcome.NO_HANDLER

        self.logger.debug(f"[DISPATCH] {describe_message_type(envelope.msg_id)} → {kind.handler_name}")
        handler(response)
        return DispatchOutcome.HANDLED

    @staticmethod
    def _text(raw: Union[str, bytes]) -> str:
        if isinstance(raw, bytes):
            return raw.decode("utf-8", errors="replace")
        return raw
