# sjcam/session.py
"""Session state machine for downloading media over the control channel.

The camera accepts only one outstanding request and rejects commands sent back
to back, so every outbound request is issued from the handler of the previous
response. Download cycle after the listing:

    BatteryInfo ─► PermitReceiver ─► GetFile ─► (data channel) ─► BatteryInfo ...

BatteryInfo is used as a harmless pacing step between transfers. The cycle ends
when PermitReceiver succeeds with an empty queue.
"""

import logging
import os
from collections import deque
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Callable, Deque, Iterable, List, Optional, Tuple, Union

import config
from sjcam.dispatcher import DispatchOutcome, MessageDispatcher
from sjcam.protocol.constants import MessageType, ResultCode, describe_message_type, describe_result_code
from sjcam.protocol.messages import (
    RECEIVER_PROTOCOLS,
    BatteryInfoRequest,
    BatteryInfoResponse,
    CameraInfoRequest,
    CameraInfoResponse,
    DecodeError,
    GetFileRequest,
    GetFileResponse,
    MediaListRequest,
    MediaListResponse,
    PermitReceiverRequest,
    PermitReceiverResponse,
    Response,
    TokenRequest,
    TokenResponse,
    parse_media_entry,
    remote_media_path,
)


class SessionError(RuntimeError):
    """Raised on misuse of the session, e.g. a request without a token."""


class SessionPhase(Enum):
    UNAUTHENTICATED = auto()
    AUTHENTICATING = auto()
    AUTHENTICATED = auto()
    LISTING = auto()
    READY_TO_TRANSFER = auto()
    AWAITING_RESERVATION = auto()
    TRANSFERRING = auto()
    DRAINING = auto()
    DONE = auto()
    ABORTED = auto()

    @property
    def is_terminal(self) -> bool:
        return self in (SessionPhase.DONE, SessionPhase.ABORTED)


@dataclass
class MediaDescriptor:
    filename: str
    size: int
    offset: int = 0

    @property
    def remaining(self) -> int:
        return self.size - self.offset


@dataclass
class SessionState:
    phase: SessionPhase = SessionPhase.UNAUTHENTICATED
    token: Optional[int] = None
    media_folder: Optional[str] = None
    queue: Deque[MediaDescriptor] = field(default_factory=deque)
    listed: bool = False
    camera_info: Optional[CameraInfoResponse] = None
    battery: Optional[BatteryInfoResponse] = None
    completed: int = 0
    failed: int = 0
    skipped: int = 0


def local_media_path(media_dir: Union[str, Path], filename: str) -> Path:
    return Path(media_dir) / filename


def _local_size(path: Path) -> int:
    try:
        return os.stat(path).st_size
    except FileNotFoundError:
        return 0


def build_download_queue(
    entries: Iterable[str],
    media_dir: Union[str, Path],
    logger: Optional[logging.Logger] = None,
) -> List[MediaDescriptor]:
    """Compare listing entries with the local mirror and return what to fetch.

    Listing order is kept. A local file of the same size is complete, a
    larger one is left alone, a smaller one is resumed from its current size.
    """
    logger = logger or logging.getLogger(__name__)
    queue = []
    for index, entry in enumerate(entries, start=1):
        logger.info(f"{index:03d}. {entry}")
        try:
            filename, size = parse_media_entry(entry)
        except DecodeError as e:
            logger.warning(f"   - skip: {e}")
            continue

        local_size = _local_size(local_media_path(media_dir, filename))
        if local_size == size:
            logger.info("   - skip: already downloaded")
            continue
        if local_size > size:
            logger.warning(f"   - skip: local size {local_size} > remote {size}")
            continue

        descriptor = MediaDescriptor(filename=filename, size=size, offset=local_size)
        if local_size:
            logger.info(f"   - queued {descriptor.remaining} bytes for download (resume at {local_size})")
        else:
            logger.info("   - queued for download")
        queue.append(descriptor)
    return queue


class SessionController:
    """
    Drives one download session from token acquisition to an empty queue.

    All input arrives through the ``on_*`` handlers wired into the
    dispatcher. Each handler updates ``self.state`` and issues at most one
    request through ``send``. File transfers run synchronously inside
    ``on_get_file``; no control message is read while a file is received.
    """

    def __init__(
        self,
        send: Callable[[object], None],
        receiver,
        local_address: str,
        data_address: Tuple[str, int],
        media_dir: Union[str, Path] = config.MEDIA_DIR,
        proto: str = config.RECEIVER_PROTO,
        logger=None,
    ):
        if proto not in RECEIVER_PROTOCOLS:
            raise ValueError(f"Receiver proto must be one of {RECEIVER_PROTOCOLS}, got {proto!r}")
        self.send = send
        self.receiver = receiver
        self.local_address = local_address
        self.data_address = data_address
        self.media_dir = Path(media_dir)
        self.proto = proto
        self.logger = logger or logging.getLogger(__name__)
        self.state = SessionState()
        self._dispatcher: Optional[MessageDispatcher] = None

    @property
    def phase(self) -> SessionPhase:
        return self.state.phase

    @property
    def running(self) -> bool:
        return not self.state.phase.is_terminal

    @property
    def dispatcher(self) -> MessageDispatcher:
        if self._dispatcher is None:
            self._dispatcher = MessageDispatcher(
                generic_error=self.on_generic_error,
                unsupported=self.on_unsupported,
                no_handler=self.on_no_handler,
                error=self.on_error,
                handlers={
                    MessageType.TOKEN: self.on_token,
                    MessageType.CAMERA_INFO: self.on_camera_info,
                    MessageType.MEDIA_LIST: self.on_media_list,
                    MessageType.BATTERY_INFO: self.on_battery_info,
                    MessageType.PERMIT_RECEIVER: self.on_permit_receiver,
                    MessageType.GET_FILE: self.on_get_file,
                },
                logger=self.logger,
            )
        return self._dispatcher

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Send the token request that opens the session."""
        self._set_phase(SessionPhase.AUTHENTICATING, "session start")
        self._send(TokenRequest())

    def handle(self, raw) -> DispatchOutcome:
        return self.dispatcher.dispatch(raw)

    def run(self, channel) -> SessionState:
        """Start the session and process responses until it terminates.

        ``channel.receive()`` must block for the next raw document. Transport
        errors it raises end the session and propagate to the caller.
        """
        self.start()
        while self.running:
            self.handle(channel.receive())
        self.logger.info(
            f"[SESSION] Finished in {self.state.phase.name}: "
            f"{self.state.completed} saved, {self.state.failed} failed, {self.state.skipped} skipped"
        )
        return self.state

    def _set_phase(self, new_phase: SessionPhase, reason: str = "") -> None:
        if self.state.phase != new_phase:
            self.logger.info(f"[STATE] {self.state.phase.name} → {new_phase.name} ({reason})")
            self.state.phase = new_phase

    def _terminate(self, phase: SessionPhase, message: str) -> None:
        if phase == SessionPhase.DONE:
            self.logger.info(f"[SESSION] {message}")
        else:
            self.logger.error(f"[SESSION] {message}")
        self._set_phase(phase, "terminated")

    def _send(self, request) -> bool:
        if self.state.phase.is_terminal:
            self.logger.warning(
                f"[SESSION] Session is {self.state.phase.name}, not sending {type(request).__name__}"
            )
            return False
        if not isinstance(request, TokenRequest) and self.state.token is None:
            raise SessionError(f"{type(request).__name__} requires a session token")
        self.logger.debug(f"[SESSION] Sending {type(request).__name__}")
        self.send(request)
        return True

    def _ignore_if_terminal(self, what: str) -> bool:
        if self.state.phase.is_terminal:
            self.logger.debug(f"[SESSION] Ignoring {what} after session end")
            return True
        return False

    # ------------------------------------------------------------------
    # Diagnostic handlers
    # ------------------------------------------------------------------

    def on_generic_error(self, description: str) -> None:
        self.logger.error(f"[DISPATCH] {description}")

    def on_unsupported(self, raw: str) -> None:
        self.logger.warning(f"[DISPATCH] Unsupported: {raw}")

    def on_no_handler(self, handler_name: str, raw: str) -> None:
        self.logger.warning(f"[DISPATCH] NoHandled({handler_name}): {raw}")

    # ------------------------------------------------------------------
    # Protocol handlers
    # ------------------------------------------------------------------

    def on_error(self, response: Response) -> None:
        if self._ignore_if_terminal("error response"):
            return

        if response.rval == ResultCode.INVALID_TOKEN:
            self.logger.warning(
                f"[SESSION] Token rejected on {describe_message_type(response.msg_id)}, requesting a new one"
            )
            self.state.token = None
            self._set_phase(SessionPhase.AUTHENTICATING, "token invalidated")
            self._send(TokenRequest())
            return

        if response.rval == ResultCode.CAMERA_NOT_READY:
            self._terminate(
                SessionPhase.ABORTED,
                "Camera is not ready (recording, in a menu or busy). Stop it and run again.",
            )
            return

        if response.msg_id == MessageType.MEDIA_LIST and response.rval == ResultCode.INVALID_ARGUMENTS:
            self._terminate(SessionPhase.DONE, "Nothing to save: media storage is empty")
            return

        if response.msg_id == MessageType.GET_FILE and response.rval == ResultCode.FILE_NOT_FOUND:
            missing = self.state.queue[0].filename if self.state.queue else "<unknown>"
            self._terminate(
                SessionPhase.ABORTED,
                f"Device reports that {missing} does not exist in "
                f"{self.state.media_folder}/{config.MEDIA_SUBFOLDER}",
            )
            return

        # Undocumented combination: no safe recovery, the session waits
        self.logger.error(
            f"[SESSION] Unknown Error: msg_id={describe_message_type(response.msg_id)} "
            f"rval={describe_result_code(response.rval)}"
        )

    def on_token(self, response: TokenResponse) -> None:
        if self._ignore_if_terminal("token"):
            return
        self.state.token = response.token
        self.logger.info(f"[SESSION] ✓ Token acquired: {response.token}")
        self._set_phase(SessionPhase.AUTHENTICATED, "token received")
        self._send(CameraInfoRequest(self.state.token))

    def on_camera_info(self, info: CameraInfoResponse) -> None:
        if self._ignore_if_terminal("camera info"):
            return
        self.state.camera_info = info
        self.state.media_folder = info.media_folder
        self.logger.info(
            f"[SESSION] Your device is {info.brand} {info.model} (Chip: {info.chip}) "
            f"FW {info.firmware_version} API {info.api_version}"
        )
        self.logger.info(f"[SESSION] Media Folder: {info.media_folder}")
        self.logger.info(f"[SESSION] Event Folder: {info.event_folder}")

        if self.state.listed:
            # Re-authenticated mid-session, the queue already exists
            self._set_phase(SessionPhase.READY_TO_TRANSFER, "re-authenticated")
            self._send(BatteryInfoRequest(self.state.token))
            return

        self._set_phase(SessionPhase.LISTING, "camera info received")
        self._send(MediaListRequest(self.state.token))

    def on_media_list(self, media_list: MediaListResponse) -> None:
        if self._ignore_if_terminal("media list"):
            return
        if self.state.listed:
            self.logger.warning("[SESSION] Unexpected second media list, ignoring")
            return

        self.logger.info("[SESSION] Media on device:")
        queue = build_download_queue(media_list.media, self.media_dir, self.logger)
        self.state.queue.extend(queue)
        self.state.listed = True
        self.state.skipped = len(media_list.media) - len(queue)
        self.logger.info(f"[Index {media_list.index} Total {media_list.total}]")
        self.logger.info(f"[SESSION] Files to save: {len(self.state.queue)}")

        self._set_phase(SessionPhase.READY_TO_TRANSFER, "queue built")
        self._send(BatteryInfoRequest(self.state.token))

    def on_battery_info(self, battery: BatteryInfoResponse) -> None:
        if self._ignore_if_terminal("battery info"):
            return
        self.state.battery = battery
        self.logger.info(f"[SESSION] Power: {battery.charge_percent}% (source: {battery.power_supply})")

        if not self.state.listed:
            self.logger.warning("[SESSION] Battery info before media list, not reserving receiver")
            return

        self._set_phase(SessionPhase.AWAITING_RESERVATION, "battery info received")
        self._send(PermitReceiverRequest(self.state.token, self.local_address, self.proto))

    def on_permit_receiver(self, response: PermitReceiverResponse) -> None:
        if self._ignore_if_terminal("permit receiver"):
            return
        self.logger.info(f"[SESSION] Address {self.local_address} set as reserved successfully")

        if not self.state.queue:
            self._terminate(SessionPhase.DONE, "All files saved. Have a good day!")
            return

        head = self.state.queue[0]
        remote_path = remote_media_path(self.state.media_folder, head.filename)
        self.logger.info(
            f"[SESSION] Download file: {remote_path} (offset {head.offset}, {len(self.state.queue)} left)"
        )
        self._set_phase(SessionPhase.TRANSFERRING, head.filename)
        self._send(GetFileRequest(self.state.token, head.offset, remote_path))

    def on_get_file(self, response: GetFileResponse) -> None:
        if self._ignore_if_terminal("get file"):
            return
        if not self.state.queue:
            self.logger.warning("[SESSION] GetFile response with an empty queue, ignoring")
            return

        head = self.state.queue[0]
        total = response.total_size
        offset = total - response.remaining_size
        if not 0 <= offset <= total:
            self.logger.warning(
                f"[SESSION] rem_size {response.remaining_size} does not fit size {total}, "
                f"clamping offset"
            )
            offset = min(max(offset, 0), total)
        if offset != head.offset:
            self.logger.warning(
                f"[SESSION] Camera streams {head.filename} from {offset}, queued offset was {head.offset}"
            )
        if total != head.size:
            self.logger.warning(
                f"[SESSION] Camera reports {total} bytes for {head.filename}, listing said {head.size}"
            )

        local_path = local_media_path(self.media_dir, head.filename)
        try:
            outcome = self.receiver.receive(self.data_address, local_path, offset, total)
        finally:
            self.state.queue.popleft()
            self.logger.info(f"[SESSION] Remove {head.filename!r} from download queue")

        if outcome.ok:
            self.state.completed += 1
        else:
            self.state.failed += 1
            self.logger.warning(
                f"[SESSION] {head.filename} incomplete ({outcome.status.name}), run again to resume"
            )

        self._set_phase(SessionPhase.DRAINING, "transfer finished")
        self._send(BatteryInfoRequest(self.state.token))
