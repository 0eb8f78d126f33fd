#!/usr/bin/env python3
"""Download all media from an SJCAM-style action camera over Wi-Fi.

Files already present in the local media directory are skipped, partial files
are resumed from their current size.
"""

import argparse
import logging
import sys

import config
from sjcam.control_channel import ControlChannel
from sjcam.network import find_local_address
from sjcam.receiver import FileTransferReceiver
from sjcam.session import SessionController, SessionPhase

logger = logging.getLogger("SJCamSync")

EXIT_OK = 0
EXIT_ABORTED = 1
EXIT_CONNECTION = 2
EXIT_INTERRUPTED = 130


def setup_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--camera-ip", default=config.CAM_IP, help="Camera address")
    parser.add_argument("--control-port", type=int, default=config.CONTROL_PORT, help="JSON control port")
    parser.add_argument("--data-port", type=int, default=config.DATA_PORT, help="File data port")
    parser.add_argument("--local-ip", help="Address the camera sends data to (detected if omitted)")
    parser.add_argument("--media-dir", default=config.MEDIA_DIR, help="Local media directory")
    parser.add_argument("--proto", choices=("TCP", "UDP"), default=config.RECEIVER_PROTO,
                        help="Transport announced for the receiver")
    parser.add_argument("--timeout", type=float, default=None,
                        help="Socket timeout in seconds for both channels (default: wait forever)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def run(args: argparse.Namespace) -> int:
    control_address = (args.camera_ip, args.control_port)
    data_address = (args.camera_ip, args.data_port)
    control_timeout = args.timeout if args.timeout is not None else config.CONTROL_TIMEOUT
    data_timeout = args.timeout if args.timeout is not None else config.DATA_TIMEOUT

    local_ip = args.local_ip or find_local_address(args.camera_ip, config.CAMERA_SUBNET_PREFIX)

    logger.info("Hello.")
    logger.info(
        f"Now I connect to {args.camera_ip}:{args.control_port} and try to receive all media "
        f"from {args.camera_ip}:{args.data_port}."
    )
    logger.info(f"And use {local_ip} as source address")

    receiver = FileTransferReceiver(timeout=data_timeout)
    with ControlChannel(control_address, timeout=control_timeout) as channel:
        session = SessionController(
            send=channel.send,
            receiver=receiver,
            local_address=local_ip,
            data_address=data_address,
            media_dir=args.media_dir,
            proto=args.proto,
        )
        state = session.run(channel)

    return EXIT_OK if state.phase == SessionPhase.DONE else EXIT_ABORTED


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        return run(args)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        return EXIT_INTERRUPTED
    except ConnectionError as e:
        logger.error(f"❌ {e}")
        return EXIT_CONNECTION


if __name__ == "__main__":
    sys.exit(main())
