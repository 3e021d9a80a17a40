"""Command-line entry point: pin-upload [options] PATH"""

import argparse
import logging
import os
import signal
import sys
import threading
import time
from types import FrameType
from typing import Any, NoReturn

from pin_upload.config import get_package_name, get_package_version, get_settings
from pin_upload.services import gateway_service, metadata_service
from pin_upload.services.task_pool import CancellationToken
from pin_upload.services.upload_manager import UploadManager
from pin_upload.services.utils import format_duration

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

EXIT_OK = 0
EXIT_STARTUP_ERROR = 1
EXIT_JOB_ERRORS = 2
EXIT_INTERRUPTED = 130


class UsageError(Exception):
    """Bad command-line arguments."""


class _ArgumentParser(argparse.ArgumentParser):
    """Argument errors raise UsageError so they share the startup exit code."""

    def error(self, message: str) -> NoReturn:
        raise UsageError(message)


class InterruptHandler:
    """Cancels a token on the first SIGINT and restores the old handler on exit.

    Later interrupts are ignored until the run is over. Leaving the block
    also cancels the token, so it never outlives the run.
    """

    def __init__(self, token: CancellationToken) -> None:
        self.token = token
        self.interrupted = False
        self._previous: Any = None
        self._installed = False

    def _handle(self, signum: int, frame: FrameType | None) -> None:
        if self.interrupted:
            return
        self.interrupted = True
        print("interrupt received, cancelling uploads", file=sys.stderr, flush=True)
        self.token.cancel()

    def __enter__(self) -> "InterruptHandler":
        # signal.signal() is only allowed on the main thread
        if threading.current_thread() is threading.main_thread():
            self._previous = signal.signal(signal.SIGINT, self._handle)
            self._installed = True
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._installed:
            signal.signal(signal.SIGINT, self._previous)
            self._installed = False
        self.token.cancel()


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser; defaults come from the settings."""
    settings = get_settings()
    parser = _ArgumentParser(
        prog="pin-upload",
        description=(
            "Upload every file named <index>.<ext> in a directory to IPFS through "
            "a pinning gateway, printing '<count> <index> <cid>' per uploaded file."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  pin-upload --id ID --secret SECRET ./images\n\n"
            "  # Write <name>.json metadata files pointing at a gateway URL\n"
            "  pin-upload --id ID --secret SECRET --prefix ipfs:// --out ./metadata ./images\n\n"
            "Credentials can also be set with PIN_UPLOAD_PROJECT_ID and\n"
            "PIN_UPLOAD_PROJECT_SECRET (environment or .env file).\n"
        ),
    )
    parser.add_argument("path", nargs="*", help="Directory of files to upload (exactly one).")
    parser.add_argument("--id", dest="project_id", default=None, help="Gateway project ID.")
    parser.add_argument(
        "--secret", dest="project_secret", default=None, help="Gateway project secret."
    )
    parser.add_argument(
        "--url",
        dest="api_url",
        default=settings.api_url,
        help="Gateway API URL (default: %(default)s).",
    )
    parser.add_argument(
        "--pin",
        action=argparse.BooleanOptionalAction,
        default=settings.pin,
        help="Pin uploaded content (default: %(default)s).",
    )
    parser.add_argument(
        "--prefix",
        dest="url_prefix",
        default=settings.url_prefix,
        help="Prefix prepended to the CID in the metadata 'image' field.",
    )
    parser.add_argument(
        "--out",
        dest="output_dir",
        default=settings.output_dir,
        metavar="DIR",
        help="Directory for <name>.json metadata files; omit to skip them.",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=settings.max_concurrent_jobs,
        metavar="N",
        help="Maximum simultaneous uploads (default: %(default)s).",
    )
    parser.add_argument(
        "--fail-on-error",
        action="store_true",
        help=f"Exit with status {EXIT_JOB_ERRORS} if any file was rejected or failed to upload.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument(
        "--version",
        action="version",
        version=f"{get_package_name()} {get_package_version()}",
    )
    return parser


def _fail(message: str) -> int:
    print(message, file=sys.stderr, flush=True)
    return EXIT_STARTUP_ERROR


def main(argv: list[str] | None = None) -> int:
    """Run the CLI and return the process exit code."""
    settings = get_settings()
    try:
        args = build_parser().parse_args(argv)
    except UsageError as e:
        return _fail(f"pin-upload: {e}")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
    )

    project_id = args.project_id or settings.project_id
    project_secret = args.project_secret or settings.project_secret
    if not project_id:
        return _fail("parameter --id is required")
    if not project_secret:
        return _fail("parameter --secret is required")
    if len(args.path) != 1:
        return _fail("file or directory path required as an argument")
    if args.concurrency < 1:
        return _fail("--concurrency must be at least 1")

    directory = args.path[0]
    if not os.path.isdir(directory):
        return _fail(f"{directory}: not a readable directory")

    output_dir = None
    if args.output_dir:
        try:
            output_dir = metadata_service.ensure_output_dir(args.output_dir)
        except OSError as e:
            return _fail(f"cannot create output directory {args.output_dir}: {e}")

    try:
        client = gateway_service.create_gateway_client(
            args.api_url, project_id, project_secret, timeout=settings.request_timeout
        )
    except gateway_service.GatewayError as e:
        return _fail(str(e))

    manager = UploadManager(
        client,
        pin=args.pin,
        url_prefix=args.url_prefix,
        output_dir=output_dir,
        max_workers=args.concurrency,
    )

    token = CancellationToken()
    start = time.monotonic()
    try:
        with InterruptHandler(token) as interrupt:
            run = manager.run(directory, token)
    except OSError as e:
        return _fail(str(e))
    finally:
        client.close()

    print(format_duration(time.monotonic() - start), file=sys.stderr)
    print(run.summary_line(), file=sys.stderr, flush=True)

    if interrupt.interrupted:
        return EXIT_INTERRUPTED
    if args.fail_on_error and run.has_errors:
        return EXIT_JOB_ERRORS
    return EXIT_OK


def run() -> None:
    """Console-script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
