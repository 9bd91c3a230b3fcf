import argparse
import os
import signal
import sys
from pathlib import Path

from make_stemcell import __version__
from make_stemcell.config.settings import StemcellConfig, load_settings
from make_stemcell.logging import LoggerFactory, setup_logging
from make_stemcell.pipeline import StemcellPipeline
from make_stemcell.storage.cancel import CancellationToken
from make_stemcell.storage.exceptions import OperationInterruptedError, StemcellError
from make_stemcell.storage.validation import (
    collect_errors,
    validate_input_file,
    validate_output_dir,
    validate_stemcell_absent,
    validate_version,
)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="make-stemcell",
        description="Build a vSphere Windows stemcell from a base VHD and an rdiff delta",
    )
    parser.add_argument("--vhd", required=True, help="Path to the base VHD image")
    parser.add_argument("--delta", required=True, help="Path to the rdiff delta file")
    parser.add_argument("--version", required=True, help="Stemcell version, e.g. 1200.3")
    parser.add_argument(
        "--output",
        default=None,
        help="Directory to create the stemcell in (default: current directory)",
    )
    parser.add_argument(
        "--gzip", action="store_true", help="The delta file is gzip compressed"
    )
    parser.add_argument(
        "--keep-ethernet",
        action="store_true",
        help="Do not strip the ethernet0 device from the OVF",
    )
    parser.add_argument("--settings", default=None, help="Path to a JSON settings file")
    parser.add_argument("--log-dir", default=None, help="Directory for log files")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Log every delta operation")
    parser.add_argument("-V", "--tool-version", action="version", version=f"%(prog)s {__version__}")
    return parser


def install_signal_handlers(token):
    """Cancel ``token`` on the first signal and exit on the second.

    The handler only sets the token; the pipeline logs the interruption when
    it sees it. Returns a callable restoring the previous handlers.
    """
    previous = {signum: signal.getsignal(signum) for signum in HANDLED_SIGNALS}

    def handler(signum, frame):
        name = signal.Signals(signum).name
        if token.cancel(f"received {name}"):
            return
        os.write(2, f"Received {name} again: exiting without cleanup\n".encode())
        os._exit(EXIT_FAILURE)

    for signum in HANDLED_SIGNALS:
        signal.signal(signum, handler)

    def restore():
        for signum, original in previous.items():
            signal.signal(signum, original)

    return restore


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(
        debug=args.debug,
        trace=args.trace,
        log_dir=Path(args.log_dir).expanduser() if args.log_dir else None,
    )
    log = LoggerFactory.for_system()

    settings = load_settings(Path(args.settings).expanduser() if args.settings else None)
    overrides = {}
    if args.gzip:
        overrides["gzip_delta"] = True
    if args.keep_ethernet:
        overrides["strip_device"] = None
    config = StemcellConfig.from_settings(args.version, args.output, settings, **overrides)

    errors = collect_errors(
        (validate_input_file, args.vhd, "--vhd"),
        (validate_input_file, args.delta, "--delta"),
        (validate_version, args.version),
        (validate_output_dir, config.output_dir),
        (validate_stemcell_absent, config.stemcell_path),
    )
    if errors:
        for error in errors:
            log.error(f"Invalid arguments: {error}")
        return EXIT_FAILURE

    token = CancellationToken()
    restore_signals = install_signal_handlers(token)
    try:
        pipeline = StemcellPipeline(config, token)
        stemcell = pipeline.run(args.vhd, args.delta)
    except OperationInterruptedError as error:
        log.warning(f"Interrupted: {error}")
        return EXIT_INTERRUPTED
    except StemcellError as error:
        log.error(str(error))
        return EXIT_FAILURE
    finally:
        restore_signals()

    print(stemcell)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
