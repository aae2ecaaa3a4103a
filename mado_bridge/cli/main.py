"""MADO Bridge - Command Line Interface

Converts IHE MADO manifests between DICOM KOS and FHIR document bundles and
validates KOS manifests against the TID 2010 structure rules.
"""

import argparse
import json
import sys
from pathlib import Path

from mado_bridge import __version__
from mado_bridge.core.config import get_settings
from mado_bridge.core.dicom_io import read_manifest, write_manifest
from mado_bridge.core.exceptions import MadoBridgeError
from mado_bridge.core.fhir_io import dump_bundle, load_bundle
from mado_bridge.core.forward import ForwardMapper
from mado_bridge.core.reverse import ReverseMapper
from mado_bridge.core.validator import KOSValidator
from mado_bridge.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_INVALID = 2


def setup_logging(verbose: bool = False, json_logs: bool = False) -> None:
    """Configure logging from settings, overridden by command line flags."""
    settings = get_settings()
    level = "DEBUG" if verbose else settings.logging.level.value
    configure_logging(
        log_level=level,
        json_format=json_logs or settings.logging.json_format,
        log_file=settings.logging.file,
    )


def cmd_to_fhir(args: argparse.Namespace) -> int:
    """Convert a KOS manifest file into a FHIR document bundle."""
    dataset = read_manifest(args.input)
    bundle = ForwardMapper(get_settings()).to_bundle(dataset)
    text = dump_bundle(bundle, args.output)
    if args.output is None:
        print(text)
    else:
        print(f"[OK] Wrote {len(bundle.entry)} entries to {args.output}", file=sys.stderr)
    return EXIT_OK


def cmd_to_dicom(args: argparse.Namespace) -> int:
    """Convert a FHIR document bundle into a KOS manifest file."""
    bundle = load_bundle(Path(args.input))
    dataset = ReverseMapper(get_settings()).to_dataset(bundle)
    path = write_manifest(dataset, args.output)
    print(f"[OK] Wrote manifest {dataset.SOPInstanceUID} to {path}", file=sys.stderr)
    return EXIT_OK


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a KOS manifest file and print the report."""
    dataset = read_manifest(args.input)
    allow = True if args.allow_duplicates else None
    report = KOSValidator(get_settings(), allow_duplicate_references=allow).validate(dataset)
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(report.summary())
    return EXIT_OK if report.is_valid else EXIT_INVALID


def create_parser() -> argparse.ArgumentParser:
    """Build the argument parser with one sub-command per operation."""
    parser = argparse.ArgumentParser(
        prog="mado-bridge",
        description="MADO Bridge - DICOM KOS <-> FHIR manifest conversion and validation",
        epilog="Example: %(prog)s to-fhir manifest.dcm -o bundle.json",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging output"
    )
    parser.add_argument(
        "--json-logs", action="store_true", help="Render log events as JSON"
    )
    parser.add_argument("--version", action="version", version=f"MADO Bridge v{__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    to_fhir = subparsers.add_parser("to-fhir", help="Convert a KOS manifest to a FHIR bundle")
    to_fhir.add_argument("input", help="Path to the DICOM KOS manifest")
    to_fhir.add_argument(
        "-o", "--output", metavar="FILE", help="Write bundle JSON here (default: stdout)"
    )
    to_fhir.set_defaults(handler=cmd_to_fhir)

    to_dicom = subparsers.add_parser("to-dicom", help="Convert a FHIR bundle to a KOS manifest")
    to_dicom.add_argument("input", help="Path to the FHIR bundle JSON")
    to_dicom.add_argument(
        "-o", "--output", required=True, metavar="FILE", help="Path of the DICOM file to write"
    )
    to_dicom.set_defaults(handler=cmd_to_dicom)

    validate = subparsers.add_parser("validate", help="Validate a KOS manifest")
    validate.add_argument("input", help="Path to the DICOM KOS manifest")
    validate.add_argument(
        "--allow-duplicates",
        action="store_true",
        help="Permit the same SOP instance to be referenced more than once",
    )
    validate.add_argument("--json", action="store_true", help="Print the report as JSON")
    validate.set_defaults(handler=cmd_validate)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the command line interface.

    Args:
        argv: Argument list (default: sys.argv[1:])

    Returns:
        0 on success, 1 on a fatal error, 2 when validation reports errors

    """
    parser = create_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose, args.json_logs)

    try:
        return args.handler(args)
    except MadoBridgeError as e:
        logger.error("command_failed", command=args.command, error_code=e.error_code)
        print(f"[ERROR] {e.message}", file=sys.stderr)
        return EXIT_FATAL
    except KeyboardInterrupt:
        print("\n[INTERRUPTED] Stopped by user", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
