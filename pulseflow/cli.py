"""Command-line interface for PulseFlow."""

from typing import List, Optional
import argparse
import logging
import sys

from pulseflow import __version__
from pulseflow.config import (
    ProcessingConfig,
    ProcessingMode,
    PostProcessingMode,
    load_config,
)
from pulseflow.core.histogram import Histogram
from pulseflow.core.processing import Processor, ProcessingReport
from pulseflow.io.timestamps import parse_epoch
from pulseflow.logging_config import setup_logging
from pulseflow.utils.exceptions import PulseFlowError

logger = logging.getLogger(__name__)


def _time_value(text: str) -> float:
    """Accept Unix seconds or a ``YYYY-MM-DDTHH:MM:SS`` UTC timestamp."""
    try:
        return float(text)
    except ValueError:
        pass
    try:
        return float(parse_epoch(text))
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    p = argparse.ArgumentParser(
        prog="pulseflow",
        description="Aggregate pulsed-source detector events into time-sliced histograms",
        epilog=(
            "Command-line values override the configuration file. "
            "Times accept Unix seconds or UTC timestamps (YYYY-MM-DDTHH:MM:SS)."
        ),
    )
    p.add_argument("inputs", nargs="+", help="Run files (NeXus), in time order")
    p.add_argument(
        "--config",
        "-c",
        help="YAML configuration file",
    )
    p.add_argument(
        "--output-dir",
        "-o",
        help="Directory for the output files",
    )
    p.add_argument(
        "--mode",
        choices=[m.value for m in ProcessingMode if m != ProcessingMode.NONE],
        help="Processing mode (default: partition_events_summed)",
    )
    p.add_argument(
        "--template",
        "-t",
        help="Run file the outputs are modelled on (default: first input that loads)",
    )
    p.add_argument("--window-id", help="Window name, used in output file names")
    p.add_argument(
        "--window-start",
        type=_time_value,
        metavar="TIME",
        help="Start of the first window (default: start of the template run)",
    )
    p.add_argument(
        "--window-duration",
        type=float,
        metavar="SECONDS",
        help="Length of the full window",
    )
    p.add_argument(
        "--slices",
        type=int,
        dest="n_slices",
        help="Number of slices the window is split into",
    )
    p.add_argument(
        "--delta",
        type=float,
        dest="window_delta",
        metavar="SECONDS",
        help="Forward shift of the window set when it is exhausted (default: window duration)",
    )
    p.add_argument(
        "--post-processing",
        choices=[m.value for m in PostProcessingMode],
        help="Scaling applied to every output before it is written",
    )
    p.add_argument(
        "--factor",
        type=float,
        dest="post_processing_factor",
        help="Post-processing scale factor",
    )
    p.add_argument(
        "--on-load-error",
        choices=["abort", "skip"],
        help="What to do with an input file that cannot be loaded (default: abort)",
    )
    p.add_argument("--lower-spectrum", type=int, help="First spectrum for write_partitions")
    p.add_argument("--higher-spectrum", type=int, help="Last spectrum for write_partitions")
    p.add_argument("--detector-id", type=int, help="Detector for dump_events")
    p.add_argument("--spectrum-id", type=int, help="Spectrum for dump_histogram")
    p.add_argument(
        "--first-only",
        action="store_true",
        default=None,
        help="Only dump the first input file",
    )
    p.add_argument("--verbose", "-v", action="store_true", help="Show debug messages")
    p.add_argument("--log-file", help="Also write the log to this (rotating) file")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p.parse_args(argv)


def build_config(args: argparse.Namespace) -> ProcessingConfig:
    """Merge the configuration file (if any) with command-line overrides."""
    config = load_config(args.config) if args.config else ProcessingConfig()
    return config.updated(
        mode=args.mode,
        window_id=args.window_id,
        window_start=args.window_start,
        window_duration=args.window_duration,
        n_slices=args.n_slices,
        window_delta=args.window_delta,
        post_processing=args.post_processing,
        post_processing_factor=args.post_processing_factor,
        on_load_error=args.on_load_error,
        lower_spectrum=args.lower_spectrum,
        higher_spectrum=args.higher_spectrum,
        detector_id=args.detector_id,
        spectrum_id=args.spectrum_id,
        first_only=args.first_only,
    )


def _print_result(result) -> None:
    if isinstance(result, Histogram):
        for center, count in zip(result.centers, result.counts):
            print(f"{center:.6g}\t{count}")
    elif isinstance(result, dict):
        for detector_id, times in result.items():
            for t in times:
                print(f"{detector_id}\t{t:.6f}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = parse_args(argv)
    setup_logging(verbose=args.verbose, log_file=args.log_file)

    try:
        config = build_config(args)
        result = Processor(config).run(args.inputs, args.output_dir, template=args.template)
    except PulseFlowError as e:
        logger.error("%s", e)
        return 1
    except FileNotFoundError as e:
        logger.error("%s", e)
        return 1

    if isinstance(result, ProcessingReport):
        logger.info(
            "Wrote %d files (%d frames); %d failed, %d inputs skipped",
            len(result.written), result.frames_processed,
            len(result.failed), len(result.skipped_inputs),
        )
        for path, message in result.failed.items():
            logger.error("Failed: %s (%s)", path, message)
        return 0 if result.ok else 1

    _print_result(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
