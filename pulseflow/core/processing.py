"""
Processing of multi-file event streams into time-sliced histograms.

This module provides the Processor, which walks an ordered list of run
files frame by frame, routes every frame to its output slice (or pulse) and
writes the accumulated histograms back to NeXus files.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List, Dict, Iterator, Sequence, Tuple, Union
import logging
import os
import numpy as np

from pulseflow.config import ProcessingConfig, ProcessingMode, PostProcessingMode
from pulseflow.core.event_store import EventStore
from pulseflow.core.histogram import Histogram
from pulseflow.core.slices import Slice, SliceSet
from pulseflow.core.window import Window, Pulse
from pulseflow.io.nexus import NeXusFile
from pulseflow.utils.exceptions import (
    LoadError,
    OrderingViolation,
    UsageError,
    WriteError,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


@dataclass
class ProcessingReport:
    """Outcome of a processing run."""

    written: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    skipped_inputs: List[str] = field(default_factory=list)
    frames_processed: int = 0

    @property
    def ok(self) -> bool:
        """True if every output was written."""
        return not self.failed


def output_file_name(window_id: str, start_time: float, index: int, n_slices: int) -> str:
    """
    Name of the output file of one slice.

    ``<window id>-<int(start)>.nxs`` for a single slice, otherwise
    ``<window id>-<int(start)>-<NNN>.nxs`` with a 1-based slice number.
    """
    name = f"{window_id}-{int(start_time)}"
    if n_slices > 1:
        name += f"-{index + 1:03d}"
    return name + ".nxs"


class Processor:
    """
    Drives event aggregation across an ordered list of run files.

    Parameters
    ----------
    config : ProcessingConfig
        Processing settings (mode, window, slicing, post-processing).

    Examples
    --------
    >>> config = ProcessingConfig(
    ...     window_id='cycle', window_start=1683194400, window_duration=600,
    ...     n_slices=10, window_delta=600,
    ... )
    >>> report = Processor(config).partition_events_summed(runs, 'out/')
    >>> report.ok
    True
    """

    def __init__(self, config: ProcessingConfig):
        config.validate()
        self.config = config

    # ========================================
    # Dispatch
    # ========================================

    def run(
        self,
        input_files: Sequence[PathLike],
        output_dir: Optional[PathLike] = None,
        pulses: Optional[Sequence[Pulse]] = None,
        template: Optional[PathLike] = None,
    ):
        """
        Run the configured processing mode.

        Returns
        -------
        ProcessingReport or dict or Histogram
            A report for the partitioning modes, the event times for
            ``dump_events`` and the summed histogram for ``dump_histogram``.
        """
        mode = self.config.mode
        if not input_files:
            raise UsageError("No input files given")
        if mode == ProcessingMode.DUMP_EVENTS:
            return self.dump_events(input_files)
        if mode == ProcessingMode.DUMP_HISTOGRAM:
            return self.dump_histogram(input_files)

        if output_dir is None:
            raise UsageError(f"Mode '{mode.value}' needs an output directory")
        if mode == ProcessingMode.PARTITION_EVENTS_SUMMED:
            return self.partition_events_summed(input_files, output_dir, template)
        if mode == ProcessingMode.PARTITION_EVENTS_INDIVIDUAL:
            return self.partition_events_individual(input_files, output_dir, template)
        if mode == ProcessingMode.PARTITION_PULSES:
            pulses = list(pulses) if pulses is not None else self.config.pulse_list
            return self.partition_pulses(input_files, pulses, output_dir, template)
        if mode == ProcessingMode.WRITE_PARTITIONS:
            return self.write_partitions(input_files, output_dir)
        raise UsageError("No processing mode selected")

    # ========================================
    # Input Handling
    # ========================================

    def iter_sources(
        self,
        input_files: Sequence[PathLike],
        report: Optional[ProcessingReport] = None,
        advanced: bool = True,
    ) -> Iterator[EventStore]:
        """
        Load run files in order, checking that frame times never go backwards.

        Files that fail to load abort the run, or are skipped (and recorded
        in ``report``) when ``on_load_error`` is ``'skip'``.
        """
        last_frame_zero = None
        last_path = None
        for path in input_files:
            try:
                store = NeXusFile(path).load(advanced=advanced)
            except LoadError as e:
                if self.config.on_load_error == "skip":
                    logger.error("Skipping %s: %s", path, e)
                    if report is not None:
                        report.skipped_inputs.append(str(path))
                    continue
                raise

            if store.n_frames:
                zeros = store.frame_zeros(absolute=True)
                if last_frame_zero is not None and zeros[0] < last_frame_zero:
                    raise OrderingViolation(
                        f"{path} starts at {zeros[0]:.2f}, before the last frame of "
                        f"{last_path} ({last_frame_zero:.2f}); input files must be in time order"
                    )
                last_frame_zero = float(zeros[-1])
                last_path = path
            yield store

    def select_template(
        self,
        input_files: Sequence[PathLike],
        template: Optional[PathLike] = None,
        report: Optional[ProcessingReport] = None,
    ) -> Tuple[PathLike, Sequence[PathLike]]:
        """
        Pick the run file every output is modelled on.

        An explicit ``template`` must load. Otherwise the first input whose
        layout and run times load is used; inputs before it failed to load
        and are handled by the ``on_load_error`` policy.

        Returns
        -------
        template : path
            Template run file.
        inputs : sequence of path
            Input files to process, starting with the template when it
            was taken from the inputs.

        Raises
        ------
        LoadError
            If the template (or, with ``on_load_error='abort'``, the first
            input) cannot be loaded, or no input loads at all.
        """
        if template is not None:
            self._check_template(template)
            return template, input_files

        for i, path in enumerate(input_files):
            try:
                self._check_template(path)
            except LoadError as e:
                if self.config.on_load_error == "skip":
                    logger.error("Skipping %s: %s", path, e)
                    if report is not None:
                        report.skipped_inputs.append(str(path))
                    continue
                raise
            return path, input_files[i:]
        raise LoadError("None of the input files could be loaded as a template")

    @staticmethod
    def _check_template(path: PathLike) -> None:
        nexus_file = NeXusFile(path)
        nexus_file.load_template_layout()
        nexus_file.load(advanced=False)

    # ========================================
    # Slices
    # ========================================

    def prepare_slices(
        self,
        template: PathLike,
        output_dir: PathLike,
        replicate: bool = True,
        on_propagate=None,
    ) -> SliceSet:
        """
        Split the configured window into slices with empty destinations.

        Parameters
        ----------
        template : path
            Run file providing the histogram layout (and the output template).
            Its start time is the window start when none is configured.
        output_dir : path
            Directory for the output files.
        replicate : bool, optional
            Create each output file from the template now. Default is True.
        on_propagate : callable or None, optional
            Passed to the SliceSet.

        Returns
        -------
        SliceSet
            Slices for the first window cycle.
        """
        cfg = self.config
        template_file = NeXusFile(template)
        layout = template_file.load_template_layout()
        if cfg.window_start is None:
            window = cfg.window_from(template_file.load(advanced=False).start_epoch)
        else:
            window = cfg.window
        logger.info("Window start time is %16.2f", window.start_time)
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        def _destination(i: int, slice_window: Window) -> EventStore:
            path = str(output_dir / output_file_name(window.id, window.start_time, i, cfg.n_slices))
            if replicate:
                template_file.replicate(path, layout, cfg.template_paths)
            return EventStore.from_layout(layout, path=path, metadata={"template": str(template)})

        return SliceSet.from_window(
            window, cfg.n_slices, cfg.delta, _destination, on_propagate=on_propagate
        )

    def fold(self, store: EventStore, slice_set: SliceSet) -> int:
        """Route every frame of a store to its slice. Returns frames binned."""
        n_binned = 0
        for _, frame_zero, event_start, event_end in store.iter_frames(absolute=True):
            slice_ = slice_set.resolve(frame_zero)
            if slice_ is None:
                continue
            ids, times = store.frame_events(event_start, event_end)
            slice_.destination.accumulate_frame(ids, times)
            n_binned += 1
        logger.info("... binned %d of %d frames from %s", n_binned, store.n_frames, store.path)
        return n_binned

    def post_process(self, destinations: Sequence[EventStore]) -> None:
        """Apply the configured post-processing to each destination store."""
        mode = self.config.post_processing
        factor = self.config.post_processing_factor
        if mode == PostProcessingMode.NONE:
            return
        for destination in destinations:
            if mode == PostProcessingMode.SCALE_DETECTORS:
                destination.scale_detectors(factor)
            elif mode == PostProcessingMode.SCALE_MONITORS:
                destination.scale_monitors(factor)
        logger.info("Applied %s (factor %g) to %d outputs", mode.value, factor, len(destinations))

    def _save(self, destination: EventStore, report: ProcessingReport) -> None:
        """Write one destination, flagging the file as partial on failure."""
        path = destination.path
        try:
            NeXusFile(path).write_destination(destination)
        except WriteError as e:
            logger.error("Failed to write %s: %s", path, e)
            report.failed[path] = str(e)
            if os.path.exists(path):
                os.replace(path, path + ".partial")
            return
        report.written.append(path)

    def save_slices(self, slices: Sequence[Slice], report: ProcessingReport) -> None:
        """Write every slice's histograms, monitors and good frame total."""
        for slice_ in slices:
            self._save(slice_.destination, report)

    # ========================================
    # Processing Modes
    # ========================================

    def partition_events_summed(
        self,
        input_files: Sequence[PathLike],
        output_dir: PathLike,
        template: Optional[PathLike] = None,
    ) -> ProcessingReport:
        """
        Sum frames into a repeating set of window slices.

        Every propagation cycle of the window set accumulates into the same
        slice destinations, so slice ``i`` ends up holding all frames that
        fell into the ``i``-th part of any cycle.

        Parameters
        ----------
        input_files : sequence of path
            Run files in time order.
        output_dir : path
            Directory for the slice output files.
        template : path, optional
            Run file the outputs are modelled on. Default is the first input
            that loads.

        Returns
        -------
        ProcessingReport
            Written and failed outputs.
        """
        logger.info("Processing in summed mode...")
        report = ProcessingReport()
        template, input_files = self.select_template(input_files, template, report)
        slice_set = self.prepare_slices(template, output_dir)

        for store in self.iter_sources(input_files, report):
            report.frames_processed += self.fold(store, slice_set)

        self.post_process([s.destination for s in slice_set])
        self.save_slices(slice_set.slices, report)
        return report

    def partition_events_individual(
        self,
        input_files: Sequence[PathLike],
        output_dir: PathLike,
        template: Optional[PathLike] = None,
    ) -> ProcessingReport:
        """
        Write every propagation cycle of the window set to its own files.

        Output files are named after the window start of their cycle. Cycles
        (or slices) that received no frames are not written.

        Parameters
        ----------
        input_files : sequence of path
            Run files in time order.
        output_dir : path
            Directory for the output files.
        template : path, optional
            See :meth:`partition_events_summed`.

        Returns
        -------
        ProcessingReport
            Written and failed outputs.
        """
        logger.info("Processing in individual mode...")
        report = ProcessingReport()
        cfg = self.config
        template, input_files = self.select_template(input_files, template, report)
        template_file = NeXusFile(template)
        layout = template_file.load_template_layout()
        output_dir = Path(output_dir)

        def _flush(slice_set: SliceSet) -> None:
            cycle_start = slice_set.start_time
            filled = [s.destination for s in slice_set if s.destination.processed_good_frames > 0]
            self.post_process(filled)
            for i, slice_ in enumerate(slice_set):
                if slice_.destination.processed_good_frames == 0:
                    continue
                path = str(output_dir / output_file_name(cfg.window_id, cycle_start, i, cfg.n_slices))
                try:
                    template_file.replicate(path, layout, cfg.template_paths)
                except WriteError as e:
                    logger.error("Failed to create %s: %s", path, e)
                    report.failed[path] = str(e)
                else:
                    slice_.destination.path = path
                    self._save(slice_.destination, report)
                slice_.destination.reset_accumulators()

        slice_set = self.prepare_slices(
            template, output_dir, replicate=False, on_propagate=_flush
        )
        for store in self.iter_sources(input_files, report):
            report.frames_processed += self.fold(store, slice_set)
        _flush(slice_set)
        return report

    def partition_pulses(
        self,
        input_files: Sequence[PathLike],
        pulses: Sequence[Pulse],
        output_dir: PathLike,
        template: Optional[PathLike] = None,
    ) -> ProcessingReport:
        """
        Accumulate the frames of each pulse into its own output file.

        Every run overlapping a pulse contributes the frames whose absolute
        zero lies in ``[pulse.start, pulse.end)``, and a share of its monitor
        counts equal to the fraction of the run covered by the pulse.

        Parameters
        ----------
        input_files : sequence of path
            Run files in time order.
        pulses : sequence of Pulse
            Pulses in Unix time.
        output_dir : path
            Directory for the output files, named ``<label>.nxs``.
        template : path, optional
            See :meth:`partition_events_summed`.

        Returns
        -------
        ProcessingReport
            Written and failed outputs.
        """
        if not pulses:
            raise UsageError("No pulses given")
        logger.info("Processing %d pulses...", len(pulses))
        report = ProcessingReport()
        template, input_files = self.select_template(input_files, template, report)
        template_file = NeXusFile(template)
        layout = template_file.load_template_layout()
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        destinations = [
            EventStore.from_layout(layout, path=str(output_dir / f"{pulse.label}.nxs"))
            for pulse in pulses
        ]

        for store in self.iter_sources(input_files, report):
            for pulse, destination in zip(pulses, destinations):
                overlap = pulse.overlap(store.start_epoch, store.end_epoch)
                if overlap <= 0:
                    continue
                logger.info(
                    "Pulse %s (runs %s-%s) overlaps %s", pulse.label,
                    pulse.start_run, pulse.end_run, store.path,
                )
                report.frames_processed += store.bin_interval(
                    pulse, destination, absolute=True
                )
                store.add_monitors(overlap / store.duration, destination)

        self.post_process(destinations)
        for destination in destinations:
            path = destination.path
            try:
                template_file.replicate(path, layout, self.config.template_paths)
            except WriteError as e:
                logger.error("Failed to create %s: %s", path, e)
                report.failed[path] = str(e)
                continue
            self._save(destination, report)
        return report

    def write_partitions(
        self,
        input_files: Sequence[PathLike],
        output_dir: PathLike,
    ) -> ProcessingReport:
        """
        Write per-spectrum event time lists for each run.

        Spectra ``lower_spectrum..higher_spectrum`` of every run are written
        to ``<output_dir>/<run stem>-partitions.nxs``, one dataset per
        spectrum id.

        Raises
        ------
        UsageError
            If ``lower_spectrum > higher_spectrum`` (before any I/O).
        """
        cfg = self.config
        if cfg.lower_spectrum > cfg.higher_spectrum:
            raise UsageError(
                f"Lower spectrum ({cfg.lower_spectrum}) > higher spectrum "
                f"({cfg.higher_spectrum}); did you get them the wrong way round?"
            )
        report = ProcessingReport()
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        for store in self.iter_sources(input_files, report):
            partitions = store.partitions_with_relative_times(
                cfg.lower_spectrum, cfg.higher_spectrum, unit_scale=cfg.unit_scale
            )
            path = str(output_dir / f"{Path(store.path).stem}-partitions.nxs")
            try:
                NeXusFile(path).write_partitions(partitions)
            except WriteError as e:
                logger.error("Failed to write %s: %s", path, e)
                report.failed[path] = str(e)
                if os.path.exists(path):
                    os.replace(path, path + ".partial")
                continue
            report.written.append(path)
            report.frames_processed += store.n_frames
        return report

    def dump_events(
        self,
        input_files: Sequence[PathLike],
        detector_id: Optional[int] = None,
        first_only: Optional[bool] = None,
    ) -> Dict[int, np.ndarray]:
        """
        Collect the absolute event times (Unix seconds) of one detector.

        Parameters
        ----------
        input_files : sequence of path
            Run files in time order.
        detector_id : int or None, optional
            Detector spectrum id. Defaults to ``config.detector_id``.
        first_only : bool or None, optional
            Stop after the first file. Defaults to ``config.first_only``.

        Returns
        -------
        dict
            ``{detector_id: times}`` with times concatenated across runs.
        """
        if detector_id is None:
            detector_id = self.config.detector_id
        if first_only is None:
            first_only = self.config.first_only
        chunks = []
        for store in self.iter_sources(input_files):
            partitions = store.partitions_with_relative_times(
                detector_id, detector_id, unit_scale=self.config.unit_scale, absolute=True
            )
            chunks.append(partitions.get(detector_id, np.array([], dtype=float)))
            if first_only:
                break
        times = np.concatenate(chunks) if chunks else np.array([], dtype=float)
        logger.info("Detector %d has %d events", detector_id, len(times))
        return {detector_id: times}

    def dump_histogram(
        self,
        input_files: Sequence[PathLike],
        spectrum_id: Optional[int] = None,
        first_only: Optional[bool] = None,
    ) -> Histogram:
        """Sum the full histogram of one spectrum across runs."""
        if spectrum_id is None:
            spectrum_id = self.config.spectrum_id
        if first_only is None:
            first_only = self.config.first_only
        total = None
        for store in self.iter_sources(input_files):
            histograms = store.full_histogram()
            if spectrum_id not in histograms:
                raise UsageError(f"Spectrum {spectrum_id} is not present in {store.path}")
            histogram = histograms[spectrum_id]
            total = histogram.copy() if total is None else total + histogram
            if first_only:
                break
        if total is None:
            raise LoadError("No input file could be loaded")
        logger.info("Spectrum %d has %d counts", spectrum_id, total.total)
        return total
