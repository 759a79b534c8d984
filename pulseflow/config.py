"""Processing configuration for PulseFlow."""

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union
import logging

import yaml

from pulseflow.core.window import Pulse, Window
from pulseflow.utils.exceptions import UsageError

logger = logging.getLogger(__name__)


class ProcessingMode(str, Enum):
    """Available processing modes."""

    NONE = "none"
    DUMP_EVENTS = "dump_events"
    DUMP_HISTOGRAM = "dump_histogram"
    PARTITION_EVENTS_INDIVIDUAL = "partition_events_individual"
    PARTITION_EVENTS_SUMMED = "partition_events_summed"
    PARTITION_PULSES = "partition_pulses"
    WRITE_PARTITIONS = "write_partitions"


class PostProcessingMode(str, Enum):
    """Post-processing applied to each slice before it is written."""

    NONE = "none"
    SCALE_DETECTORS = "scale_detectors"
    SCALE_MONITORS = "scale_monitors"


@dataclass
class ProcessingConfig:
    """
    Settings for one processing run.

    Window times are Unix times (seconds); ``window_delta`` is the amount the
    whole window set moves forward each time it is exhausted. Without a
    ``window_start`` the window starts at the template run's start time.
    """

    mode: ProcessingMode = ProcessingMode.PARTITION_EVENTS_SUMMED
    window_id: str = "window"
    window_start: Optional[float] = None
    window_duration: float = 1.0
    n_slices: int = 1
    window_delta: Optional[float] = None
    post_processing: PostProcessingMode = PostProcessingMode.NONE
    post_processing_factor: float = 1.0
    on_load_error: str = "abort"
    template_paths: List[str] = field(default_factory=list)
    unit_scale: float = 1e-6
    lower_spectrum: int = 0
    higher_spectrum: int = 0
    detector_id: int = 1
    spectrum_id: int = 1
    first_only: bool = False
    pulses: List[Dict[str, Any]] = field(default_factory=list)

    def __post_init__(self):
        try:
            self.mode = ProcessingMode(self.mode)
            self.post_processing = PostProcessingMode(self.post_processing)
        except ValueError as e:
            raise UsageError(str(e)) from e
        self.validate()

    def validate(self) -> None:
        """
        Check parameter values.

        Raises
        ------
        UsageError
            If any value is out of range.
        """
        if self.n_slices < 1:
            raise UsageError(f"n_slices must be >= 1, got {self.n_slices}")
        if self.window_duration <= 0:
            raise UsageError(f"window_duration must be positive, got {self.window_duration}")
        if self.delta <= 0:
            raise UsageError(f"window_delta must be positive, got {self.delta}")
        if self.on_load_error not in ("abort", "skip"):
            raise UsageError(
                f"on_load_error must be 'abort' or 'skip', got {self.on_load_error!r}"
            )
        if self.lower_spectrum > self.higher_spectrum:
            raise UsageError(
                f"Lower spectrum ({self.lower_spectrum}) > higher spectrum "
                f"({self.higher_spectrum}); did you get them the wrong way round?"
            )

    @property
    def delta(self) -> float:
        """Propagation delta (defaults to the window duration)."""
        return self.window_duration if self.window_delta is None else self.window_delta

    @property
    def window(self) -> Window:
        """Base window described by this configuration."""
        if self.window_start is None:
            raise UsageError("window_start is not set")
        return Window(self.window_id, self.window_start, self.window_duration)

    def window_from(self, default_start: float) -> Window:
        """Base window, starting at ``default_start`` when ``window_start`` is unset."""
        start = default_start if self.window_start is None else self.window_start
        return Window(self.window_id, start, self.window_duration)

    @property
    def pulse_list(self) -> List[Pulse]:
        """Pulses described by the ``pulses`` entries."""
        try:
            return [Pulse(**entry) for entry in self.pulses]
        except (TypeError, ValueError) as e:
            raise UsageError(f"Invalid pulse definition: {e}") from e

    def updated(self, **changes: Any) -> "ProcessingConfig":
        """Copy with some fields replaced (None values are ignored)."""
        changes = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **changes)

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> "ProcessingConfig":
        """Build a configuration from a mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(cfg) - known)
        if unknown:
            raise UsageError("Unknown configuration keys: " + ", ".join(unknown))
        return cls(**dict(cfg))


class _UniqueKeyLoader(yaml.SafeLoader):
    pass


def _construct_mapping(loader, node, deep=False):
    mapping = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise UsageError(f"Duplicate key '{key}' in configuration")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


_UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG, _construct_mapping
)


def load_config(config_path: Union[str, Path, Mapping[str, Any]]) -> ProcessingConfig:
    """
    Load a processing configuration from a YAML file or a mapping.

    Parameters
    ----------
    config_path : str or Path or mapping
        YAML file path, or an already parsed mapping.

    Returns
    -------
    ProcessingConfig
        Validated configuration.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    UsageError
        If the file is not YAML or holds invalid settings.
    """
    if isinstance(config_path, Mapping):
        cfg: Dict[str, Any] = dict(config_path)
    else:
        path = Path(config_path)
        if not path.is_file():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        if path.suffix not in {".yaml", ".yml"}:
            raise UsageError("Config file must be YAML")
        with open(path, "r", encoding="utf-8") as f:
            cfg = yaml.load(f, Loader=_UniqueKeyLoader) or {}
        if not isinstance(cfg, Mapping):
            raise UsageError(f"Config file {path} must contain a mapping")
        logger.debug("Loaded config from %s", path)

    return ProcessingConfig.from_mapping(cfg)
