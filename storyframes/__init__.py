"""Storyboard grid slicing and video frame capture."""
from .capture import (
    CapturedFrame,
    CaptureResult,
    FileSource,
    UrlSource,
    capture_at_times,
    probe_video,
    sample_times,
)
from .errors import (
    DecodeFailure,
    EncodeFailure,
    FetchFailure,
    InvalidInput,
    MediaLoadFailure,
    ResourceTooLarge,
    SeekFailure,
    SeekTimeout,
    StoryframesError,
)
from .handles import Blob, ObjectUrlRegistry, default_registry
from .layout import CellRect, GridLayout, cell_bounds, compute_layout
from .slicer import SlicedFrame, SliceResult, slice_to_outputs

__version__ = "0.1.0"
