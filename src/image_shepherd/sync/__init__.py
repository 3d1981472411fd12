"""Image synchronization engine."""

from image_shepherd.sync.errors import (
    ConversionError,
    FetchError,
    FormatDetectionError,
    NormalizeError,
    ProbeError,
    PublishError,
    RegistryListError,
    RolloverError,
    SyncError,
    UploadError,
)
from image_shepherd.sync.fetcher import SourceFetcher
from image_shepherd.sync.image_tools import ImageTools, QemuImageTools
from image_shepherd.sync.matcher import MatchStrategy, find_current, matching_strategy
from image_shepherd.sync.normalizer import NormalizedImage, Normalizer, resolve_compression
from image_shepherd.sync.orchestrator import ImageSynchronizer, SpecOutcome, SpecResult, SyncReport
from image_shepherd.sync.prober import probe_source
from image_shepherd.sync.publisher import Publisher, build_entry_properties
from image_shepherd.sync.retry import RetryError, RetryPolicy, is_transient_error
from image_shepherd.sync.rollover import retire_entry, retired_name
from image_shepherd.sync.staleness import StalenessDecision, decide_staleness

__all__ = [
    "ConversionError",
    "FetchError",
    "FormatDetectionError",
    "ImageSynchronizer",
    "ImageTools",
    "MatchStrategy",
    "NormalizeError",
    "NormalizedImage",
    "Normalizer",
    "ProbeError",
    "PublishError",
    "Publisher",
    "QemuImageTools",
    "RegistryListError",
    "RetryError",
    "RetryPolicy",
    "RolloverError",
    "SourceFetcher",
    "SpecOutcome",
    "SpecResult",
    "StalenessDecision",
    "SyncError",
    "SyncReport",
    "UploadError",
    "build_entry_properties",
    "decide_staleness",
    "find_current",
    "is_transient_error",
    "matching_strategy",
    "probe_source",
    "resolve_compression",
    "retire_entry",
    "retired_name",
]
