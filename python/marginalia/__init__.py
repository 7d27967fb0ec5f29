from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from marginalia.errors import (
    InvalidCommentsError,
    InvalidPackageError,
    MarginaliaError,
    OutputCorruptError,
    PartMissingError,
)
from marginalia.merge.engine import CommentMergeEngine, load_comment_records, merge_comments
from marginalia.models import CommentRecord, MergeConfig, MergeOutcome, MergeReport

try:
    __version__ = version("marginalia")
except PackageNotFoundError:
    # Running from a source checkout without installed metadata.
    _version_file = Path(__file__).parent / "VERSION"
    if _version_file.is_file():
        __version__ = _version_file.read_text().strip()
    else:
        __version__ = "0.0.0-dev"

__all__ = [
    "CommentMergeEngine",
    "CommentRecord",
    "MergeConfig",
    "MergeOutcome",
    "MergeReport",
    "merge_comments",
    "load_comment_records",
    "MarginaliaError",
    "InvalidPackageError",
    "InvalidCommentsError",
    "PartMissingError",
    "OutputCorruptError",
    "__version__",
]
