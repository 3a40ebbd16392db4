"""Version-control collaborators: diff extraction and publishing."""

from .diff import ChangeSetExtractor, CommitRange, parse_unified_diff
from .publisher import PublishError, PublishResult, Publisher

__all__ = [
    "ChangeSetExtractor",
    "CommitRange",
    "PublishError",
    "PublishResult",
    "Publisher",
    "parse_unified_diff",
]
