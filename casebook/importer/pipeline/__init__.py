"""
Import pipeline: suggestion, duplicate detection, preview, execution and rollback.
"""

from .batch_service import BatchFilters, BatchListResult, BatchSummary, ImportBatchService
from .batch_store import BatchStore
from .duplicates import DuplicateDetector, DuplicateMatch, RowVerdict, detect_duplicates, resolve_action
from .executor import BatchExecutor, ExecutionParameters, ExecutionResult
from .fuzzy_features import JaroWinklerScorer, ScoringStrategy, TokenSetScorer, default_scorer
from .preview import PreviewBuilder, PreviewReport
from .progress import DatabaseProgressSink, JobProgressSink, NullProgressSink
from .rollback import RollbackEngine, RollbackResult
from .service import ImportService, JobHandle, UploadResult
from .settings import DuplicateResolution, DuplicateSettings, ResolutionAction
from .snapshot import ClientCandidate, ClientSnapshot
from .suggest import MappingSuggestion, analyze_columns, suggest_mappings

__all__ = [
    "BatchExecutor",
    "BatchFilters",
    "BatchListResult",
    "BatchStore",
    "BatchSummary",
    "ClientCandidate",
    "ClientSnapshot",
    "DatabaseProgressSink",
    "DuplicateDetector",
    "DuplicateMatch",
    "DuplicateResolution",
    "DuplicateSettings",
    "ExecutionParameters",
    "ExecutionResult",
    "ImportBatchService",
    "ImportService",
    "JaroWinklerScorer",
    "JobHandle",
    "JobProgressSink",
    "MappingSuggestion",
    "NullProgressSink",
    "PreviewBuilder",
    "PreviewReport",
    "ResolutionAction",
    "RollbackEngine",
    "RollbackResult",
    "RowVerdict",
    "ScoringStrategy",
    "TokenSetScorer",
    "UploadResult",
    "analyze_columns",
    "default_scorer",
    "detect_duplicates",
    "resolve_action",
    "suggest_mappings",
]
