from .analyzer import ErrorAnalyzer, analyze_error
from .fixer import FixInterpreter
from .last_error import LastErrorRecord, LastErrorStore
from .models import (
    ErrorAnalysis,
    ErrorCategory,
    ErrorPattern,
    ErrorSeverity,
    FixOutcome,
    FixSuggestion,
    RiskLevel,
)
from .orchestrator import RecoveryOrchestrator
from .repository import PatternLoadError, PatternRepository, get_default_repository
from .risk import ExecutionMode, RiskGate, should_execute

__all__ = [
    "ErrorAnalysis",
    "ErrorAnalyzer",
    "ErrorCategory",
    "ErrorPattern",
    "ErrorSeverity",
    "ExecutionMode",
    "FixInterpreter",
    "FixOutcome",
    "FixSuggestion",
    "LastErrorRecord",
    "LastErrorStore",
    "PatternLoadError",
    "PatternRepository",
    "RecoveryOrchestrator",
    "RiskGate",
    "RiskLevel",
    "analyze_error",
    "get_default_repository",
    "should_execute",
]
