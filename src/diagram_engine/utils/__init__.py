"""Text utilities: bracket scanning and JSON repair."""

from diagram_engine.utils.json_repair import (
    ParseOutcome,
    ParseStatus,
    fix_unescaped_quotes,
    format_failure,
    repair_json,
    strip_code_fence,
)
from diagram_engine.utils.scanner import (
    BracketScanner,
    StructuralAnalysis,
    analyze_structure,
    extract_balanced_snippet,
)

__all__ = [
    "BracketScanner",
    "ParseOutcome",
    "ParseStatus",
    "StructuralAnalysis",
    "analyze_structure",
    "extract_balanced_snippet",
    "fix_unescaped_quotes",
    "format_failure",
    "repair_json",
    "strip_code_fence",
]
