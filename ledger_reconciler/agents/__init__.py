"""Extraction agents package."""

from ledger_reconciler.agents.extraction import (
    ExtractionClient,
    ExtractionError,
    GeminiExtractionAgent,
    extract_json_block,
    rows_to_candidates,
)

__all__ = [
    "ExtractionClient",
    "ExtractionError",
    "GeminiExtractionAgent",
    "extract_json_block",
    "rows_to_candidates",
]
