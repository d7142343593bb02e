"""Search module for selfie-based identity search.

This module provides:
- IdentitySearch for finding an attendee's photos within an event
- Result ranking and formatting utilities

Usage:
    from event_media.search import IdentitySearch, format_results_simple

    search = IdentitySearch(originals=originals, metadata=metadata, biometrics=index)
    matches = search.search(selfie_bytes, 'carrera-2025')
    print(format_results_simple(matches, max_results=10))
"""

from .engine import IdentitySearch, SearchReport, STRATEGIES
from .results import (
    rank_matches,
    filter_by_threshold,
    best_per_photo,
    format_results_simple,
)

__all__ = [
    # Engine
    'IdentitySearch',
    'SearchReport',
    'STRATEGIES',

    # Result formatting
    'rank_matches',
    'filter_by_threshold',
    'best_per_photo',
    'format_results_simple',
]
