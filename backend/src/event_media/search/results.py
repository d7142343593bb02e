"""Result ranking and formatting utilities.

This module provides helpers to turn raw per-photo similarities into ranked
PhotoMatch lists and to format them for API responses.
"""

from typing import List, Dict, Any, Optional, Callable, Iterable, Tuple

from ..face import PhotoMatch


def rank_matches(
    matches: List[PhotoMatch],
    key: Optional[Callable[[PhotoMatch], Any]] = None,
    reverse: bool = True
) -> List[PhotoMatch]:
    """Rank photo matches by a custom key.

    Args:
        matches: List of photo matches
        key: Function to extract ranking key (default: similarity, then path)
        reverse: If True, sort in descending order (default for similarity)

    Returns:
        Ranked list of PhotoMatch objects with updated rank fields
    """
    if key is None:
        # Path breaks ties so equal scores rank deterministically
        ranked = sorted(matches, key=lambda m: (-m.similarity, m.photo_path))
        if not reverse:
            ranked.reverse()
    else:
        ranked = sorted(matches, key=key, reverse=reverse)

    for rank, match in enumerate(ranked, start=1):
        match.rank = rank

    return ranked


def filter_by_threshold(matches: Iterable[PhotoMatch], threshold: float) -> List[PhotoMatch]:
    """Drop matches whose similarity is below the threshold."""
    return [m for m in matches if m.similarity >= threshold]


def best_per_photo(
    scored: Iterable[Tuple[str, float, Optional[str]]]
) -> List[PhotoMatch]:
    """Collapse (photo_path, similarity, face_id) triples into one match per photo.

    The photo keeps its highest similarity and collects every matched face id.
    """
    by_photo: Dict[str, PhotoMatch] = {}
    for photo_path, similarity, face_id in scored:
        match = by_photo.get(photo_path)
        if match is None:
            match = PhotoMatch(photo_path=photo_path, similarity=similarity)
            by_photo[photo_path] = match
        elif similarity > match.similarity:
            match.similarity = similarity
        if face_id and face_id not in match.face_ids:
            match.face_ids.append(face_id)
    return list(by_photo.values())


def format_results_simple(
    matches: List[PhotoMatch],
    max_results: Optional[int] = None
) -> List[Dict[str, Any]]:
    """Format matches as plain dictionaries.

    Args:
        matches: Ranked matches
        max_results: Maximum number of results to include

    Returns:
        List of {rank, photo_path, similarity, face_ids} dictionaries
    """
    if max_results is not None:
        matches = matches[:max_results]
    return [m.to_dict() for m in matches]
