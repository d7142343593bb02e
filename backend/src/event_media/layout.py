"""Storage layout resolution for event photos.

Two historical layouts coexist in the originals bucket:

    legacy:   {slug}/{file}
    current:  eventos/{slug}/original/{file}
              eventos/{slug}/thumb/{base}.webp   (previews bucket)

The layout of an event is never stored; it is inferred at read time by trying
the current layout first and falling back to the legacy one only when the
current layout yields nothing. Every component resolves paths through this
module instead of re-implementing the fallback.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING

from .errors import InvalidInput

if TYPE_CHECKING:
    from .storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

CURRENT_ROOT = "eventos"

# Supported original image extensions
IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.webp'}

_SLUG_RE = re.compile(r'^[A-Za-z0-9][A-Za-z0-9._-]*$')


class Layout(str, Enum):
    """Storage layout of an event's originals."""
    CURRENT = "current"
    LEGACY = "legacy"


def is_image_file(name: str) -> bool:
    """Check if an object name has a supported image extension."""
    return PurePosixPath(name).suffix.lower() in IMAGE_EXTENSIONS


def validate_slug(slug: Optional[str]) -> str:
    """Normalize and validate an event slug.

    Args:
        slug: Raw slug from the caller

    Returns:
        Stripped slug

    Raises:
        InvalidInput: If the slug is empty or could escape its namespace
    """
    value = (slug or "").strip()
    if not value:
        raise InvalidInput("missing_event_slug")
    if not _SLUG_RE.match(value) or ".." in value:
        raise InvalidInput(f"invalid_event_slug: {value!r}")
    return value


def original_prefix(slug: str, layout: Layout) -> str:
    """Folder holding an event's originals in the given layout."""
    if layout is Layout.CURRENT:
        return f"{CURRENT_ROOT}/{slug}/original"
    return slug


def thumb_prefix(slug: str) -> str:
    """Folder holding an event's derived previews (always current layout)."""
    return f"{CURRENT_ROOT}/{slug}/thumb"


def original_path(slug: str, file_name: str, layout: Layout = Layout.CURRENT) -> str:
    """Full object path of an original file."""
    return f"{original_prefix(slug, layout)}/{file_name}"


def base_name(file_name: str) -> str:
    """Base name of a file: directory separators flattened, extension stripped."""
    safe = file_name.replace("/", "_").replace("\\", "_")
    return re.sub(r'\.[^.]+$', '', safe)


def thumb_name(file_name: str, ext: str = "webp") -> str:
    """Name of the derived asset for an original file name."""
    return f"{base_name(file_name)}.{ext}"


def thumb_path(slug: str, file_name: str, ext: str = "webp") -> str:
    """Deterministic derived-asset path for an original, regardless of its layout."""
    return f"{thumb_prefix(slug)}/{thumb_name(file_name, ext)}"


def file_name_of(path: str) -> str:
    """Last path component of an object path."""
    return path.rstrip("/").rsplit("/", 1)[-1]


def layout_of(slug: str, path: str) -> Optional[Layout]:
    """Infer the layout an original path belongs to.

    Returns:
        Layout, or None if the path is outside the event's namespaces
    """
    if path.startswith(original_prefix(slug, Layout.CURRENT) + "/"):
        return Layout.CURRENT
    if path.startswith(original_prefix(slug, Layout.LEGACY) + "/"):
        return Layout.LEGACY
    return None


def original_candidates(slug: str, file_name: str) -> List[str]:
    """Paths to try, in priority order, when reading one original."""
    return [
        original_path(slug, file_name, Layout.CURRENT),
        original_path(slug, file_name, Layout.LEGACY),
    ]


def event_namespaces(slug: str) -> List[Tuple[str, str]]:
    """Every (bucket, prefix) pair that may hold objects for an event.

    bucket is 'originals' or 'previews'. A slug equal to the current-layout
    root has no legacy namespace of its own.
    """
    namespaces = [("originals", f"{CURRENT_ROOT}/{slug}")]
    if slug != CURRENT_ROOT:
        namespaces.append(("originals", slug))
    namespaces.append(("previews", f"{CURRENT_ROOT}/{slug}"))
    return namespaces


@dataclass
class LayoutResolution:
    """Result of resolving an event's originals.

    Attributes:
        slug: Event slug
        layout: Layout the originals were found in (None if nothing found)
        prefix: Folder that was listed
        originals: Mapping of file name -> full object path
    """
    slug: str
    layout: Optional[Layout] = None
    prefix: Optional[str] = None
    originals: Dict[str, str] = field(default_factory=dict)

    @property
    def paths(self) -> List[str]:
        """Object paths of all originals, sorted by name."""
        return [self.originals[name] for name in sorted(self.originals)]

    @property
    def is_empty(self) -> bool:
        """True when neither layout holds any original."""
        return not self.originals

    def to_dict(self) -> Dict[str, object]:
        """Convert to dictionary format."""
        return {
            'slug': self.slug,
            'layout': self.layout.value if self.layout else None,
            'prefix': self.prefix,
            'originals': len(self.originals),
        }


def resolve(store: "ObjectStore", slug: str) -> LayoutResolution:
    """Resolve the originals of an event, current layout first.

    The legacy layout is listed only when the current layout yields no
    images. When both are empty the resolution is empty, which callers treat
    as "nothing to do".

    Args:
        store: Object store holding the originals
        slug: Event slug

    Returns:
        LayoutResolution
    """
    for layout in (Layout.CURRENT, Layout.LEGACY):
        prefix = original_prefix(slug, layout)
        originals = {
            entry.name: entry.path
            for entry in store.list(prefix)
            if not entry.is_folder and is_image_file(entry.name)
        }
        if originals:
            logger.debug(f"Resolved {len(originals)} originals for '{slug}' in {layout.value} layout")
            return LayoutResolution(slug=slug, layout=layout, prefix=prefix, originals=originals)

    logger.info(f"No originals found for '{slug}' in any layout")
    return LayoutResolution(slug=slug)


def cover_path(slug: str) -> str:
    """Cover image path of an event (previews bucket)."""
    return f"{CURRENT_ROOT}/{slug}/cover/cover.webp"


def validate_file_name(file_name: Optional[str]) -> str:
    """Validate the name of an original being uploaded.

    Raises:
        InvalidInput: Missing name, nested path, hidden file or unsupported type
    """
    value = (file_name or "").strip()
    if not value:
        raise InvalidInput("missing_file_name")
    if "/" in value or "\\" in value or value.startswith("."):
        raise InvalidInput(f"invalid_file_name: {value!r}")
    if not is_image_file(value):
        raise InvalidInput(f"unsupported_file_type: {value!r}")
    return value
