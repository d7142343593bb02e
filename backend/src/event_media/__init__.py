"""
event_media - Face indexing, watermarked previews, selfie search and expiry for event photos.
"""

__version__ = "0.1.0"


def index_event(*args, **kwargs):
    """Index every photo of an event into its biometric collection.

    See event_media._operations.index_event for full docs.
    """
    from ._operations import index_event as _index

    return _index(*args, **kwargs)


def repair_thumbnails(*args, **kwargs):
    """Generate the missing previews of an event.

    See event_media._operations.repair_thumbnails for full docs.
    """
    from ._operations import repair_thumbnails as _repair

    return _repair(*args, **kwargs)


def search_selfie(*args, **kwargs):
    """Find the photos of an event that contain the selfie's person.

    See event_media._operations.search_selfie for full docs.
    """
    from ._operations import search_selfie as _search

    return _search(*args, **kwargs)


def reap_expired(*args, **kwargs):
    """Remove expired events from every backend.

    See event_media._operations.reap_expired for full docs.
    """
    from ._operations import reap_expired as _reap

    return _reap(*args, **kwargs)
