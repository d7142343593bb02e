"""Storage layer for the event media pipeline.

This module provides the adapters for persistent state:
- Object stores for originals and derived previews (local or S3)
- Metadata database for events and indexed faces
- Per-event advisory locks

Usage:
    from event_media.storage import LocalObjectStore, MetadataStore

    originals = LocalObjectStore(root='./storage', bucket='event-photos')
    store = MetadataStore('sqlite:///./metadata.db')

    event = store.create_event(name='Carrera 2025', event_date='20/10/2025')
    for entry in originals.list(f'eventos/{event.slug}/original'):
        print(entry.path)
"""

from .object_store import (
    ObjectStore,
    LocalObjectStore,
    S3ObjectStore,
    StoredObject,
    make_object_store,
)
from .metadata_db import (
    MetadataStore,
    Event,
    EventFace,
    IndexedFile,
    slugify,
    normalize_event_date,
)
from .event_lock import EventLock, event_lock

__all__ = [
    'ObjectStore',
    'LocalObjectStore',
    'S3ObjectStore',
    'StoredObject',
    'make_object_store',
    'MetadataStore',
    'Event',
    'EventFace',
    'IndexedFile',
    'slugify',
    'normalize_event_date',
    'EventLock',
    'event_lock',
]
