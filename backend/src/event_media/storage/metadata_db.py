"""Metadata database for events and indexed faces.

This module provides a SQLAlchemy interface for the relational side of the
pipeline: events (with their optional expiry), one row per indexed face, and
one indexing-state row per photo that produced faces. The (event slug, photo
path) pair is the idempotency key of face indexing.
"""

from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional, List, Dict, Any, Iterable, Union
import json
import logging
import re
import unicodedata

from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    Float,
    Date,
    DateTime,
    UniqueConstraint,
    Index as DBIndex,
    func
)
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from ..errors import InvalidInput, ObjectNotFound, RemoteError
from ..face import FaceRecord

logger = logging.getLogger(__name__)

Base = declarative_base()

# Cover images must never point into the private originals bucket
PRIVATE_ORIGINALS_MARKER = "/storage/v1/object/public/event-photos/"


def utcnow() -> datetime:
    """Naive UTC timestamp (all stored datetimes are naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Event(Base):
    """Event table.

    One row per published photo-shoot session. The slug names the event's
    storage namespace and its biometric collection.
    """
    __tablename__ = 'events'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True, index=True)
    location = Column(String(255), nullable=True)
    event_date = Column(Date, nullable=True)
    image_url = Column(String(2048), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Null means the event never expires
    expires_at = Column(DateTime, nullable=True, index=True)

    def to_dict(self) -> dict:
        """Convert event record to dictionary.

        Returns:
            Dictionary representation of the event
        """
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'location': self.location,
            'event_date': self.event_date.isoformat() if self.event_date else None,
            'image_url': self.image_url,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
        }


class EventFace(Base):
    """Indexed face table.

    Links one face identifier issued by the biometric index to the photo
    it was detected in.
    """
    __tablename__ = 'event_faces'

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_slug = Column(String(255), nullable=False, index=True)
    photo_path = Column(String(1024), nullable=False)
    face_id = Column(String(64), nullable=False)

    # Bounding box (stored as JSON): {Width, Height, Left, Top}
    bbox = Column(String(256), nullable=False)

    confidence = Column(Float, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('event_slug', 'face_id', name='uq_event_face'),
        DBIndex('idx_event_photo', 'event_slug', 'photo_path'),
    )

    def to_dict(self) -> dict:
        """Convert face record to dictionary."""
        return {
            'event_slug': self.event_slug,
            'photo_path': self.photo_path,
            'face_id': self.face_id,
            'bbox': json.loads(self.bbox) if self.bbox else None,
            'confidence': self.confidence,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class IndexedFile(Base):
    """Per-photo indexing state."""
    __tablename__ = 'event_indexed_files'

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_slug = Column(String(255), nullable=False, index=True)
    photo_path = Column(String(1024), nullable=False)
    faces_count = Column(Integer, nullable=False, default=0)
    indexed_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('event_slug', 'photo_path', name='uq_indexed_file'),
    )


def slugify(title: str) -> str:
    """Derive a URL-safe slug from an event title.

    Accents are stripped, the text lowercased and every run of
    non-alphanumerics collapsed into a single dash.

    Example:
        >>> slugify("Carrera Nocturna Año 2025!")
        'carrera-nocturna-ano-2025'
    """
    text = unicodedata.normalize('NFD', (title or '').lower())
    text = ''.join(ch for ch in text if not unicodedata.combining(ch))
    return re.sub(r'[^a-z0-9]+', '-', text).strip('-')


def normalize_event_date(raw: Union[str, date, None]) -> date:
    """Parse an event date given as YYYY-MM-DD or DD/MM/YYYY.

    Args:
        raw: Date string (or date)

    Returns:
        Parsed date

    Raises:
        InvalidInput: If the value is empty, malformed or not a real calendar date
    """
    if isinstance(raw, date):
        return raw
    s = (raw or '').strip()
    if not s:
        raise InvalidInput("missing_event_date")

    if re.fullmatch(r'\d{4}-\d{2}-\d{2}', s):
        year, month, day = (int(p) for p in s.split('-'))
    else:
        m = re.fullmatch(r'(\d{1,2})/(\d{1,2})/(\d{4})', s)
        if not m:
            raise InvalidInput(f"invalid_event_date: {s} (use DD/MM/YYYY or YYYY-MM-DD)")
        day, month, year = int(m.group(1)), int(m.group(2)), int(m.group(3))

    try:
        return date(year, month, day)
    except ValueError:
        raise InvalidInput(f"invalid_event_date: {s}")


def clean_cover_url(image_url: Optional[str]) -> Optional[str]:
    """Drop cover references that point into the private originals bucket."""
    if not image_url:
        return None
    if PRIVATE_ORIGINALS_MARKER in image_url:
        logger.warning(f"Ignoring cover image inside the originals bucket: {image_url}")
        return None
    return image_url


class MetadataStore:
    """Database store for events and indexed faces.

    Manages records in any SQLAlchemy-supported database with support for:
    - Event CRUD and expiry queries
    - Idempotent per-photo face persistence
    - Counted bulk deletes for the lifecycle reaper
    - Transaction management
    """

    def __init__(self, url: str, timeout: float = 30.0):
        """Initialize metadata store.

        Args:
            url: SQLAlchemy database URL (e.g. sqlite:///path/metadata.db)
            timeout: Connection/lock wait timeout in seconds
        """
        self.url = url
        connect_args: Dict[str, Any] = {}

        if url.startswith('sqlite'):
            db_file = url.split(':///', 1)[-1]
            if db_file and db_file != ':memory:':
                Path(db_file).parent.mkdir(parents=True, exist_ok=True)
            # For SQLite
            connect_args = {'check_same_thread': False, 'timeout': timeout}
        elif url.startswith('postgresql'):
            connect_args = {'connect_timeout': int(timeout)}

        self.engine = create_engine(url, echo=False, connect_args=connect_args)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

        Base.metadata.create_all(self.engine)

        logger.info(f"MetadataStore initialized: {self.engine.url.render_as_string(hide_password=True)}")

    @contextmanager
    def session_scope(self):
        """Provide a transactional scope for database operations.

        Usage:
            with store.session_scope() as session:
                session.add(event)
                # Commit happens automatically on success
                # Rollback happens automatically on exception

        Raises:
            InvalidInput: On constraint violations (duplicate slug, duplicate face)
            RemoteError: On any other database failure
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except IntegrityError as e:
            session.rollback()
            logger.error(f"Database constraint violated: {e.orig}")
            raise InvalidInput(f"constraint violated: {e.orig}") from e
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database error: {e}")
            raise RemoteError(
                f"metadata store: {e}",
                backend="metadata",
                transient=isinstance(e, OperationalError)
            ) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def create_event(
        self,
        name: str,
        event_date: Union[str, date],
        location: Optional[str] = None,
        image_url: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        slug: Optional[str] = None
    ) -> Event:
        """Create an event.

        Args:
            name: Human name (the slug is derived from it unless given)
            event_date: YYYY-MM-DD or DD/MM/YYYY
            location: Free-text location
            image_url: Public cover image reference
            expires_at: When the event becomes eligible for reaping
            slug: Explicit slug

        Returns:
            The created Event (detached)

        Raises:
            InvalidInput: Missing title, bad date, or slug already taken
        """
        name = (name or '').strip()
        if not name:
            raise InvalidInput("missing_event_title")
        parsed_date = normalize_event_date(event_date)
        slug = slugify(slug or name)
        if not slug:
            raise InvalidInput(f"invalid_event_slug: cannot derive a slug from {name!r}")

        with self.session_scope() as session:
            event = Event(
                name=name,
                slug=slug,
                location=location or None,
                event_date=parsed_date,
                image_url=clean_cover_url(image_url),
                expires_at=expires_at,
            )
            session.add(event)
            session.flush()
            session.expunge(event)

        logger.info(f"Created event {slug} (expires_at={expires_at})")
        return event

    def update_event(
        self,
        slug: str,
        name: Optional[str] = None,
        location: Optional[str] = None,
        event_date: Optional[Union[str, date]] = None,
        image_url: Optional[str] = None,
        expires_at: Optional[datetime] = None
    ) -> Event:
        """Patch an event; only non-empty fields are changed.

        Raises:
            InvalidInput: Nothing to update or bad date
            ObjectNotFound: No event with this slug
        """
        patch: Dict[str, Any] = {}
        if name and name.strip():
            patch['name'] = name.strip()
        if location and location.strip():
            patch['location'] = location.strip()
        if image_url:
            patch['image_url'] = clean_cover_url(image_url)
        if event_date:
            patch['event_date'] = normalize_event_date(event_date)
        if expires_at is not None:
            patch['expires_at'] = expires_at
        if not patch:
            raise InvalidInput("nothing_to_update")

        with self.session_scope() as session:
            event = session.query(Event).filter(Event.slug == slug).first()
            if event is None:
                raise ObjectNotFound(f"event {slug} not found", backend="metadata", path=slug)
            for key, value in patch.items():
                setattr(event, key, value)
            session.flush()
            session.expunge(event)

        logger.info(f"Updated event {slug}: {sorted(patch)}")
        return event

    def get_event(self, slug: str) -> Optional[Event]:
        """Get event by slug.

        Returns:
            Event record or None if not found
        """
        with self.session_scope() as session:
            event = session.query(Event).filter(Event.slug == slug).first()
            if event:
                # Detach from session
                session.expunge(event)
            return event

    def list_events(self) -> List[Event]:
        """Get all events, newest first."""
        with self.session_scope() as session:
            events = session.query(Event).order_by(Event.created_at.desc(), Event.id.desc()).all()
            for event in events:
                session.expunge(event)
            return events

    def list_expired_events(self, now: Optional[datetime] = None, limit: int = 20) -> List[Event]:
        """Get events whose expiry has been reached, oldest expiry first.

        Args:
            now: Reference time (default: current UTC time)
            limit: Maximum number of events to return

        Returns:
            List of Event records
        """
        now = now or utcnow()
        with self.session_scope() as session:
            events = session.query(Event).filter(
                Event.expires_at.isnot(None),
                Event.expires_at <= now
            ).order_by(Event.expires_at.asc()).limit(limit).all()
            for event in events:
                session.expunge(event)
            return events

    def delete_event(self, slug: str) -> bool:
        """Permanently delete an event row.

        Returns:
            True if a row was deleted, False if it was already absent
        """
        with self.session_scope() as session:
            deleted = session.query(Event).filter(Event.slug == slug).delete(synchronize_session=False)

        logger.debug(f"Deleted event row {slug}: {deleted}")
        return deleted > 0

    # ------------------------------------------------------------------
    # Indexed faces
    # ------------------------------------------------------------------

    def has_indexed_photo(self, event_slug: str, photo_path: str) -> bool:
        """Check whether a photo already produced face rows for an event."""
        with self.session_scope() as session:
            face = session.query(EventFace.id).filter(
                EventFace.event_slug == event_slug,
                EventFace.photo_path == photo_path
            ).first()
            if face is not None:
                return True
            indexed = session.query(IndexedFile.id).filter(
                IndexedFile.event_slug == event_slug,
                IndexedFile.photo_path == photo_path
            ).first()
            return indexed is not None

    def add_indexed_faces(
        self,
        event_slug: str,
        photo_path: str,
        faces: Iterable[FaceRecord]
    ) -> List[str]:
        """Persist the faces returned for one photo.

        Every row for the photo and its indexing-state row are written in a
        single transaction, so a failure leaves nothing behind for the photo.
        Records missing a face id or bounding box are dropped.

        Args:
            event_slug: Event slug
            photo_path: Object path of the original
            faces: Face records returned by the biometric index

        Returns:
            Face IDs persisted
        """
        complete = [f for f in faces if f.is_complete]
        if not complete:
            return []

        with self.session_scope() as session:
            for face in complete:
                session.add(EventFace(
                    event_slug=event_slug,
                    photo_path=photo_path,
                    face_id=face.face_id,
                    bbox=json.dumps(face.bbox.to_dict()),
                    confidence=face.confidence,
                ))
            session.add(IndexedFile(
                event_slug=event_slug,
                photo_path=photo_path,
                faces_count=len(complete),
            ))

        logger.debug(f"Added {len(complete)} faces for {event_slug}:{photo_path}")
        return [f.face_id for f in complete]

    def get_faces_for_event(self, event_slug: str) -> List[EventFace]:
        """Get all face rows of an event.

        Returns:
            List of EventFace records (detached)
        """
        with self.session_scope() as session:
            faces = session.query(EventFace).filter(
                EventFace.event_slug == event_slug
            ).order_by(EventFace.photo_path, EventFace.id).all()
            for face in faces:
                session.expunge(face)
            return faces

    def get_face_ids_for_event(self, event_slug: str) -> List[str]:
        """Get all biometric face identifiers of an event."""
        with self.session_scope() as session:
            rows = session.query(EventFace.face_id).filter(
                EventFace.event_slug == event_slug
            ).all()
            return [row[0] for row in rows]

    def count_faces(self, event_slug: Optional[str] = None) -> int:
        """Count face rows (for one event, or overall)."""
        with self.session_scope() as session:
            query = session.query(func.count(EventFace.id))
            if event_slug is not None:
                query = query.filter(EventFace.event_slug == event_slug)
            return query.scalar() or 0

    def count_indexed_photos(self, event_slug: Optional[str] = None) -> int:
        """Count photos with indexing-state rows (for one event, or overall)."""
        with self.session_scope() as session:
            query = session.query(func.count(IndexedFile.id))
            if event_slug is not None:
                query = query.filter(IndexedFile.event_slug == event_slug)
            return query.scalar() or 0

    def delete_faces_for_event(self, event_slug: str) -> int:
        """Delete every face row of an event.

        Returns:
            Number of rows deleted
        """
        with self.session_scope() as session:
            deleted = session.query(EventFace).filter(
                EventFace.event_slug == event_slug
            ).delete(synchronize_session=False)

        logger.info(f"Deleted {deleted} face rows for {event_slug}")
        return deleted

    def delete_indexed_files_for_event(self, event_slug: str) -> int:
        """Delete every indexing-state row of an event.

        Returns:
            Number of rows deleted
        """
        with self.session_scope() as session:
            deleted = session.query(IndexedFile).filter(
                IndexedFile.event_slug == event_slug
            ).delete(synchronize_session=False)

        logger.info(f"Deleted {deleted} indexed-file rows for {event_slug}")
        return deleted

    def get_stats(self, event_slug: Optional[str] = None) -> Dict[str, Any]:
        """Get database statistics.

        Returns:
            Dictionary with statistics
        """
        with self.session_scope() as session:
            events = session.query(func.count(Event.id)).scalar() or 0
        return {
            'event_slug': event_slug,
            'events': events,
            'faces': self.count_faces(event_slug),
            'indexed_photos': self.count_indexed_photos(event_slug),
            'url': self.engine.url.render_as_string(hide_password=True),
        }

    def __repr__(self) -> str:
        """String representation."""
        return f"MetadataStore(url='{self.engine.url.render_as_string(hide_password=True)}')"
