"""
SQLAlchemy ORM models with base classes and mixins.

Covers listings and their calendar feeds, derived check-in/check-out events
with their version history, cleaners and their assignments, weekly payment
reports, sync sessions and the notifications raised around cleaning jobs.
"""

import uuid
from datetime import datetime, date
from typing import Dict, Any
from sqlalchemy import (
    Column, String, Integer, DateTime, Date, Boolean, Numeric, Text, ForeignKey,
    Index, UniqueConstraint, CheckConstraint, Table, JSON,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

from .date_utils import utcnow


# Declarative base for all models
Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), 'postgresql')

# Hours and money come back as floats so report arithmetic stays in one type
Hours = Numeric(10, 2, asdecimal=False)
Money = Numeric(12, 2, asdecimal=False)


def new_uuid() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    """Mixin for automatic timestamp tracking"""
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class BaseModel:
    """Base model with common functionality"""

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert model instance to dictionary.

        Returns:
            dict: Dictionary representation of the model
        """
        result = {}
        for column in self.__table__.columns:
            value = getattr(self, column.name)
            # datetime is a subclass of date, both become ISO strings
            if isinstance(value, (datetime, date)):
                value = value.isoformat()
            result[column.name] = value
        return result

    def __repr__(self) -> str:
        """String representation of model"""
        return f"<{self.__class__.__name__}({self.to_dict()})>"


# ============================================================================
# Listings and feeds
# ============================================================================

listing_feeds = Table(
    'listing_feeds',
    Base.metadata,
    Column('listing_id', String(36), ForeignKey('listings.id', ondelete='CASCADE'), primary_key=True),
    Column('feed_id', String(36), ForeignKey('ical_feeds.id', ondelete='CASCADE'), primary_key=True),
)


class Listing(Base, BaseModel, TimestampMixin):
    """
    A managed property.

    Listings whose external_id starts with the manual prefix are maintained
    by hand and never synced from feeds.
    """
    __tablename__ = 'listings'

    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String(255), nullable=False, unique=True, comment="Display name, also used in reports")
    external_id = Column(String(255), nullable=True, comment="Channel listing id or manual-*")
    color = Column(String(20), nullable=True)
    bank_account = Column(String(255), nullable=True, comment="Account that pays for cleans of this listing")
    hours = Column(Hours, nullable=True, comment="Hours billed per clean, overrides assignment hours")
    is_active = Column(Boolean, default=True, nullable=False)

    feeds = relationship('Feed', secondary=listing_feeds, back_populates='listings', lazy='selectin')

    def to_dict(self, include_feeds: bool = False) -> Dict[str, Any]:
        result = super().to_dict()
        if include_feeds:
            result['feeds'] = [feed.to_dict() for feed in self.feeds]
        return result


class Feed(Base, BaseModel, TimestampMixin):
    """External iCal calendar source."""
    __tablename__ = 'ical_feeds'

    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String(255), nullable=False)
    url = Column(Text, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    last_synced = Column(DateTime, nullable=True, comment="Last successful fetch")

    listings = relationship('Listing', secondary=listing_feeds, back_populates='feeds')


# ============================================================================
# Calendar events
# ============================================================================

class Event(Base, BaseModel, TimestampMixin):
    """
    Derived check-in or check-out occurrence for a listing.

    Rows are deactivated, never deleted. Every content change or
    cancellation archives the prior state in EventVersion.
    """
    __tablename__ = 'calendar_events'

    id = Column(String(36), primary_key=True, default=new_uuid)
    event_uid = Column(String(255), nullable=False, comment="checkin-{booking} or checkout-{booking}")
    listing_id = Column(String(36), ForeignKey('listings.id'), nullable=False)
    feed_id = Column(String(36), ForeignKey('ical_feeds.id', ondelete='SET NULL'), nullable=True)
    title = Column(String(500), nullable=True)
    guest_name = Column(String(255), nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    is_check_in = Column(Boolean, default=False, nullable=False)
    is_check_out = Column(Boolean, default=False, nullable=False)
    checkout_type = Column(String(20), default='open', nullable=False)
    checkout_time = Column(String(8), nullable=True, comment="HH:MM:SS local time")
    is_active = Column(Boolean, default=True, nullable=False)
    version_number = Column(Integer, default=1, nullable=False)
    event_fingerprint = Column(String(64), nullable=True)
    last_synced = Column(DateTime, nullable=True)

    listing = relationship('Listing', lazy='joined')
    versions = relationship('EventVersion', back_populates='event', order_by='EventVersion.version_number')

    __table_args__ = (
        UniqueConstraint('listing_id', 'event_uid', name='uq_calendar_events_listing_uid'),
        CheckConstraint("checkout_type IN ('same_day', 'open')", name='ck_calendar_events_checkout_type'),
        Index('idx_calendar_events_listing_active', 'listing_id', 'is_active'),
        Index('idx_calendar_events_start', 'start_time'),
    )

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['listing_name'] = self.listing.name if self.listing else None
        result['listing_hours'] = self.listing.hours if self.listing else None
        return result


class EventVersion(Base, BaseModel):
    """Immutable history row, written before an event is moved or canceled."""
    __tablename__ = 'calendar_event_versions'

    id = Column(String(36), primary_key=True, default=new_uuid)
    event_id = Column(String(36), ForeignKey('calendar_events.id', ondelete='CASCADE'), nullable=False)
    version_number = Column(Integer, nullable=False)
    previous_start_time = Column(DateTime, nullable=True)
    previous_end_time = Column(DateTime, nullable=True)
    change_type = Column(String(20), nullable=False)
    sync_session_id = Column(String(36), ForeignKey('sync_sessions.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    event = relationship('Event', back_populates='versions')

    __table_args__ = (
        CheckConstraint("change_type IN ('moved', 'canceled')", name='ck_event_versions_change_type'),
        Index('idx_event_versions_event', 'event_id'),
    )


# ============================================================================
# Cleaners and assignments
# ============================================================================

class Cleaner(Base, BaseModel, TimestampMixin):
    """Worker profile; hourly_rate drives payment reports."""
    __tablename__ = 'cleaners'

    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True, unique=True)
    phone = Column(String(50), nullable=True)
    hourly_rate = Column(Money, default=0, nullable=False)
    role = Column(String(20), default='cleaner', nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class CleanerAssignment(Base, BaseModel, TimestampMixin):
    """
    Cleaner-to-event link.

    Reassignment deactivates the previous row and inserts a new one, so
    at most one row per event is active.
    """
    __tablename__ = 'cleaner_assignments'

    id = Column(String(36), primary_key=True, default=new_uuid)
    cleaner_id = Column(String(36), ForeignKey('cleaners.id', ondelete='CASCADE'), nullable=False)
    event_id = Column(String(36), ForeignKey('calendar_events.id', ondelete='CASCADE'), nullable=False)
    hours = Column(Hours, default=2.0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    cleaner = relationship('Cleaner', lazy='joined')
    event = relationship('Event', lazy='joined')

    __table_args__ = (
        Index('idx_cleaner_assignments_event_active', 'event_id', 'is_active'),
        Index('idx_cleaner_assignments_cleaner', 'cleaner_id'),
    )

    def to_dict(self, include_event: bool = True) -> Dict[str, Any]:
        result = super().to_dict()
        result['cleaner_name'] = self.cleaner.name if self.cleaner else None
        if include_event and self.event is not None:
            result['event'] = self.event.to_dict()
        return result


class CleanerExtraReport(Base, BaseModel, TimestampMixin):
    """Weekly travel time and extra hours declared by a cleaner."""
    __tablename__ = 'cleaner_extra_reports'

    id = Column(String(36), primary_key=True, default=new_uuid)
    cleaner_id = Column(String(36), ForeignKey('cleaners.id', ondelete='CASCADE'), nullable=False)
    week_start_date = Column(Date, nullable=False)
    travel_minutes = Column(Integer, default=0, nullable=False)
    extra_hours = Column(Hours, default=0, nullable=False)
    listing_id = Column(String(36), ForeignKey('listings.id', ondelete='SET NULL'), nullable=True)
    notes = Column(Text, nullable=True)

    listing = relationship('Listing', lazy='joined')

    __table_args__ = (
        CheckConstraint('travel_minutes >= 0', name='ck_extra_reports_travel'),
        CheckConstraint('extra_hours >= 0', name='ck_extra_reports_hours'),
        Index('idx_extra_reports_cleaner_week', 'cleaner_id', 'week_start_date'),
    )

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['listing_name'] = self.listing.name if self.listing else None
        return result


class PaymentReport(Base, BaseModel, TimestampMixin):
    """
    Weekly payment snapshot for one cleaner.

    report_data is a denormalized copy of the week's assignments, so the
    report survives later edits or deletion of the underlying rows.
    """
    __tablename__ = 'cleaner_payment_reports'

    id = Column(String(36), primary_key=True, default=new_uuid)
    cleaner_id = Column(String(36), ForeignKey('cleaners.id', ondelete='CASCADE'), nullable=False)
    week_start = Column(Date, nullable=False)
    week_end = Column(Date, nullable=False)
    total_hours = Column(Hours, default=0, nullable=False)
    total_amount = Column(Money, default=0, nullable=False)
    base_rate = Column(Money, default=0, nullable=False)
    status = Column(String(20), default='pending', nullable=False)
    report_data = Column(JSONType, nullable=True)
    rejection_message = Column(Text, nullable=True)
    bank_account_statuses = Column(JSONType, nullable=True)

    cleaner = relationship('Cleaner', lazy='joined')

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'paid', 'rejected')",
            name='ck_payment_reports_status'
        ),
        Index('idx_payment_reports_cleaner_week', 'cleaner_id', 'week_start', 'week_end'),
    )

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        if self.cleaner is not None:
            result['cleaner'] = {
                'id': self.cleaner.id,
                'name': self.cleaner.name,
                'hourly_rate': self.cleaner.hourly_rate,
            }
        return result


# ============================================================================
# Sync sessions
# ============================================================================

class SyncSession(Base, BaseModel, TimestampMixin):
    """One sync run over a single listing or all listings."""
    __tablename__ = 'sync_sessions'

    id = Column(String(36), primary_key=True, default=new_uuid)
    sync_type = Column(String(20), nullable=False)
    triggered_by = Column(String(50), default='manual', nullable=False)
    listing_id = Column(String(36), ForeignKey('listings.id', ondelete='SET NULL'), nullable=True)
    listing_name = Column(String(255), nullable=True)
    status = Column(String(20), default='pending', nullable=False)
    started_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, nullable=True)

    total_listings = Column(Integer, default=0, nullable=False)
    completed_listings = Column(Integer, default=0, nullable=False)
    total_events_processed = Column(Integer, default=0, nullable=False)
    total_feeds_processed = Column(Integer, default=0, nullable=False)
    total_added = Column(Integer, default=0, nullable=False)
    total_updated = Column(Integer, default=0, nullable=False)
    total_deactivated = Column(Integer, default=0, nullable=False)
    total_replaced = Column(Integer, default=0, nullable=False)
    total_unchanged = Column(Integer, default=0, nullable=False)
    total_errors = Column(Integer, default=0, nullable=False)

    error_message = Column(Text, nullable=True)
    error_details = Column(JSONType, nullable=True)

    __table_args__ = (
        CheckConstraint("sync_type IN ('single', 'all')", name='ck_sync_sessions_type'),
        CheckConstraint(
            "status IN ('pending', 'in_progress', 'completed', 'error', 'partial')",
            name='ck_sync_sessions_status'
        ),
        Index('idx_sync_sessions_started', 'started_at'),
    )


class SyncLogEntry(Base, BaseModel):
    """One event-level decision made during a sync session."""
    __tablename__ = 'sync_log_entries'

    id = Column(String(36), primary_key=True, default=new_uuid)
    sync_session_id = Column(String(36), ForeignKey('sync_sessions.id', ondelete='CASCADE'), nullable=False)
    operation = Column(String(50), nullable=False)
    event_id = Column(String(255), nullable=True)
    listing_name = Column(String(255), nullable=True)
    event_details = Column(JSONType, nullable=True)
    reasoning = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    entry_metadata = Column('metadata', JSONType, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index('idx_sync_log_entries_session', 'sync_session_id'),
        Index('idx_sync_log_entries_operation', 'operation'),
    )

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['metadata'] = self.entry_metadata
        return result


# ============================================================================
# Jobs and notifications
# ============================================================================

class Notification(Base, BaseModel, TimestampMixin):
    """Message shown to a cleaner."""
    __tablename__ = 'notifications'

    id = Column(String(36), primary_key=True, default=new_uuid)
    cleaner_id = Column(String(36), ForeignKey('cleaners.id', ondelete='CASCADE'), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(50), nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    related_id = Column(String(36), nullable=True, comment="Report or job the notice refers to")

    __table_args__ = (
        Index('idx_notifications_cleaner', 'cleaner_id', 'updated_at'),
    )


class JobTimer(Base, BaseModel):
    """Running timer for a cleaning job in progress."""
    __tablename__ = 'job_timers'

    id = Column(String(36), primary_key=True, default=new_uuid)
    assignment_id = Column(String(36), ForeignKey('cleaner_assignments.id', ondelete='CASCADE'), nullable=False)
    cleaner_id = Column(String(36), ForeignKey('cleaners.id', ondelete='CASCADE'), nullable=False)
    start_time = Column(DateTime, default=utcnow, nullable=False)


class JobCompletion(Base, BaseModel, TimestampMixin):
    """Checklist and timing submitted when a cleaner finishes a job."""
    __tablename__ = 'job_completions'

    id = Column(String(36), primary_key=True, default=new_uuid)
    assignment_id = Column(String(36), ForeignKey('cleaner_assignments.id', ondelete='CASCADE'), nullable=False)
    cleaner_id = Column(String(36), ForeignKey('cleaners.id', ondelete='CASCADE'), nullable=False)
    completion_date = Column(Date, nullable=False)
    listing_name = Column(String(255), nullable=False)
    cleanliness_rating = Column(Integer, nullable=False)
    damage_question = Column(String(10), nullable=False)
    damage_images = Column(JSONType, nullable=True)
    checklist_items = Column(JSONType, nullable=True)
    images = Column(JSONType, nullable=True)
    missing_items_details = Column(Text, nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    duration_seconds = Column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint('cleanliness_rating BETWEEN 1 AND 5', name='ck_job_completions_rating'),
        CheckConstraint("damage_question IN ('Yes', 'No', 'Maybe')", name='ck_job_completions_damage'),
    )


class JobNotification(Base, BaseModel, TimestampMixin):
    """Admin-facing notice that a job was completed."""
    __tablename__ = 'job_notifications'

    id = Column(String(36), primary_key=True, default=new_uuid)
    job_completion_id = Column(String(36), ForeignKey('job_completions.id', ondelete='CASCADE'), nullable=False)
    cleaner_id = Column(String(36), ForeignKey('cleaners.id', ondelete='CASCADE'), nullable=False)
    listing_name = Column(String(255), nullable=True)
    completion_date = Column(Date, nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
