"""
Best-effort activity feed.

Callers record what happened (an enquiry arrived, a notice went out) and move
on. Writes run on a background scheduler, and a failed write is logged on the
``activity`` logger but never reaches the caller.
"""
import atexit
from enum import Enum
import logging
import traceback
import uuid

from apscheduler.events import EVENT_JOB_ERROR
from flask import current_app, has_app_context
from flask_apscheduler import APScheduler
from sqlalchemy.exc import SQLAlchemyError

from errors import LoggingError
from models import db, ActivityLog

logger = logging.getLogger('activity')


class ActivityType(str, Enum):
    NEW_APPLICATION = 'new_application'
    STUDENT_ADMITTED = 'student_admitted'
    STUDENT_ADDED = 'student_added'
    GALLERY_UPLOAD = 'gallery_upload'
    NOTE_PUBLISHED = 'note_published'
    NOTICE_PUBLISHED = 'notice_published'
    NEW_ENQUIRY = 'new_enquiry'
    NEW_MESSAGE = 'new_message'


# Every payload carries a description and may carry a link
BASE_FIELDS = frozenset({'description', 'link'})

# Extra keys each kind may carry
PAYLOAD_FIELDS = {
    ActivityType.NEW_APPLICATION: frozenset({'application_id', 'name', 'course'}),
    ActivityType.STUDENT_ADMITTED: frozenset({'application_id', 'user_id', 'name', 'course'}),
    ActivityType.STUDENT_ADDED: frozenset({'user_id', 'name', 'course'}),
    ActivityType.GALLERY_UPLOAD: frozenset({'item_id', 'media_type', 'public_id'}),
    ActivityType.NOTE_PUBLISHED: frozenset({'note_id', 'title', 'course'}),
    ActivityType.NOTICE_PUBLISHED: frozenset({'notice_id', 'title'}),
    ActivityType.NEW_ENQUIRY: frozenset({'enquiry_id', 'name', 'course'}),
    ActivityType.NEW_MESSAGE: frozenset({'message_id', 'name', 'subject'}),
}


def build_record(activity_type, payload):
    """Validate a payload against its kind and return the record to append.

    Raises ValueError for an unknown kind, a missing description or keys the
    kind does not allow. Those are mistakes in the calling code, not logging
    failures.
    """
    activity_type = ActivityType(activity_type)
    if not isinstance(payload, dict):
        raise ValueError('Activity payload must be a mapping')

    description = payload.get('description')
    if not isinstance(description, str) or not description.strip():
        raise ValueError(f'Activity {activity_type.value} needs a description')

    unknown = set(payload) - BASE_FIELDS - PAYLOAD_FIELDS[activity_type]
    if unknown:
        raise ValueError(f"Unexpected fields for {activity_type.value}: {', '.join(sorted(unknown))}")

    return {
        'type': activity_type.value,
        'payload': {key: value for key, value in payload.items() if value is not None},
    }


class DatabaseActivityStore:
    """Appends records to the activity_log table"""

    def __init__(self, database):
        self.db = database

    def append(self, record):
        try:
            self.db.session.add(ActivityLog(type=record['type'], payload=record['payload']))
            self.db.session.commit()
        except SQLAlchemyError as e:
            self.db.session.rollback()
            raise LoggingError(str(e)) from e


class InlineDispatcher:
    """Runs the write immediately in the caller's thread (tests, CLI scripts)"""

    def __call__(self, func, *args):
        func(*args)


class SchedulerDispatcher:
    """Queues each write as a one-shot job on the app's scheduler"""

    def __init__(self, scheduler, app):
        self.scheduler = scheduler
        self.app = app

    def __call__(self, func, *args):
        self.scheduler.add_job(
            id=f'activity-{uuid.uuid4().hex}',
            func=self._run_in_context,
            args=(func,) + args,
            trigger='date',
            misfire_grace_time=60,
        )

    def _run_in_context(self, func, *args):
        with self.app.app_context():
            func(*args)


class ActivityLogWriter:
    def __init__(self, store=None, dispatcher=None):
        self.store = store
        self.dispatch = dispatcher or InlineDispatcher()

    @property
    def available(self):
        return self.store is not None

    def log(self, activity_type, payload):
        """Queue one record. Returns False when nothing was queued.

        Never raises: an invalid payload is reported on the activity logger
        like any other logging failure.
        """
        if not self.available:
            return False
        try:
            record = build_record(activity_type, payload)
        except ValueError as e:
            logger.error(f"[ACTIVITY] Dropped invalid {getattr(activity_type, 'value', activity_type)} record: {e}")
            return False
        try:
            self.dispatch(self._append, record)
        except Exception as e:
            logger.error(f"[ACTIVITY] Could not queue {record['type']}: {e}")
            return False
        return True

    def _append(self, record):
        try:
            self.store.append(record)
        except Exception as e:
            logger.error(f"[ACTIVITY] Failed to log {record['type']}: {e}")
            logger.debug(f"[ACTIVITY] Traceback: {traceback.format_exc()}")
            return False
        return True


def _report_job_error(event):
    logger.error(f"[ACTIVITY] Background job {event.job_id} failed: {event.exception}")
    if event.traceback:
        logger.debug(f"[ACTIVITY] Traceback: {event.traceback}")


def shutdown_scheduler(scheduler):
    """Stop a background scheduler at interpreter exit, once"""
    if scheduler.running:
        scheduler.shutdown(wait=False)


def init_activity_log(app):
    """Attach an ActivityLogWriter to the app according to its config"""
    if not app.config.get('ACTIVITY_LOG_ENABLED', True):
        app.logger.warning("[ACTIVITY] Activity logging disabled, events will be dropped")
        writer = ActivityLogWriter(store=None)
    elif app.config.get('ACTIVITY_LOG_DISPATCH', 'scheduler') == 'inline':
        writer = ActivityLogWriter(DatabaseActivityStore(db), InlineDispatcher())
    else:
        scheduler = APScheduler()
        scheduler.init_app(app)
        scheduler.add_listener(_report_job_error, EVENT_JOB_ERROR)
        scheduler.start()
        atexit.register(shutdown_scheduler, scheduler)
        app.extensions['activity_scheduler'] = scheduler
        writer = ActivityLogWriter(DatabaseActivityStore(db), SchedulerDispatcher(scheduler, app))

    app.extensions['activity_log'] = writer
    return writer


def log_activity(activity_type, payload):
    """Record an activity for the current app without blocking or raising.

    Returns True if the record was handed to the store, False if there was no
    store to hand it to or the payload was invalid.
    """
    if not has_app_context():
        return False
    writer = current_app.extensions.get('activity_log')
    if writer is None:
        return False
    return writer.log(activity_type, payload)
