"""
Celery Beat Schedule Configuration

Defines periodic tasks that run on a schedule.
"""

from celery.schedules import crontab

# Schedule configuration
beat_schedule = {
    # Snapshot sweep - every 15 minutes. Rebuilds up to
    # SNAPSHOT_REFRESH_BATCH_SIZE members with a missing or stale snapshot.
    'refresh-member-snapshots': {
        'task': 'tasks.refresh_member_snapshots',
        'schedule': crontab(minute='*/15'),
    },
}
