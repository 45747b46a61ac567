"""
Background scheduler for automated tasks.

Handles:
- Nightly rewards apply (daily at REWARDS_APPLY_CRON_HOUR UTC, default 2 AM)
"""
import os
import atexit
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)

SCHEDULER_ACTOR = 'system:scheduler'

# Global scheduler instance
_scheduler = None
_flask_app = None  # Flask app reference for job context


def init_scheduler(app):
    """
    Initialize the background scheduler.

    Only runs in production or when ENABLE_SCHEDULER is set.
    Only the main gunicorn process should run the scheduler.
    """
    global _scheduler, _flask_app

    _flask_app = app

    if app.config.get('TESTING'):
        logger.debug('[Scheduler] Disabled in testing mode')
        return

    if not (os.getenv('FLASK_ENV') == 'production' or app.config.get('ENABLE_SCHEDULER')):
        logger.info('[Scheduler] Disabled (set FLASK_ENV=production or ENABLE_SCHEDULER=true)')
        return

    # Prevent multiple scheduler instances across gunicorn workers
    if os.getenv('SCHEDULER_RUNNING') == 'true':
        logger.info('[Scheduler] Already running in another process')
        return

    hour = app.config.get('REWARDS_APPLY_CRON_HOUR', 2)

    try:
        _scheduler = BackgroundScheduler(
            timezone='UTC',
            job_defaults={
                'coalesce': True,  # Combine missed runs
                'max_instances': 1,  # Prevent concurrent runs
                'misfire_grace_time': 3600  # 1 hour grace period
            }
        )

        _scheduler.add_job(
            run_rewards_apply,
            trigger=CronTrigger(hour=hour, minute=0),
            id='rewards_apply',
            name='Apply eligibility rules',
            replace_existing=True
        )

        _scheduler.start()
        os.environ['SCHEDULER_RUNNING'] = 'true'
        logger.info(f'[Scheduler] Started: rewards apply daily at {hour}:00 UTC')

        atexit.register(shutdown_scheduler)

    except Exception as e:
        logger.error(f'[Scheduler] Failed to initialize: {e}')


def shutdown_scheduler():
    """Gracefully shutdown the scheduler."""
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info('[Scheduler] Shutdown complete')


def run_rewards_apply():
    """
    Evaluate all active rules and persist assignments.

    Runs nightly. Safe to overlap with a manual run: grants are idempotent
    and tiers are promotion-only.
    """
    global _flask_app

    if not _flask_app:
        logger.error('[Scheduler] Flask app not initialized')
        return

    logger.info('[Scheduler] Starting rewards apply...')

    with _flask_app.app_context():
        try:
            from ..services.evaluation_service import EvaluationService

            result = EvaluationService().apply(actor=SCHEDULER_ACTOR)

            logger.info(
                f'[Scheduler] Rewards apply {result.run_id} complete: '
                f'{result.evaluated} evaluated, {result.tiers_changed} tiers, '
                f'{result.badges_granted} badges, {result.gifts_granted} gifts, '
                f'{len(result.failed)} failed'
            )

        except Exception as e:
            logger.error(f'[Scheduler] Rewards apply failed: {e}')
