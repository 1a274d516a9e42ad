"""
Celery tasks for pipeline housekeeping
"""
import logging

from celery import shared_task

from pipelines.orchestration.lifecycle import purge_expired_pipelines as purge_expired

logger = logging.getLogger(__name__)


@shared_task(name='pipelines.tasks.purge_expired_pipelines')
def purge_expired_pipelines():
    """
    Task: Hard-delete soft-deleted pipelines past their backup retention.

    Scheduled hourly through the beat schedule in cdcstream/celery.py.
    """
    logger.info("=" * 60)
    logger.info("PIPELINE CLEANUP - Purging expired soft-deleted pipelines")
    logger.info("=" * 60)

    result = purge_expired()

    logger.info(f"PIPELINE CLEANUP - Purged {result['purged']} pipelines")
    return result
