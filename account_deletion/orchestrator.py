from typing import Callable, List, Optional, Tuple

from account_deletion import cascades, config, identity, jobs
from account_deletion.cascades import DeletionStats

logger = config.get_logger(__name__)


def execute_account_deletion(
    uid: str,
    stages: Optional[List[Tuple[str, Callable[[str], DeletionStats]]]] = None,
) -> DeletionStats:
    '''
    Runs every cascade stage for uid in order and returns the merged stats.
    Any stage error propagates; nothing already deleted is rolled back since
    every stage is safe to run again.
    '''
    stats: DeletionStats = {}
    logger.info(f'Starting account deletion for {uid}')

    identity.revoke_sessions(uid)

    for stage_name, stage in stages or cascades.CASCADE_STAGES:
        partial = stage(uid)
        cascades.merge_stats(stats, partial)
        logger.info(f'Stage {stage_name} finished for {uid} => {partial}')

    logger.info(f'Account deletion completed for {uid} => {stats}')
    return stats


def process_deletion_job(uid: str) -> bool:
    '''Claims the job for uid and runs the cascade; False when another worker owns it.'''
    if not jobs.claim(uid):
        logger.info(f'Deletion job for {uid} not claimed; skipping')
        return False

    try:
        stats = execute_account_deletion(uid)
    except Exception as e:
        logger.exception(f'Deletion job failed for {uid}:')
        jobs.fail(uid, e)
        return True

    jobs.complete(uid, stats)
    return True
