from typing import Any, Dict, Optional

from firebase_functions import firestore_fn, https_fn, options

from account_deletion import clients, config, identity, jobs, orchestrator

logger = config.get_logger(__name__)

# on_call verifies ID tokens against the default app
clients.firebase_app()

CALLABLE_CORS = options.CorsOptions(cors_origins=config.CORS_ORIGINS, cors_methods=['post'])
JOB_DOCUMENT = f'{config.DELETION_JOB_COLLECTION}/{{uid}}'


def _caller_uid(req: https_fn.CallableRequest) -> str:
    if req.auth is None or not req.auth.uid:
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.UNAUTHENTICATED, 'You must be signed in to do this.'
        )
    return req.auth.uid


# ===================== # Callable functions # =====================
@https_fn.on_call(cors=CALLABLE_CORS, timeout_sec=120)
def request_account_deletion(req: https_fn.CallableRequest) -> Dict[str, Any]:
    '''Queues the caller's account for deletion and revokes their sessions.'''
    uid = _caller_uid(req)
    try:
        status = jobs.request_deletion(uid)
    except Exception as e:
        logger.exception(f'Failed to enqueue account deletion for {uid}:')
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.INTERNAL,
            'Could not start account deletion. Please try again.',
        ) from e

    identity.revoke_sessions(uid)

    return {
        'accepted': status in jobs.IN_FLIGHT_OR_DONE,
        'status': status.value,
        'jobId': uid,
    }


@https_fn.on_call(cors=CALLABLE_CORS, timeout_sec=60)
def get_account_deletion_status(req: https_fn.CallableRequest) -> Dict[str, Any]:
    return jobs.get_status(_caller_uid(req)).to_dict()


@https_fn.on_call(cors=CALLABLE_CORS, timeout_sec=540)
def delete_user_account(req: https_fn.CallableRequest) -> Dict[str, Any]:
    '''Runs the whole cascade inside the request, bypassing the job queue.'''
    uid = _caller_uid(req)
    try:
        stats = orchestrator.execute_account_deletion(uid)
        jobs.complete(uid, stats)
    except Exception as e:
        logger.exception(f'Account deletion failed (direct callable) for {uid}:')
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.INTERNAL,
            'Account deletion failed. Please try again in a few minutes.',
        ) from e

    return {'success': True, 'deletedCounts': stats}


# ===================== # Firestore triggers # =====================
def _job_status(snapshot) -> Optional[jobs.JobStatus]:
    if snapshot is None or not snapshot.exists:
        return None
    return jobs.parse_status((snapshot.to_dict() or {}).get('status'))


@firestore_fn.on_document_created(
    document=JOB_DOCUMENT, database=config.FIRESTORE_DATABASE, timeout_sec=540
)
def on_deletion_job_created(event: firestore_fn.Event[firestore_fn.DocumentSnapshot]) -> None:
    orchestrator.process_deletion_job(event.params['uid'])


@firestore_fn.on_document_updated(
    document=JOB_DOCUMENT, database=config.FIRESTORE_DATABASE, timeout_sec=540
)
def on_deletion_job_updated(event: firestore_fn.Event) -> None:
    '''Picks up jobs re-entering queued, e.g. a retry after failure.'''
    before_status = _job_status(event.data.before)
    after_status = _job_status(event.data.after)
    if after_status is not jobs.JobStatus.QUEUED or before_status is jobs.JobStatus.QUEUED:
        return

    orchestrator.process_deletion_job(event.params['uid'])
