'''
Lifecycle of the per-identity deletion job document.

    (none) -> queued -> processing -> completed
                        processing -> failed -> queued

Every transition that depends on the current status runs in a Firestore
transaction; the claim is the only guard against two workers running the
same job.
'''
import enum
import datetime
from dataclasses import dataclass
from typing import Any, Dict, Optional

from google.cloud import firestore

from account_deletion import clients, config

logger = config.get_logger(__name__)


class JobStatus(str, enum.Enum):
    QUEUED = 'queued'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'


NOT_REQUESTED = 'not_requested'

# A repeated request leaves these untouched.
IN_FLIGHT_OR_DONE = {JobStatus.QUEUED, JobStatus.PROCESSING, JobStatus.COMPLETED}


def parse_status(value: Any) -> Optional[JobStatus]:
    try:
        return JobStatus(value)
    except ValueError:
        return None


def job_ref(uid: str) -> firestore.DocumentReference:
    return clients.firestore_client().collection(config.DELETION_JOB_COLLECTION).document(uid)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _as_aware(value: Any) -> Optional[datetime.datetime]:
    if not isinstance(value, datetime.datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def is_stale(data: Dict[str, Any], now: Optional[datetime.datetime] = None) -> bool:
    '''True when a processing job has not been (re)claimed within the staleness window.'''
    if parse_status(data.get('status')) is not JobStatus.PROCESSING:
        return False
    started_at = _as_aware(data.get('startedAt')) or _as_aware(data.get('updatedAt'))
    if started_at is None:
        return True
    threshold = datetime.timedelta(minutes=config.STALE_PROCESSING_MINUTES)
    return (now or _utcnow()) - started_at > threshold


def error_message(error: BaseException) -> str:
    return str(error) or error.__class__.__name__


# ===================== # Transitions # =====================
def _request_in_transaction(transaction, ref, uid: str) -> JobStatus:
    snapshot = ref.get(transaction=transaction)

    if not snapshot.exists:
        transaction.set(
            ref,
            {
                'uid': uid,
                'status': JobStatus.QUEUED.value,
                'requestedAt': firestore.SERVER_TIMESTAMP,
                'updatedAt': firestore.SERVER_TIMESTAMP,
                'attempts': 0,
                'lastError': None,
            },
        )
        return JobStatus.QUEUED

    data = snapshot.to_dict() or {}
    current_status = parse_status(data.get('status'))
    if current_status in IN_FLIGHT_OR_DONE and not is_stale(data):
        transaction.set(ref, {'updatedAt': firestore.SERVER_TIMESTAMP}, merge=True)
        return current_status

    # failed, unreadable or stuck in processing: start over
    transaction.set(
        ref,
        {
            'uid': uid,
            'status': JobStatus.QUEUED.value,
            'requestedAt': firestore.SERVER_TIMESTAMP,
            'updatedAt': firestore.SERVER_TIMESTAMP,
            'lastError': None,
        },
        merge=True,
    )
    return JobStatus.QUEUED


def request_deletion(uid: str) -> JobStatus:
    '''Creates or re-queues the job for uid and returns its resulting status.'''
    status = clients.run_transaction(_request_in_transaction, job_ref(uid), uid)
    logger.info(f'Deletion requested for {uid} => {status.value}')
    return status


def _claim_in_transaction(transaction, ref) -> bool:
    snapshot = ref.get(transaction=transaction)
    if not snapshot.exists:
        return False

    data = snapshot.to_dict() or {}
    status = parse_status(data.get('status'))
    if status is not JobStatus.QUEUED and not is_stale(data):
        return False
    if status is JobStatus.PROCESSING:
        logger.warning(f'Reclaiming stale deletion job {ref.id}')

    transaction.set(
        ref,
        {
            'status': JobStatus.PROCESSING.value,
            'startedAt': firestore.SERVER_TIMESTAMP,
            'updatedAt': firestore.SERVER_TIMESTAMP,
            'attempts': firestore.Increment(1),
            'lastError': None,
        },
        merge=True,
    )
    return True


def claim(uid: str) -> bool:
    '''Moves a queued (or stale processing) job to processing; True for the single winner.'''
    return clients.run_transaction(_claim_in_transaction, job_ref(uid))


def complete(uid: str, stats: Dict[str, int]) -> None:
    job_ref(uid).set(
        {
            'status': JobStatus.COMPLETED.value,
            'completedAt': firestore.SERVER_TIMESTAMP,
            'updatedAt': firestore.SERVER_TIMESTAMP,
            'lastError': None,
            'deletedCounts': dict(stats),
        },
        merge=True,
    )


def fail(uid: str, error: BaseException) -> None:
    job_ref(uid).set(
        {
            'status': JobStatus.FAILED.value,
            'failedAt': firestore.SERVER_TIMESTAMP,
            'updatedAt': firestore.SERVER_TIMESTAMP,
            'lastError': error_message(error),
        },
        merge=True,
    )


# ===================== # Status projection # =====================
@dataclass
class DeletionStatusView:
    status: str
    job_id: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            'status': self.status,
            'jobId': self.job_id,
            'updatedAt': self.updated_at,
            'completedAt': self.completed_at,
            'lastError': self.last_error,
        }


def _iso_or_none(value: Any) -> Optional[str]:
    aware = _as_aware(value)
    return aware.isoformat() if aware is not None else None


def get_status(uid: str) -> DeletionStatusView:
    snapshot = job_ref(uid).get()
    if not snapshot.exists:
        return DeletionStatusView(status=NOT_REQUESTED)

    data = snapshot.to_dict() or {}
    status = parse_status(data.get('status')) or JobStatus.FAILED
    last_error = data.get('lastError')
    return DeletionStatusView(
        status=status.value,
        job_id=uid,
        updated_at=_iso_or_none(data.get('updatedAt')),
        completed_at=_iso_or_none(data.get('completedAt')),
        last_error=last_error if isinstance(last_error, str) else None,
    )
