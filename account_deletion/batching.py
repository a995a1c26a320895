import time
import functools
import concurrent.futures as futures
from typing import Any, Callable, Iterable, Iterator, List, Optional, TypeVar

from google.api_core import exceptions
from google.cloud import firestore

from account_deletion import clients, config

logger = config.get_logger(__name__)

T = TypeVar('T')

TRANSIENT_ERRORS = (
    exceptions.ServiceUnavailable,
    exceptions.DeadlineExceeded,
    exceptions.Aborted,
    exceptions.InternalServerError,
)


# ===================== # Small utilities # =====================
def _retry(max_attempts: int = 3, base_delay: float = 0.5):
    '''Decorator for retrying transient store errors with exponential backoff.'''

    def deco(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            delay = base_delay
            for attempt in range(1, max_attempts + 1):
                try:
                    return fn(*args, **kwargs)
                except TRANSIENT_ERRORS as e:
                    logger.warning(
                        f'Attempt {attempt}/{max_attempts} failed for {fn.__name__} with error: {e}'
                    )
                    if attempt == max_attempts:
                        raise
                    time.sleep(delay)
                    delay *= 2
            return None

        return wrapper

    return deco


def chunk_list(data: List[T], size: int) -> List[List[T]]:
    '''Splits a list into successive chunks of at most size items.'''
    if not data:
        return []

    chunked_data = []
    for i in range(0, len(data), size):
        chunked_data.append(data[i : i + size])

    return chunked_data


def top_level_query(collection: str, field: str, value: Any):
    return clients.firestore_client().collection(collection).where(field, '==', value)


def collection_group_query(collection_id: str, field: str, value: Any):
    '''Equality query across every sub-collection named collection_id.'''
    return (
        clients.firestore_client()
        .collection_group(collection_id)
        .where(field, '==', value)
    )


# ===================== # Batched deleter # =====================
@_retry()
def _commit_delete_batch(refs: List[firestore.DocumentReference]) -> int:
    '''Deletes one chunk of references in a single batched write.'''
    batch = clients.firestore_client().batch()
    for ref in refs:
        batch.delete(ref)
    batch.commit()
    return len(refs)


def delete_refs_in_batches(
    refs: Iterable[firestore.DocumentReference], batch_size: Optional[int] = None
) -> int:
    '''
    Deletes references in chunks no larger than the write batch ceiling.
    Chunks are committed in parallel; the first failing chunk raises.
    '''
    chunks = chunk_list(list(refs), batch_size or config.WRITE_BATCH_SIZE)
    if not chunks:
        return 0
    if len(chunks) == 1:
        return _commit_delete_batch(chunks[0])

    with futures.ThreadPoolExecutor(
        max_workers=min(config.MAX_WORKERS, len(chunks))
    ) as ex:
        return sum(ex.map(_commit_delete_batch, chunks))


# ===================== # Paginated scanner # =====================
def scan_pages(query, page_size: Optional[int] = None) -> Iterator[List[Any]]:
    '''
    Yields pages of snapshots matching query until a page comes back short.

    The caller must remove every document of a page before advancing the
    iterator, otherwise the next query returns the same documents again.
    '''
    page_size = page_size or config.QUERY_BATCH_SIZE
    while True:
        page = list(query.limit(page_size).get())
        if not page:
            return
        yield page
        if len(page) < page_size:
            return


def scan_and_delete(
    query,
    page_size: Optional[int] = None,
    batch_size: Optional[int] = None,
    on_page: Optional[Callable[[List[Any]], None]] = None,
) -> int:
    '''Deletes every document matching query; on_page sees each page after its deletion.'''
    total_deleted = 0
    for page in scan_pages(query, page_size):
        total_deleted += delete_refs_in_batches(
            [snapshot.reference for snapshot in page], batch_size
        )
        if on_page is not None:
            on_page(page)
    return total_deleted
