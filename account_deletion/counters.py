from collections import Counter
from typing import Any, Callable, Dict, Iterable, NamedTuple, Optional

from google.cloud import firestore

from account_deletion import clients, config

logger = config.get_logger(__name__)


class CounterField(NamedTuple):
    '''A denormalized counter, written under its canonical and legacy names.'''

    canonical: str
    legacy: Optional[str] = None


COMMENT_COUNT = CounterField('commentCount', 'commentsCount')
MEMBER_COUNT = CounterField('memberCount', 'membersCount')
ATTENDEE_COUNT = CounterField('attendeesCount', 'attendeeCount')
LIKE_COUNT = CounterField('likesCount', 'likeCount')
MESSAGE_COUNT = CounterField('messageCount', 'messagesCount')


def _current_value(data: Dict[str, Any], counter: CounterField) -> Optional[int]:
    for name in (counter.canonical, counter.legacy):
        if not name:
            continue
        value = data.get(name)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(value)
    return None


def _decrement_in_transaction(
    transaction, parent_ref, counter: CounterField, delta: int
) -> Optional[int]:
    snapshot = parent_ref.get(transaction=transaction)
    if not snapshot.exists:
        return None

    current = _current_value(snapshot.to_dict() or {}, counter)
    if current is None:
        return None

    next_value = max(0, current - delta)
    updates = {
        counter.canonical: next_value,
        'updatedAt': firestore.SERVER_TIMESTAMP,
    }
    if counter.legacy:
        updates[counter.legacy] = next_value
    transaction.update(parent_ref, updates)
    return next_value


def decrement_parent_counter(
    parent_ref, counter: CounterField, delta: int
) -> Optional[int]:
    '''
    Decrements a parent's counter by delta, floored at zero, inside a transaction.
    A missing parent, or one that never tracked the counter, is left alone and
    None is returned; otherwise the new value is returned.
    '''
    if parent_ref is None or delta <= 0:
        return None
    return clients.run_transaction(_decrement_in_transaction, parent_ref, counter, delta)


def decrement_counters(decrements: Dict[str, int], counter: CounterField) -> None:
    '''Applies decrement_parent_counter to each parent document path.'''
    db = clients.firestore_client()
    for parent_path, delta in decrements.items():
        if not parent_path:
            continue
        new_value = decrement_parent_counter(db.document(parent_path), counter, delta)
        logger.debug(f'Counter {counter.canonical} on {parent_path} => {new_value}')


def count_by_parent(
    snapshots: Iterable[Any], parent_path_of: Callable[[Any], Optional[str]]
) -> Dict[str, int]:
    '''Tallies snapshots per parent document path, skipping unresolvable ones.'''
    tally = Counter()
    for snapshot in snapshots:
        parent_path = parent_path_of(snapshot)
        if parent_path:
            tally[parent_path] += 1
    return dict(tally)


def owning_document_path(snapshot) -> Optional[str]:
    '''Path of the document that holds the sub-collection snapshot lives in.'''
    parent_doc = snapshot.reference.parent.parent
    return parent_doc.path if parent_doc is not None else None
