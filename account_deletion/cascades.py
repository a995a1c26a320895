'''
One deletion function per entity family, each taking the uid being erased and
returning the counts it produced. CASCADE_STAGES fixes the order they run in:
later stages assume the earlier ones already hold.
'''
from typing import Any, Callable, Dict, List, Optional, Tuple

from google.api_core import exceptions

from account_deletion import batching, blobs, clients, config, counters, identity

logger = config.get_logger(__name__)

DeletionStats = Dict[str, int]

# (stat, collection group, field matching the uid, counter kept on the owning document)
RELATIONSHIP_INDICES: List[Tuple[str, str, str, Optional[counters.CounterField]]] = [
    ('followerDocsDeleted', 'followers', 'uid', None),
    ('followingDocsDeleted', 'following', 'uid', None),
    ('friendDocsDeleted', 'friends', 'uid', None),
    ('blockedByOthersDeleted', 'blockedUsers', 'blockedUid', None),
    ('memberDocsDeleted', 'members', 'uid', counters.MEMBER_COUNT),
    ('attendeeDocsDeleted', 'attendees', 'uid', counters.ATTENDEE_COUNT),
    ('likeDocsDeleted', 'likes', 'uid', counters.LIKE_COUNT),
]

# (stat, top-level collection, every field the uid can appear in)
ADDRESSED_DOCUMENTS: List[Tuple[str, str, Tuple[str, ...]]] = [
    ('notificationsDeleted', 'notifications', ('toUid', 'fromUid')),
    ('followRequestsDeleted', 'follow_requests', ('fromUid', 'toUid')),
    ('friendRequestsDeleted', 'friend_requests', ('fromUid', 'toUid')),
    ('groupRequestsDeleted', 'group_requests', ('fromUid', 'toUid')),
    ('collaborationRequestsDeleted', 'collaboration_requests', ('fromUid', 'toUid')),
    ('reportsDeleted', 'reports', ('reporterUid', 'reportedUid')),
    ('moderationQueueDeleted', 'moderation_queue', ('reporterUid', 'reportedUid')),
    ('supportTicketsDeleted', 'support_tickets', ('uid',)),
]

USER_STORAGE_ROOTS = ('profiles', 'posts', 'stories', 'collections', 'contributions', 'groups')


def increment_stat(stats: DeletionStats, key: str, delta: int) -> None:
    if delta <= 0:
        return
    stats[key] = stats.get(key, 0) + delta


def merge_stats(stats: DeletionStats, partial: DeletionStats) -> None:
    for key, delta in partial.items():
        increment_stat(stats, key, delta)


def _delete_owned_subtrees(
    collection: str,
    field: str,
    uid: str,
    before_delete: Optional[Callable[[Any], None]] = None,
) -> int:
    '''Recursively deletes every document of collection whose field equals uid.'''
    db = clients.firestore_client()
    deleted = 0
    for page in batching.scan_pages(batching.top_level_query(collection, field, uid)):
        for snapshot in page:
            if before_delete is not None:
                before_delete(snapshot)
            db.recursive_delete(snapshot.reference)
            deleted += 1
    return deleted


# ===================== # 1. Relationship indices # =====================
def _owner_counter_repair(counter: counters.CounterField) -> Callable[[List[Any]], None]:
    def on_page(page: List[Any]) -> None:
        decrements = counters.count_by_parent(page, counters.owning_document_path)
        counters.decrement_counters(decrements, counter)

    return on_page


def delete_relationship_indices(uid: str) -> DeletionStats:
    '''Removes every edge other users hold towards uid, repairing their counters.'''
    stats: DeletionStats = {}
    for stat, collection_id, field, counter in RELATIONSHIP_INDICES:
        on_page = _owner_counter_repair(counter) if counter else None
        deleted = batching.scan_and_delete(
            batching.collection_group_query(collection_id, field, uid), on_page=on_page
        )
        increment_stat(stats, stat, deleted)
    return stats


# ===================== # 2. Requests, notifications, reports # =====================
def delete_addressed_documents(uid: str) -> DeletionStats:
    stats: DeletionStats = {}
    for stat, collection, roles in ADDRESSED_DOCUMENTS:
        for role in roles:
            deleted = batching.scan_and_delete(
                batching.top_level_query(collection, role, uid)
            )
            increment_stat(stats, stat, deleted)
    return stats


# ===================== # 3. Conversations and messages # =====================
def _direct_conversation_ids(uid: str) -> List[str]:
    db = clients.firestore_client()
    conversation_ids: Dict[str, None] = {}

    index = db.collection('users').document(uid).collection('directConversations').get()
    for snapshot in index:
        if snapshot.id.startswith(config.DIRECT_CONVERSATION_PREFIX):
            conversation_ids[snapshot.id] = None

    memberships = (
        db.collection('conversations').where('memberIds', 'array_contains', uid).get()
    )
    for snapshot in memberships:
        data = snapshot.to_dict() or {}
        if data.get('type') == 'direct' or snapshot.id.startswith(
            config.DIRECT_CONVERSATION_PREFIX
        ):
            conversation_ids[snapshot.id] = None

    return list(conversation_ids)


def _direct_conversation_members(
    conversation_id: str, uid: str, data: Dict[str, Any]
) -> List[str]:
    member_ids = data.get('memberIds')
    if isinstance(member_ids, list):
        return [m for m in member_ids if isinstance(m, str) and m]
    # dm_{uidA}_{uidB}; uids may contain underscores, so peel off the known one
    pair = conversation_id[len(config.DIRECT_CONVERSATION_PREFIX):]
    if pair.startswith(f'{uid}_'):
        other = pair[len(uid) + 1:]
    elif pair.endswith(f'_{uid}'):
        other = pair[:-(len(uid) + 1)]
    else:
        return []
    return [uid, other] if other else []


def _delete_direct_conversation(conversation_id: str, uid: str) -> int:
    '''Deletes a direct conversation in full plus the other member's index entry.'''
    db = clients.firestore_client()
    conversation_ref = db.collection('conversations').document(conversation_id)
    snapshot = conversation_ref.get()
    data = (snapshot.to_dict() or {}) if snapshot.exists else {}

    other_members = [
        member
        for member in dict.fromkeys(_direct_conversation_members(conversation_id, uid, data))
        if member != uid
    ]
    index_refs = [
        db.collection('users').document(member)
        .collection('directConversations').document(conversation_id)
        for member in other_members
    ]
    index_deleted = batching.delete_refs_in_batches(index_refs)

    blobs.delete_storage_prefix(f'conversations/{conversation_id}/')
    db.recursive_delete(conversation_ref)
    return index_deleted


def _conversation_path(snapshot) -> Optional[str]:
    segments = snapshot.reference.path.split('/')
    if len(segments) >= 2 and segments[0] == 'conversations':
        return f'conversations/{segments[1]}'
    return None


def delete_conversations(uid: str) -> DeletionStats:
    stats: DeletionStats = {}

    conversation_ids = _direct_conversation_ids(uid)
    for conversation_id in conversation_ids:
        increment_stat(
            stats,
            'directIndexEntriesDeleted',
            _delete_direct_conversation(conversation_id, uid),
        )
    increment_stat(stats, 'directConversationsDeleted', len(conversation_ids))

    def on_page(page: List[Any]) -> None:
        attachment_paths = []
        for snapshot in page:
            attachment_paths.extend(blobs.extract_attachment_paths(snapshot.to_dict() or {}))
        increment_stat(
            stats,
            'messageAttachmentsDeleted',
            blobs.delete_storage_files(attachment_paths).deleted,
        )

        decrements = counters.count_by_parent(page, _conversation_path)
        for conversation_path in decrements:
            blobs.delete_storage_prefix(f'{conversation_path}/thumbnails/{uid}/')
        counters.decrement_counters(decrements, counters.MESSAGE_COUNT)

    increment_stat(
        stats,
        'messagesDeleted',
        batching.scan_and_delete(
            batching.collection_group_query('messages', 'senderId', uid), on_page=on_page
        ),
    )
    return stats


# ===================== # 4. Owned content # =====================
def delete_owned_posts(uid: str) -> DeletionStats:
    stats: DeletionStats = {}
    post_ids: List[str] = []
    media_paths: List[str] = []

    def collect(snapshot) -> None:
        post_ids.append(snapshot.id)
        media_paths.extend(blobs.extract_post_media_paths(snapshot.to_dict() or {}))

    increment_stat(stats, 'postsDeleted', _delete_owned_subtrees('posts', 'authorId', uid, collect))
    increment_stat(stats, 'postMediaFilesDeleted', blobs.delete_storage_files(media_paths).deleted)

    for post_id in post_ids:
        increment_stat(
            stats,
            'postSavedRefsDeleted',
            batching.scan_and_delete(batching.collection_group_query('savedPosts', 'postId', post_id)),
        )
        increment_stat(
            stats,
            'postLikeRefsDeleted',
            batching.scan_and_delete(batching.collection_group_query('likes', 'postId', post_id)),
        )
    return stats


def _commented_post_path(snapshot) -> Optional[str]:
    post_id = (snapshot.to_dict() or {}).get('postId')
    if isinstance(post_id, str) and post_id:
        return f'posts/{post_id}'
    return counters.owning_document_path(snapshot)


def delete_authored_comments(uid: str) -> DeletionStats:
    def on_page(page: List[Any]) -> None:
        decrements = counters.count_by_parent(page, _commented_post_path)
        counters.decrement_counters(decrements, counters.COMMENT_COUNT)

    deleted = batching.scan_and_delete(
        batching.collection_group_query('comments', 'authorId', uid), on_page=on_page
    )
    return {'commentsDeleted': deleted} if deleted else {}


def delete_owned_stories(uid: str) -> DeletionStats:
    stats: DeletionStats = {}
    media_paths: List[str] = []

    def collect(snapshot) -> None:
        media_paths.extend(blobs.extract_story_media_paths(snapshot.to_dict() or {}))

    increment_stat(stats, 'storiesDeleted', _delete_owned_subtrees('stories', 'ownerId', uid, collect))
    increment_stat(stats, 'storyFilesDeleted', blobs.delete_storage_files(media_paths).deleted)
    return stats


def delete_owned_events(uid: str) -> DeletionStats:
    deleted = _delete_owned_subtrees('events', 'createdBy', uid)
    return {'eventsDeleted': deleted} if deleted else {}


def delete_owned_groups(uid: str) -> DeletionStats:
    db = clients.firestore_client()

    def tear_down_group(snapshot) -> None:
        conversation_id = f'{config.GROUP_CONVERSATION_PREFIX}{snapshot.id}'
        blobs.delete_storage_prefix(f'groups/{uid}/{snapshot.id}/')
        blobs.delete_storage_prefix(f'conversations/{conversation_id}/')
        db.recursive_delete(db.collection('conversations').document(conversation_id))

    deleted = _delete_owned_subtrees('groups', 'ownerId', uid, tear_down_group)
    return {'groupsDeleted': deleted} if deleted else {}


def delete_owned_collaborations(uid: str) -> DeletionStats:
    deleted = batching.scan_and_delete(batching.top_level_query('collaborations', 'authorId', uid))
    return {'collaborationsDeleted': deleted} if deleted else {}


def delete_owned_arena_debates(uid: str) -> DeletionStats:
    deleted = _delete_owned_subtrees('arenaDebates', 'createdBy', uid)
    return {'arenaDebatesDeleted': deleted} if deleted else {}


def delete_owned_contributions(uid: str) -> DeletionStats:
    stats: DeletionStats = {}

    def on_page(page: List[Any]) -> None:
        file_paths = [
            (snapshot.to_dict() or {}).get('filePath') for snapshot in page
        ]
        increment_stat(
            stats,
            'contributionFilesDeleted',
            blobs.delete_storage_files([p for p in file_paths if isinstance(p, str)]).deleted,
        )

    increment_stat(
        stats,
        'contributionsDeleted',
        batching.scan_and_delete(
            batching.top_level_query('contributions', 'userId', uid), on_page=on_page
        ),
    )
    return stats


# ===================== # 5-9. Storage, singletons, identity # =====================
def delete_user_storage_prefixes(uid: str) -> DeletionStats:
    for root in USER_STORAGE_ROOTS:
        blobs.delete_storage_prefix(f'{root}/{uid}/')
    return {}


def delete_usage_singletons(uid: str) -> DeletionStats:
    db = clients.firestore_client()
    arena_usage_ref = db.collection('arenaUsage').document(uid)
    if not arena_usage_ref.get().exists:
        return {}
    db.recursive_delete(arena_usage_ref)
    return {'arenaUsageDocsDeleted': 1}


def delete_user_document_tree(uid: str) -> DeletionStats:
    db = clients.firestore_client()
    db.recursive_delete(db.collection('users').document(uid))
    return {}


def delete_public_profile(uid: str) -> DeletionStats:
    try:
        clients.firestore_client().collection('users_public').document(uid).delete()
    except exceptions.NotFound:
        logger.info(f'Public profile already absent for {uid}')
    return {}


def delete_identity_record(uid: str) -> DeletionStats:
    identity.delete_identity(uid)
    return {}


CASCADE_STAGES: List[Tuple[str, Callable[[str], DeletionStats]]] = [
    ('relationship_indices', delete_relationship_indices),
    ('addressed_documents', delete_addressed_documents),
    ('conversations', delete_conversations),
    ('posts', delete_owned_posts),
    ('comments', delete_authored_comments),
    ('stories', delete_owned_stories),
    ('events', delete_owned_events),
    ('groups', delete_owned_groups),
    ('collaborations', delete_owned_collaborations),
    ('arena_debates', delete_owned_arena_debates),
    ('contributions', delete_owned_contributions),
    ('storage_prefixes', delete_user_storage_prefixes),
    ('usage_singletons', delete_usage_singletons),
    ('user_document_tree', delete_user_document_tree),
    ('public_profile', delete_public_profile),
    ('identity_record', delete_identity_record),
]
