'''
Best-effort blob storage cleanup.

Nothing in this module raises: failures are logged as warnings and reported
back in a BlobCleanupResult so callers can count them without try/except.
'''
import concurrent.futures as futures
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from account_deletion import clients, config

logger = config.get_logger(__name__)


@dataclass
class BlobCleanupResult:
    deleted: int = 0
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


# ===================== # Path helpers # =====================
def is_likely_storage_path(path: Any) -> bool:
    '''True for bucket object paths, False for URLs and external media references.'''
    if not isinstance(path, str) or not path:
        return False
    if path.startswith('http://') or path.startswith('https://'):
        return False
    if path.startswith('youtube:'):
        return False
    return True


def extract_story_media_paths(data: Dict[str, Any]) -> List[str]:
    return [
        data[key]
        for key in ('mediaPath', 'thumbPath')
        if is_likely_storage_path(data.get(key))
    ]


def extract_post_media_paths(data: Dict[str, Any]) -> List[str]:
    '''Uploaded media paths of a post, skipping YouTube-hosted items.'''
    media = data.get('media')
    if not isinstance(media, list):
        return []

    paths = []
    for item in media:
        if not isinstance(item, dict):
            continue
        path = item.get('path')
        if not is_likely_storage_path(path):
            continue

        media_url = item.get('url') if isinstance(item.get('url'), str) else ''
        looks_like_youtube = (
            config.YOUTUBE_MEDIA_PATH_TOKEN in path
            or 'youtube.com/' in media_url
            or 'youtu.be/' in media_url
            or 'youtube-nocookie.com/' in media_url
        )
        if not looks_like_youtube:
            paths.append(path)

    return paths


def extract_attachment_paths(data: Dict[str, Any]) -> List[str]:
    attachments = data.get('attachments')
    if not isinstance(attachments, list):
        return []
    return [
        attachment['path']
        for attachment in attachments
        if isinstance(attachment, dict)
        and isinstance(attachment.get('path'), str)
        and attachment['path']
    ]


# ===================== # Deletion # =====================
def _delete_blob(path: str) -> None:
    clients.storage_bucket().blob(path).delete()


def delete_storage_files(paths: Iterable[str]) -> BlobCleanupResult:
    '''Deletes explicit paths in parallel, settling every delete before returning.'''
    deduped = list(dict.fromkeys(p for p in paths if isinstance(p, str) and p))
    result = BlobCleanupResult()
    if not deduped:
        return result

    with futures.ThreadPoolExecutor(
        max_workers=min(config.MAX_WORKERS, len(deduped))
    ) as ex:
        future_to_path = {ex.submit(_delete_blob, path): path for path in deduped}
        for future in futures.as_completed(future_to_path):
            path = future_to_path[future]
            try:
                future.result()
                result.deleted += 1
            except Exception as e:
                logger.warning(f'Storage file cleanup failed for {path}: {e}')
                result.failed.append(path)

    return result


def delete_storage_prefix(prefix: str) -> BlobCleanupResult:
    '''Deletes every object under prefix, one delete per object so a bad object fails alone.'''
    if not prefix:
        return BlobCleanupResult()

    try:
        names = [blob.name for blob in clients.storage_bucket().list_blobs(prefix=prefix)]
    except Exception as e:
        logger.warning(f'Storage prefix listing failed for {prefix}: {e}')
        return BlobCleanupResult(failed=[prefix])

    return delete_storage_files(names)
