import os
import logging


# ===================== # Environment variables # =====================
FIRESTORE_DATABASE = os.getenv('FIRESTORE_DATABASE', '(default)')
STORAGE_BUCKET = os.getenv('STORAGE_BUCKET')
QUERY_BATCH_SIZE = int(os.getenv('QUERY_BATCH_SIZE', '200'))
WRITE_BATCH_SIZE = int(os.getenv('WRITE_BATCH_SIZE', '400'))
MAX_WORKERS = int(os.getenv('MAX_WORKERS', '16'))
STALE_PROCESSING_MINUTES = int(os.getenv('STALE_PROCESSING_MINUTES', '30'))
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
CORS_ORIGINS = [o.strip() for o in os.getenv('CORS_ORIGINS', '*').split(',') if o.strip()]

# ===================== # Constants # =====================
DELETION_JOB_COLLECTION = 'deletionJobs'
DIRECT_CONVERSATION_PREFIX = 'dm_'
GROUP_CONVERSATION_PREFIX = 'grp_'
YOUTUBE_MEDIA_PATH_TOKEN = '/videos/youtube-'


def get_logger(name: str) -> logging.Logger:
    '''Returns a logger with the shared stream handler attached once.'''
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(LOG_LEVEL)
    ch = logging.StreamHandler()
    ch.setLevel(LOG_LEVEL)
    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')
    ch.setFormatter(formatter)
    logger.addHandler(ch)
    return logger
