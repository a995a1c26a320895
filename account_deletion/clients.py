import functools
from typing import Any, Callable, TypeVar

import firebase_admin
from google.cloud import firestore, storage

from account_deletion import config

T = TypeVar('T')


# ===================== # Clients # =====================
# Created lazily so importing the package never needs credentials.
@functools.lru_cache(maxsize=None)
def firestore_client() -> firestore.Client:
    return firestore.Client(database=config.FIRESTORE_DATABASE)


@functools.lru_cache(maxsize=None)
def storage_bucket() -> storage.Bucket:
    storage_client = storage.Client()
    if config.STORAGE_BUCKET:
        return storage_client.bucket(config.STORAGE_BUCKET)
    return storage_client.bucket(f'{storage_client.project}.appspot.com')


@functools.lru_cache(maxsize=None)
def firebase_app() -> firebase_admin.App:
    try:
        return firebase_admin.get_app()
    except ValueError:
        return firebase_admin.initialize_app()


def run_transaction(fn: Callable[..., T], *args: Any) -> T:
    '''Runs fn(transaction, *args) in a Firestore transaction, retried on contention.'''
    transaction = firestore_client().transaction()
    return firestore.transactional(fn)(transaction, *args)
