from firebase_admin import auth

from account_deletion import clients, config

logger = config.get_logger(__name__)


def revoke_sessions(uid: str) -> bool:
    '''Revokes refresh tokens so no new session writes start; failure is only logged.'''
    try:
        auth.revoke_refresh_tokens(uid, app=clients.firebase_app())
        return True
    except auth.UserNotFoundError:
        logger.info(f'No auth user to revoke sessions for {uid}')
        return False
    except Exception as e:
        logger.warning(f'Could not revoke refresh tokens for {uid}: {e}')
        return False


def delete_identity(uid: str) -> bool:
    '''
    Deletes the auth user. An already removed user counts as success and
    returns False; every other provider error propagates.
    '''
    try:
        auth.delete_user(uid, app=clients.firebase_app())
    except auth.UserNotFoundError:
        logger.info(f'Auth user already removed during account deletion: {uid}')
        return False
    return True
