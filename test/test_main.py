'''Tests for the callable functions and the Firestore triggers.'''

import inspect
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from firebase_functions import https_fn
from flask import Flask, request

import main
from account_deletion import config, jobs, orchestrator

U = 'uid-u'
JOB_PATH = f'{config.DELETION_JOB_COLLECTION}/{U}'
ORIGIN = 'https://app.example.com'

app = Flask(__name__)


def _http(function, method='POST', headers=None, body=None):
    '''Runs the deployed HTTP handler, CORS and callable protocol included.'''
    kwargs = {'json': body if body is not None else {'data': {}}} if method == 'POST' else {}
    with app.test_request_context(
        '/', method=method, headers={'Origin': ORIGIN, **(headers or {})}, **kwargs
    ):
        return function(request)


def _invoke(function, uid=U, data=None):
    '''Calls the callable body as signed in uid.'''
    auth = SimpleNamespace(uid=uid, token={'uid': uid}) if uid else None
    return inspect.unwrap(function)(SimpleNamespace(auth=auth, data=data or {}))


def _job_snapshot(status):
    return SimpleNamespace(exists=True, to_dict=lambda: {'status': status})


def _created_event(uid=U):
    return SimpleNamespace(params={'uid': uid}, data=_job_snapshot('queued'))


def _updated_event(before, after, uid=U):
    change = SimpleNamespace(before=_job_snapshot(before), after=_job_snapshot(after))
    return SimpleNamespace(params={'uid': uid}, data=change)


class TestCallableTransport:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        'function',
        [main.request_account_deletion, main.get_account_deletion_status, main.delete_user_account],
    )
    def test_preflight_is_allowed(self, function) -> None:
        response = _http(
            function,
            method='OPTIONS',
            headers={
                'Access-Control-Request-Method': 'POST',
                'Access-Control-Request-Headers': 'authorization,content-type',
            },
        )

        assert response.status_code in (200, 204)
        assert response.headers['Access-Control-Allow-Origin'] in ('*', ORIGIN)

    @pytest.mark.unit
    def test_unauthenticated_call_is_rejected_with_cors_headers(self, store) -> None:
        response = _http(main.request_account_deletion)

        assert response.status_code == 401
        assert response.get_json()['error']['status'] == 'UNAUTHENTICATED'
        assert response.headers['Access-Control-Allow-Origin'] in ('*', ORIGIN)
        assert store.paths() == []


class TestRequestAccountDeletion:
    @pytest.mark.unit
    def test_requires_authentication(self, store) -> None:
        with pytest.raises(https_fn.HttpsError) as info:
            _invoke(main.request_account_deletion, uid=None)

        assert info.value.code is https_fn.FunctionsErrorCode.UNAUTHENTICATED
        assert store.paths() == []

    @pytest.mark.unit
    def test_queues_job_and_revokes_sessions(self, store, fake_auth) -> None:
        fake_auth.users.add(U)

        result = _invoke(main.request_account_deletion)

        assert result == {'accepted': True, 'status': 'queued', 'jobId': U}
        assert store.data(JOB_PATH)['status'] == 'queued'
        assert fake_auth.revoked == [U]

    @pytest.mark.unit
    def test_repeated_request_reports_current_status(self, store) -> None:
        store.add(JOB_PATH, {'status': 'completed'})

        result = _invoke(main.request_account_deletion)

        assert result['status'] == 'completed'
        assert result['accepted'] is True

    @pytest.mark.unit
    def test_enqueue_failure_is_internal(self, monkeypatch, fake_auth) -> None:
        fake_auth.users.add(U)
        monkeypatch.setattr(jobs, 'request_deletion', MagicMock(side_effect=RuntimeError('contention')))

        with pytest.raises(https_fn.HttpsError) as info:
            _invoke(main.request_account_deletion)

        assert info.value.code is https_fn.FunctionsErrorCode.INTERNAL
        assert fake_auth.revoked == []


class TestGetAccountDeletionStatus:
    @pytest.mark.unit
    def test_not_requested(self) -> None:
        result = _invoke(main.get_account_deletion_status)

        assert result['status'] == 'not_requested'
        assert result['jobId'] is None

    @pytest.mark.unit
    def test_reports_failure(self, store) -> None:
        store.add(JOB_PATH, {'status': 'failed', 'lastError': 'boom'})

        result = _invoke(main.get_account_deletion_status)

        assert result['status'] == 'failed'
        assert result['lastError'] == 'boom'
        assert result['jobId'] == U


class TestDeleteUserAccount:
    @pytest.mark.unit
    def test_runs_cascade_synchronously(self, store, fake_auth) -> None:
        fake_auth.users.add(U)
        store.add('posts/p1', {'authorId': U})

        result = _invoke(main.delete_user_account)

        assert result == {'success': True, 'deletedCounts': {'postsDeleted': 1}}
        assert store.data(JOB_PATH)['status'] == 'completed'
        assert U not in fake_auth.users

    @pytest.mark.unit
    def test_failure_is_internal(self, store, fake_auth) -> None:
        fake_auth.users.add(U)
        store.add('posts/p1', {'authorId': U})
        store.failing_delete_prefixes.add('posts/')

        with pytest.raises(https_fn.HttpsError) as info:
            _invoke(main.delete_user_account)

        assert info.value.code is https_fn.FunctionsErrorCode.INTERNAL
        assert U in fake_auth.users


class TestTriggers:
    @pytest.mark.unit
    def test_job_document_pattern(self) -> None:
        assert main.JOB_DOCUMENT == 'deletionJobs/{uid}'

    @pytest.mark.unit
    def test_created_job_is_processed(self, monkeypatch) -> None:
        process = MagicMock(return_value=True)
        monkeypatch.setattr(orchestrator, 'process_deletion_job', process)

        inspect.unwrap(main.on_deletion_job_created)(_created_event())

        process.assert_called_once_with(U)

    @pytest.mark.unit
    def test_update_into_queued_is_processed(self, monkeypatch) -> None:
        process = MagicMock(return_value=True)
        monkeypatch.setattr(orchestrator, 'process_deletion_job', process)

        inspect.unwrap(main.on_deletion_job_updated)(_updated_event('failed', 'queued'))

        process.assert_called_once_with(U)

    @pytest.mark.unit
    @pytest.mark.parametrize(
        'before, after',
        [('queued', 'queued'), ('queued', 'processing'), ('processing', 'completed')],
    )
    def test_other_updates_are_ignored(self, monkeypatch, before, after) -> None:
        process = MagicMock(return_value=True)
        monkeypatch.setattr(orchestrator, 'process_deletion_job', process)

        inspect.unwrap(main.on_deletion_job_updated)(_updated_event(before, after))

        process.assert_not_called()

    @pytest.mark.unit
    def test_created_trigger_runs_the_job_end_to_end(self, store, fake_auth) -> None:
        fake_auth.users.add(U)
        store.add(f'users/{U}', {'displayName': 'U'})
        jobs.request_deletion(U)
        on_created = inspect.unwrap(main.on_deletion_job_created)

        on_created(_created_event())
        # a duplicate delivery finds the job already finished
        on_created(_created_event())

        job = store.data(JOB_PATH)
        assert job['status'] == 'completed'
        assert job['attempts'] == 1
        assert store.data(f'users/{U}') is None
