"""
Unit tests for CredentialedClient.
Tests: lazy login, 401 handling, error mapping and health probes.
"""
import threading

import pytest
import requests

from shared.errors import (
    ApiError, AuthenticationFailed, DependencyUnavailable, Unauthorized
)
from orchestrator.client import CredentialedClient


@pytest.fixture
def api_client(orchestrator_config, mock_session):
    return CredentialedClient.from_config(orchestrator_config, session=mock_session)


class TestLogin:
    """Tests for credential acquisition."""

    def test_credential_initially_absent(self, api_client, mock_session):
        assert api_client.has_token is False
        mock_session.post.assert_not_called()

    def test_login_posts_credentials(self, api_client, mock_session):
        assert api_client.login() == 'token-1'
        mock_session.post.assert_called_once_with(
            'http://auth.test/api/auth/login',
            json={'identifier': 'system@tournaments.test', 'password': 'test-password'},
            timeout=1.0
        )

    def test_login_rejected(self, api_client, mock_session, make_response):
        mock_session.post.return_value = make_response(401, {'success': False, 'message': 'Bad password'})
        with pytest.raises(AuthenticationFailed) as exc:
            api_client.login()
        assert exc.value.message == 'Bad password'
        assert api_client.has_token is False

    def test_login_without_token(self, api_client, mock_session, make_response):
        mock_session.post.return_value = make_response(200, {'success': True, 'data': {}})
        with pytest.raises(AuthenticationFailed):
            api_client.login()

    def test_login_server_error_is_unavailable(self, api_client, mock_session, make_response):
        mock_session.post.return_value = make_response(503, {'success': False, 'message': 'Overloaded'})
        with pytest.raises(DependencyUnavailable):
            api_client.login()
        assert api_client.has_token is False

    def test_login_unreachable(self, api_client, mock_session):
        mock_session.post.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(DependencyUnavailable):
            api_client.login()

    def test_first_call_logs_in(self, api_client, mock_session, make_response):
        mock_session.request.return_value = make_response(200, {'tournaments': []})
        api_client.get('/api/v1/tournaments')

        assert mock_session.post.call_count == 1
        kwargs = mock_session.request.call_args[1]
        assert kwargs['headers'] == {'Authorization': 'Bearer token-1'}

    def test_token_reused(self, api_client, mock_session, make_response):
        mock_session.request.return_value = make_response(200, {})
        api_client.get('/a')
        api_client.get('/b')
        assert mock_session.post.call_count == 1

    def test_concurrent_callers_share_one_login(self, api_client, mock_session, make_response):
        """Callers racing for the credential trigger a single login."""
        mock_session.request.return_value = make_response(200, {})
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            api_client.get('/api/v1/tournaments')

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert mock_session.post.call_count == 1
        assert api_client.has_token is True


class TestCall:
    """Tests for authenticated calls."""

    def test_401_clears_credential(self, api_client, mock_session, make_response):
        mock_session.request.return_value = make_response(401, {'error': 'UNAUTHORIZED'})
        with pytest.raises(Unauthorized):
            api_client.post('/api/v1/tournaments/t_1/status', json={'status': 'live'})

        assert api_client.has_token is False
        assert mock_session.request.call_count == 1

    def test_next_call_logs_in_again(self, api_client, mock_session, make_response):
        mock_session.request.side_effect = [
            make_response(401, {}),
            make_response(200, {'ok': True}),
        ]
        with pytest.raises(Unauthorized):
            api_client.get('/a')
        assert api_client.get('/a') == {'ok': True}
        assert mock_session.post.call_count == 2

    def test_clear_token_only_if_still_held(self, api_client):
        api_client.login()
        api_client.clear_token('stale-token')
        assert api_client.has_token is True
        api_client.clear_token()
        assert api_client.has_token is False

    def test_structured_error(self, api_client, mock_session, make_response):
        mock_session.request.return_value = make_response(
            409, {'error': 'DUPLICATE_TOURNAMENT', 'message': 'exists'}
        )
        with pytest.raises(ApiError) as exc:
            api_client.post('/api/v1/tournaments', json={})
        assert exc.value.status_code == 409
        assert exc.value.code == 'DUPLICATE_TOURNAMENT'
        assert exc.value.message == 'exists'

    def test_unstructured_error(self, api_client, mock_session, make_response):
        mock_session.request.return_value = make_response(502)
        with pytest.raises(ApiError) as exc:
            api_client.get('/api/v1/tournaments')
        assert exc.value.code == 'API_ERROR'

    def test_network_failure(self, api_client, mock_session):
        mock_session.request.side_effect = requests.exceptions.Timeout("slow")
        with pytest.raises(DependencyUnavailable):
            api_client.get('/api/v1/tournaments')

    def test_request_shape(self, api_client, mock_session, make_response):
        mock_session.request.return_value = make_response(200, {})
        api_client.get('/api/v1/tournaments', params={'status': 'live'})
        mock_session.request.assert_called_once_with(
            'GET',
            'http://tournaments.test/api/v1/tournaments',
            json=None,
            params={'status': 'live'},
            headers={'Authorization': 'Bearer token-1'},
            timeout=1.0
        )


class TestProbe:
    """Tests for unauthenticated health probes."""

    def test_connected(self, api_client, mock_session, make_response):
        mock_session.get.return_value = make_response(200, {'status': 'healthy'})
        assert api_client.probe('http://tournaments.test') == 'connected'
        mock_session.get.assert_called_once_with('http://tournaments.test/health', timeout=1.0)

    def test_unhealthy_status(self, api_client, mock_session, make_response):
        mock_session.get.return_value = make_response(503, {'status': 'unhealthy'})
        assert api_client.probe('http://tournaments.test') == 'error'

    def test_disconnected(self, api_client, mock_session):
        mock_session.get.side_effect = requests.exceptions.ConnectionError("refused")
        assert api_client.probe('http://auth.test') == 'disconnected'

    def test_probe_does_not_log_in(self, api_client, mock_session, make_response):
        mock_session.get.return_value = make_response(200, {})
        api_client.probe('http://auth.test')
        mock_session.post.assert_not_called()
