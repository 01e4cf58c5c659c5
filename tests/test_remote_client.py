"""远端客户端测试：错误分类（MockTransport）与真实路由（TestClient）"""

import httpx
import pytest

from domains.core.exceptions import AuthFailureError, RemoteRejectionError, TransientNetworkError
from domains.sync_hub import HttpConnectivityChecker, RemoteNotesClient

BASE_URL = "http://notes.test/api/v1"


def _client(handler, token="t"):
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return RemoteNotesClient(BASE_URL, lambda: token, http_client=http)


def _status(code, body=None):
    def handler(request):
        return httpx.Response(code, json=body if body is not None else {"success": False, "error": "boom"})
    return handler


class TestErrorMapping:

    @pytest.mark.parametrize("code", [500, 502, 503, 408, 429])
    def test_retryable_status(self, code):
        with pytest.raises(TransientNetworkError):
            _client(_status(code)).list_labels()

    def test_unauthenticated(self):
        with pytest.raises(AuthFailureError):
            _client(_status(401)).list_labels()

    def test_forbidden_is_a_rejection(self):
        with pytest.raises(RemoteRejectionError) as exc_info:
            _client(_status(403)).update_label("l1", "Work", "#808080")
        assert not isinstance(exc_info.value, TransientNetworkError)
        assert exc_info.value.status_code == 403

    @pytest.mark.parametrize("code", [400, 404, 409, 422])
    def test_rejection(self, code):
        with pytest.raises(RemoteRejectionError) as exc_info:
            _client(_status(code, {"success": False, "error": "label exists"})).create_label(
                "l1", "Work", "#808080"
            )
        assert exc_info.value.status_code == code
        assert exc_info.value.entity_id == "l1"
        assert "label exists" in exc_info.value.message

    def test_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransientNetworkError):
            _client(handler).get_cursor()

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(TransientNetworkError):
            _client(handler).full_snapshot()

    def test_delete_of_missing_entity_succeeds(self):
        client = _client(_status(404))
        assert client.delete_note("gone") is None
        assert client.delete_label("gone") is None

    def test_request_shape(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            seen["url"] = request.url
            return httpx.Response(200, json={"success": True, "data": []})

        _client(handler, token="secret").full_snapshot(label_id="l1")
        assert seen["auth"] == "Bearer secret"
        assert seen["url"].path == "/api/v1/sync/snapshot"
        assert seen["url"].params["label_id"] == "l1"

    def test_no_token_sends_no_header(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"success": True, "data": []})

        _client(handler, token=None).list_labels()
        assert seen["auth"] is None


class TestConnectivityChecker:

    def test_health_check_is_cached(self):
        calls = []
        now = [0.0]

        def handler(request):
            calls.append(request.url.path)
            return httpx.Response(200, json={"status": "healthy"})

        checker = HttpConnectivityChecker(
            "http://notes.test/health",
            cache_ttl=5.0,
            http_client=httpx.Client(transport=httpx.MockTransport(handler)),
            clock=lambda: now[0],
        )
        assert checker.is_online()
        assert checker.is_online()
        assert len(calls) == 1

        now[0] = 10.0
        assert checker.is_online()
        assert len(calls) == 2

        checker.invalidate()
        checker.is_online()
        assert len(calls) == 3

    def test_unreachable_is_offline(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        checker = HttpConnectivityChecker(
            "http://notes.test/health",
            http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        )
        assert not checker.is_online()

    def test_unhealthy_status_is_offline(self):
        checker = HttpConnectivityChecker(
            "http://notes.test/health",
            http_client=httpx.Client(transport=httpx.MockTransport(_status(503))),
        )
        assert not checker.is_online()


@pytest.mark.e2e
class TestAgainstApi:

    @pytest.fixture
    def client(self, api_client):
        return RemoteNotesClient("http://testserver/api/v1", lambda: "token-alice", http_client=api_client)

    def test_note_round_trip(self, client):
        created = client.create_note("n1", "title", "body", [])
        assert created.id == "n1"
        assert created.created_at is not None

        replayed = client.create_note("n1", "other", None, [])
        assert replayed.title == "title"

        updated = client.update_note("n1", "new", "body", [], is_deleted=False)
        assert updated.title == "new"
        assert updated.updated_at > created.updated_at

        deleted = client.delete_note("n1")
        assert deleted.is_deleted

    def test_feed(self, client):
        cursor = client.get_cursor()
        label = client.create_label("l1", "Work", "#112233")
        client.create_note("n1", "a", None, [label.id])

        changes = client.changes_since(cursor.server_time)
        assert [n.id for n in changes] == ["n1"]
        assert changes[0].label_ids == ["l1"]
        assert [n.id for n in client.full_snapshot(label_id="l1")] == ["n1"]

    def test_rejections_from_api(self, client):
        client.create_label("l1", "Work", "#112233")
        with pytest.raises(RemoteRejectionError) as exc_info:
            client.create_label("l2", "Work", "#112233")
        assert exc_info.value.status_code == 409

        with pytest.raises(RemoteRejectionError):
            client.update_note("missing", "x", None, [])

    def test_bad_token(self, api_client):
        client = RemoteNotesClient("http://testserver/api/v1", lambda: "bad", http_client=api_client)
        with pytest.raises(AuthFailureError):
            client.list_labels()
