import httpx
import pytest

from spo_control_plane.errors import AuthError, NetworkError, ProtocolError
from spo_control_plane.spo_client import SharePointClient


def _client(tenant_config, audit_logger, stub):
    return SharePointClient(tenant_config, audit_logger, transport=stub.transport)


def test_get_context_info_sends_expected_request(tenant_config, audit_logger, make_stub):
    stub = make_stub(digest_body={"FormDigestValue": "abc123", "FormDigestTimeoutSeconds": 1800})

    with _client(tenant_config, audit_logger, stub) as client:
        info = client.get_context_info("token-123")

    assert info.FormDigestValue == "abc123"
    assert info.FormDigestTimeoutSeconds == 1800
    request = stub.requests[0]
    assert request.method == "POST"
    assert str(request.url) == "https://contoso-admin.sharepoint.com/_api/contextinfo"
    assert request.headers["Authorization"] == "Bearer token-123"
    assert request.headers["Accept"] == "application/json;odata=nometadata"
    assert request.content == b""


@pytest.mark.parametrize("status", [401, 403])
def test_get_context_info_maps_auth_failures(tenant_config, audit_logger, make_stub, status):
    stub = make_stub(digest_status=status, digest_body={"error": "denied"})

    with _client(tenant_config, audit_logger, stub) as client:
        with pytest.raises(AuthError) as excinfo:
            client.get_context_info("token-123")

    assert excinfo.value.status_code == status


@pytest.mark.parametrize("body", ["<html>oops</html>", ["FormDigestValue"], {"WebFullUrl": "x"}, {"FormDigestValue": ""}])
def test_get_context_info_rejects_unexpected_bodies(tenant_config, audit_logger, make_stub, body):
    stub = make_stub(digest_body=body)

    with _client(tenant_config, audit_logger, stub) as client:
        with pytest.raises(ProtocolError):
            client.get_context_info("token-123")


def test_server_errors_are_protocol_errors(tenant_config, audit_logger, make_stub):
    stub = make_stub(digest_status=500, digest_body="boom")

    with _client(tenant_config, audit_logger, stub) as client:
        with pytest.raises(ProtocolError) as excinfo:
            client.get_context_info("token-123")

    assert excinfo.value.status_code == 500


def test_transport_failures_are_network_errors(tenant_config, audit_logger):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = SharePointClient(tenant_config, audit_logger, transport=httpx.MockTransport(handler))

    with pytest.raises(NetworkError):
        client.get_context_info("token-123")
    client.close()


def test_process_query_sends_digest_and_body(tenant_config, audit_logger, make_stub):
    stub = make_stub(process_query_body='[{"SchemaVersion":"15.0.0.0"}]')

    with _client(tenant_config, audit_logger, stub) as client:
        text = client.process_query("token-123", "abc123", "<Request />")

    assert text == '[{"SchemaVersion":"15.0.0.0"}]'
    request = stub.requests[0]
    assert str(request.url) == "https://contoso-admin.sharepoint.com/_vti_bin/client.svc/ProcessQuery"
    assert request.headers["X-RequestDigest"] == "abc123"
    assert request.headers["Authorization"] == "Bearer token-123"
    assert request.content == b"<Request />"


def test_expired_digest_is_auth_error(tenant_config, audit_logger, make_stub):
    stub = make_stub(process_query_status=403, process_query_body="The security validation for this page is invalid.")

    with _client(tenant_config, audit_logger, stub) as client:
        with pytest.raises(AuthError):
            client.process_query("token-123", "stale", "<Request />")


def test_failed_requests_are_audited_without_tokens(tenant_config, audit_logger, audit_store, make_stub):
    stub = make_stub(digest_status=401, digest_body="unauthorized")

    with _client(tenant_config, audit_logger, stub) as client:
        with pytest.raises(AuthError):
            client.get_context_info("token-123")

    events = audit_store.list()
    assert events[0].message == "spo_request_failed"
    assert events[0].extra["status"] == 401
    assert all("token-123" not in str(event.extra) for event in events)
