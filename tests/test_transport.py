import pytest
import requests

from backend_errors import HTTPStatusError, TransportError
from transport import USER_AGENT, HttpTransport


def make_response(status=200, body=b"", content_type="application/json", headers=None):
    response = requests.Response()
    response.status_code = status
    response._content = body
    response.headers["Content-Type"] = content_type
    response.headers.update(headers or {})
    response.url = "http://host/"
    return response


class FakeSession(requests.Session):
    def __init__(self, reply):
        super().__init__()
        self.reply = reply
        self.sent = []

    def request(self, method, url, **kwargs):
        self.sent.append((method, url, kwargs))
        if isinstance(self.reply, BaseException):
            raise self.reply
        return self.reply


def test_url_for():
    transport = HttpTransport("http://host:8080/", session=FakeSession(None))
    assert transport.url_for("api/v2/app/version") == "http://host:8080/api/v2/app/version"
    assert transport.url_for("/api/v2/app/version") == "http://host:8080/api/v2/app/version"
    assert transport.url_for("") == "http://host:8080"

    rpc = HttpTransport("http://host:9091/transmission/rpc", session=FakeSession(None))
    assert rpc.url_for("") == "http://host:9091/transmission/rpc"


def test_json_and_text_bodies():
    session = FakeSession(make_response(body=b'{"rid": 3}'))
    transport = HttpTransport("http://host", session=session, timeout=2.5)
    assert transport.get("sync", params={"rid": 0}) == {"rid": 3}
    method, url, kwargs = session.sent[0]
    assert (method, url) == ("GET", "http://host/sync")
    assert kwargs["timeout"] == 2.5
    assert kwargs["params"] == {"rid": 0}
    assert "data" not in kwargs

    session.reply = make_response(body=b"v4.6.2", content_type="text/plain")
    assert transport.get("app/version") == "v4.6.2"

    session.reply = make_response(body=b"[1, 2]", content_type="text/plain")
    assert transport.get("x") == [1, 2]

    session.reply = make_response(body=b"")
    assert transport.post("x", data={"a": 1}) is None


def test_malformed_json_is_transport_error():
    transport = HttpTransport("http://host", session=FakeSession(make_response(body=b"{oops")))
    with pytest.raises(TransportError):
        transport.get("x")


def test_non_2xx_raises_status_error_with_headers():
    reply = make_response(409, b"conflict", "text/html", {"X-Transmission-Session-Id": "abc"})
    transport = HttpTransport("http://host", session=FakeSession(reply))
    with pytest.raises(HTTPStatusError) as info:
        transport.post("", json={"method": "session-get"})
    assert info.value.status == 409
    assert info.value.headers["X-Transmission-Session-Id"] == "abc"
    assert info.value.body == "conflict"


@pytest.mark.parametrize("exc", [requests.Timeout("slow"), requests.ConnectionError("refused")])
def test_network_failures_become_transport_errors(exc):
    transport = HttpTransport("http://host", session=FakeSession(exc))
    with pytest.raises(TransportError) as info:
        transport.get("x")
    assert info.value.url == "http://host/x"


def test_basic_auth_and_user_agent():
    transport = HttpTransport("http://host", username="admin", password="pw")
    assert transport.session.auth == ("admin", "pw")
    assert transport.headers["User-Agent"] == USER_AGENT
    transport.headers["X-Token"] = "t"
    assert transport.session.headers["X-Token"] == "t"
    transport.close()


def test_base_url_required():
    with pytest.raises(ValueError):
        HttpTransport("")
