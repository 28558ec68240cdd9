import base64
import json
import threading

import pytest
import responses

from layotto.etcd_gateway import (
    EtcdError,
    EtcdGatewayClient,
    KeyValue,
    WatchEvent,
    prefix_range_end,
)

BASE = "http://localhost:2379"


def enc(text):
    return base64.b64encode(text.encode()).decode()


def dec(text):
    return base64.b64decode(text).decode()


def body_of(call):
    return json.loads(call.request.body)


@pytest.fixture
def http():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


class FakeKv:
    def __init__(self):
        self.data = {}

    def put(self, request):
        body = json.loads(request.body)
        self.data[dec(body["key"])] = dec(body["value"])
        return 200, {}, json.dumps({})

    def range(self, request):
        prefix = dec(json.loads(request.body)["key"])
        kvs = [
            {"key": enc(k), "value": enc(v)}
            for k, v in sorted(self.data.items())
            if k.startswith(prefix)
        ]
        out = {"header": {}}
        if kvs:
            out["kvs"] = kvs
        return 200, {}, json.dumps(out)

    def install(self, rsps):
        rsps.add_callback(responses.POST, f"{BASE}/v3/kv/put", callback=self.put)
        rsps.add_callback(responses.POST, f"{BASE}/v3/kv/range", callback=self.range)


def test_ping_reads_ping_key(http):
    http.add(responses.POST, f"{BASE}/v3/kv/range", json={"header": {}})
    client = EtcdGatewayClient(["localhost:2379"])
    client.ping()
    assert body_of(http.calls[0])["key"] == enc("ping")
    assert client.get_prefix("/x") == []
    assert len(http.calls) == 2


def test_ping_unreachable_raises(http):
    client = EtcdGatewayClient(["localhost:18888"])
    with pytest.raises(EtcdError):
        client.ping()


def test_no_endpoints_raises():
    with pytest.raises(EtcdError):
        EtcdGatewayClient([])


def test_prefix_range_end():
    assert prefix_range_end(b"/mosn") == b"/moso"
    assert prefix_range_end(b"a\xff") == b"b"
    assert prefix_range_end(b"\xff\xff") == b"\x00"


def test_get_prefix_decodes_key_values(http):
    http.add(
        responses.POST,
        f"{BASE}/v3/kv/range",
        json={
            "kvs": [
                {"key": enc("/mosn/group1/label1/sofa"), "value": enc("value1"), "create_revision": "3"},
                {"key": enc("/mosn/group1/label1/sofa/tag1"), "value": enc("tag1")},
            ]
        },
    )
    client = EtcdGatewayClient(["localhost:2379"])
    kvs = client.get_prefix("/mosn")
    assert kvs == [
        KeyValue(key="/mosn/group1/label1/sofa", value="value1", create_revision=3),
        KeyValue(key="/mosn/group1/label1/sofa/tag1", value="tag1"),
    ]
    sent = body_of(http.calls[0])
    assert sent["key"] == enc("/mosn")
    assert base64.b64decode(sent["range_end"]) == prefix_range_end(b"/mosn")


def test_get_prefix_empty_result(http):
    http.add(responses.POST, f"{BASE}/v3/kv/range", json={"header": {}})
    client = EtcdGatewayClient(["localhost:2379"])
    assert client.get_prefix("/nothing") == []


def test_put_sends_key_value_and_lease(http):
    FakeKv().install(http)
    client = EtcdGatewayClient(["localhost:2379"])
    client.put("/a/b", "v1", lease=42)
    client.put("/a/c", "v2")
    first, second = (body_of(call) for call in http.calls)
    assert first == {"key": enc("/a/b"), "value": enc("v1"), "lease": 42}
    assert second == {"key": enc("/a/c"), "value": enc("v2")}
    assert client.get_prefix("/a") == [
        KeyValue(key="/a/b", value="v1"),
        KeyValue(key="/a/c", value="v2"),
    ]


def test_delete_prefix_returns_count(http):
    http.add(responses.POST, f"{BASE}/v3/kv/deleterange", json={"deleted": "2"})
    client = EtcdGatewayClient(["localhost:2379"])
    assert client.delete_prefix("/mosn/default/default/sofa") == 2
    assert body_of(http.calls[0])["key"] == enc("/mosn/default/default/sofa")


def test_grant_lease_returns_id(http):
    http.add(responses.POST, f"{BASE}/v3/lease/grant", json={"ID": "7587", "TTL": "10"})
    client = EtcdGatewayClient(["localhost:2379"])
    assert client.grant_lease(10) == 7587
    assert body_of(http.calls[0])["TTL"] == 10


def test_grant_lease_without_id_raises(http):
    http.add(responses.POST, f"{BASE}/v3/lease/grant", json={"TTL": "10"})
    client = EtcdGatewayClient(["localhost:2379"])
    with pytest.raises(EtcdError):
        client.grant_lease(10)


def test_put_if_absent(http):
    http.add(responses.POST, f"{BASE}/v3/kv/txn", json={"succeeded": True})
    http.add(responses.POST, f"{BASE}/v3/kv/txn", json={"responses": [{"response_range": {}}]})
    client = EtcdGatewayClient(["localhost:2379"])
    assert client.put_if_absent("/lock/r", "owner", lease=7) is True
    assert client.put_if_absent("/lock/r", "owner", lease=7) is False
    sent = body_of(http.calls[0])
    assert sent["compare"][0]["target"] == "CREATE"
    assert sent["success"][0]["request_put"]["value"] == enc("owner")
    assert sent["success"][0]["request_put"]["lease"] == 7


def test_delete_if_value_outcomes(http):
    http.add(responses.POST, f"{BASE}/v3/kv/txn", json={"succeeded": True})
    http.add(
        responses.POST,
        f"{BASE}/v3/kv/txn",
        json={"responses": [{"response_range": {"kvs": [{"key": enc("/lock/r"), "value": enc("x")}]}}]},
    )
    http.add(responses.POST, f"{BASE}/v3/kv/txn", json={"responses": [{"response_range": {}}]})
    client = EtcdGatewayClient(["localhost:2379"])
    assert client.delete_if_value("/lock/r", "owner") == (True, True)
    assert client.delete_if_value("/lock/r", "owner") == (False, True)
    assert client.delete_if_value("/lock/r", "owner") == (False, False)
    assert body_of(http.calls[0])["compare"][0]["value"] == enc("owner")


def test_error_status_raises(http):
    http.add(responses.POST, f"{BASE}/v3/kv/put", json={"error": "bad"}, status=400)
    client = EtcdGatewayClient(["localhost:2379"])
    with pytest.raises(EtcdError):
        client.put("/k", "v")


def test_falls_back_to_next_endpoint(http):
    http.add(responses.POST, "http://localhost:2390/v3/kv/range", json={"header": {}})
    client = EtcdGatewayClient(["localhost:2389", "localhost:2390"])
    assert client.get_prefix("/x") == []
    assert http.calls[-1].request.url == "http://localhost:2390/v3/kv/range"


def test_authenticates_and_sends_token(http):
    http.add(responses.POST, f"{BASE}/v3/auth/authenticate", json={"token": "token"})
    http.add(responses.POST, f"{BASE}/v3/kv/range", json={"header": {}})
    password = "password"
    client = EtcdGatewayClient(["localhost:2379"], username="user", password=password)
    client.ping()
    assert client.get_prefix("/x") == []
    auth_calls = [c for c in http.calls if c.request.url.endswith("/authenticate")]
    assert len(auth_calls) == 1
    assert body_of(auth_calls[0])["name"] == "user"
    assert http.calls[-1].request.headers["Authorization"] == "token"


def test_bad_tls_paths_raise():
    with pytest.raises(EtcdError):
        EtcdGatewayClient(["localhost:2379"], tls_ca="/tmp", tls_cert="/tmp", tls_cert_key="/tmp")


def test_watch_prefix_yields_events(http):
    lines = [
        {"result": {"header": {}, "created": True}},
        {"result": {"events": [{"kv": {"key": enc("/mosn/g/l/k"), "value": enc("v1")}}]}},
        {"result": {"events": [{"type": "DELETE", "kv": {"key": enc("/mosn/g/l/k")}}]}},
    ]
    body = "\n".join(json.dumps(line) for line in lines).encode()
    http.add(responses.POST, f"{BASE}/v3/watch", body=body)
    client = EtcdGatewayClient(["localhost:2379"])
    batches = list(client.watch_prefix("/mosn", threading.Event()))
    assert batches == [
        [],
        [WatchEvent("PUT", KeyValue(key="/mosn/g/l/k", value="v1"))],
        [WatchEvent("DELETE", KeyValue(key="/mosn/g/l/k"))],
    ]
    assert body_of(http.calls[0])["create_request"]["key"] == enc("/mosn")


def test_closed_client_refuses_requests(http):
    client = EtcdGatewayClient(["localhost:2379"])
    client.close()
    with pytest.raises(EtcdError):
        client.ping()