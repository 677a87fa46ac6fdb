"""Tests for JSON-RPC message classification."""

from lspharness.rpc.protocol import (
    INTERNAL_ERROR,
    RpcError,
    RpcNotification,
    RpcRequest,
    RpcResponse,
    normalize_rpc_error,
    parse_message,
)


def test_parse_response_result():
    msg = parse_message({"jsonrpc": "2.0", "id": 4, "result": {"a": 1}})
    assert isinstance(msg, RpcResponse)
    assert msg.id == 4
    assert msg.ok
    assert msg.result == {"a": 1}


def test_parse_response_error():
    msg = parse_message({"jsonrpc": "2.0", "id": 4, "error": {"code": -32600, "message": "bad"}})
    assert isinstance(msg, RpcResponse)
    assert not msg.ok
    assert msg.error == RpcError(code=-32600, message="bad")


def test_null_error_is_a_result():
    msg = parse_message({"jsonrpc": "2.0", "id": 2, "result": None, "error": None})
    assert isinstance(msg, RpcResponse)
    assert msg.ok


def test_parse_notification_and_request():
    note = parse_message({"jsonrpc": "2.0", "method": "textDocument/publishDiagnostics", "params": {"uri": "u"}})
    assert note == RpcNotification(method="textDocument/publishDiagnostics", params={"uri": "u"})
    req = parse_message({"jsonrpc": "2.0", "id": "abc", "method": "workspace/configuration", "params": {}})
    assert req == RpcRequest(id="abc", method="workspace/configuration", params={})


def test_unclassifiable_messages_are_dropped():
    assert parse_message({"jsonrpc": "2.0"}) is None
    assert parse_message({"jsonrpc": "2.0", "id": "str-id", "result": 1}) is None
    assert parse_message({"jsonrpc": "2.0", "id": True, "result": 1}) is None


def test_normalize_rpc_error_fills_defaults():
    err = normalize_rpc_error("boom")
    assert err.code == INTERNAL_ERROR
    assert err.message == "rpc failed"


def test_payloads_omit_empty_params():
    assert RpcNotification(method="exit").to_payload() == {"jsonrpc": "2.0", "method": "exit"}
    assert RpcRequest(id=1, method="shutdown").to_payload() == {"jsonrpc": "2.0", "id": 1, "method": "shutdown"}
    assert RpcResponse(id=1).to_payload() == {"jsonrpc": "2.0", "id": 1, "result": None}
