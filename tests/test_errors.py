"""Tests for API error translation."""

import json

from k8s_mcp.errors import (
    AuthorizationError,
    ClusterConnectionError,
    InternalError,
    NotFoundError,
    ValidationError,
    translate_api_error,
    translate_operation_error,
)

from conftest import ApiError


def test_status_codes_map_to_taxonomy():
    assert isinstance(translate_api_error(ApiError(404, "Not Found")), NotFoundError)
    assert isinstance(translate_api_error(ApiError(422, "Unprocessable")), ValidationError)
    assert isinstance(translate_api_error(ApiError(403, "Forbidden")), AuthorizationError)
    assert isinstance(translate_api_error(ApiError(500, "Internal")), ClusterConnectionError)


def test_status_body_message_preferred():
    body = json.dumps({"kind": "Status", "message": 'deployments.apps "web" not found'})
    assert translate_api_error(ApiError(404, "Not Found", body)).message == 'deployments.apps "web" not found'


def test_non_json_body_falls_back_to_reason():
    assert translate_api_error(ApiError(500, "Internal Server Error", "<html>")).message == "Internal Server Error"


def test_transport_errors_are_wrapped():
    error = translate_api_error(OSError("connection refused"))
    assert isinstance(error, ClusterConnectionError)
    assert "connection refused" in error.message


def test_taxonomy_errors_pass_through():
    original = ValidationError("bad")
    assert translate_api_error(original) is original
    assert original.code == -32602


def test_operation_errors_keep_cluster_meaning():
    assert isinstance(translate_operation_error(ApiError(404, "Not Found")), NotFoundError)
    assert isinstance(translate_operation_error(ConnectionRefusedError("refused")), ClusterConnectionError)


def test_programming_errors_are_internal():
    error = translate_operation_error(AttributeError("'V1ConfigMap' object has no attribute 'status'"))
    assert isinstance(error, InternalError)
    assert error.message == "Internal error"
    assert error.code == -32603
