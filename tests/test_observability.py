"""Tests for request-scoped observability helpers."""

from __future__ import annotations

import logging

from coach_api.observability import (
    RequestIdFilter,
    get_request_id,
    install_request_id_filter,
    monotonic_ms,
    new_request_id,
    request_log_fields,
    reset_request_id,
    set_request_id,
)


def test_request_id_context_roundtrip():
    assert get_request_id() is None
    token = set_request_id("r-1")
    assert get_request_id() == "r-1"
    reset_request_id(token)
    assert get_request_id() is None


def test_new_request_id_is_unique_hex():
    a, b = new_request_id(), new_request_id()
    assert a != b
    assert len(a) == 32
    int(a, 16)


def test_request_log_fields_shape():
    fields = request_log_fields(method="POST", path="/api/v1/sessions", status_code=201, duration_ms=1.23456, client_ip=None)
    assert fields == {
        "ctx_method": "POST",
        "ctx_path": "/api/v1/sessions",
        "ctx_status_code": 201,
        "ctx_duration_ms": 1.23,
        "ctx_client_ip": "",
    }


def test_monotonic_ms_increases():
    assert monotonic_ms() <= monotonic_ms()


def test_install_filter_once_per_handler():
    root = logging.getLogger()
    handler = logging.StreamHandler()
    root.addHandler(handler)
    try:
        install_request_id_filter()
        install_request_id_filter()
        assert sum(isinstance(f, RequestIdFilter) for f in handler.filters) == 1
    finally:
        root.removeHandler(handler)
