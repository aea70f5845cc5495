"""Tests for correlation ID helpers."""

from __future__ import annotations

import asyncio

import pytest

from reliant_core.correlation import (
    correlation_scope,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)


def test_scope_binds_and_restores() -> None:
    set_correlation_id("outer")
    with correlation_scope("inner") as cid:
        assert cid == "inner"
        assert get_correlation_id() == "inner"
    assert get_correlation_id() == "outer"
    set_correlation_id(None)


def test_scope_generates_id_when_missing() -> None:
    with correlation_scope() as cid:
        assert cid
        assert get_correlation_id() == cid


def test_generated_ids_are_unique() -> None:
    assert generate_correlation_id() != generate_correlation_id()


@pytest.mark.asyncio
async def test_id_propagates_into_tasks() -> None:
    async def read() -> str | None:
        return get_correlation_id()

    with correlation_scope("req-1"):
        assert await asyncio.create_task(read()) == "req-1"
