"""Tests for copy strategy selection."""

from dbhelper.copy.models import Strategy
from dbhelper.copy.strategy import select_strategy
from dbhelper.copy.validator import TEMPLATE_FILTER_NOTICE, TEMPLATE_PHASE_NOTICE


def test_default_is_dump_restore(make_request):
    decision = select_strategy(make_request())

    assert decision.strategy == Strategy.DUMP_RESTORE_PIPE
    assert decision.notices == ()


def test_fast_same_server_uses_template_clone(make_request):
    decision = select_strategy(make_request(fast=True))

    assert decision.strategy == Strategy.TEMPLATE_CLONE


def test_fast_with_filters_falls_back(make_request):
    """Filters cannot be applied to a template clone."""
    decision = select_strategy(make_request(fast=True, exclude_schemas=("audit",)))

    assert decision.strategy == Strategy.DUMP_RESTORE_PIPE
    assert decision.notices == (TEMPLATE_FILTER_NOTICE,)


def test_sync_uses_sync_diff(make_request):
    decision = select_strategy(make_request(sync=True))

    assert decision.strategy == Strategy.SYNC_DIFF


def test_sync_with_filters_stays_sync(make_request):
    decision = select_strategy(make_request(sync=True, include_tables=("users",)))

    assert decision.strategy == Strategy.SYNC_DIFF
    assert decision.notices == ()


def test_fast_with_schema_only_falls_back(make_request):
    """A template clone always carries rows, so --schema-only cannot use it."""
    decision = select_strategy(make_request(fast=True, schema_only=True))

    assert decision.strategy == Strategy.DUMP_RESTORE_PIPE
    assert decision.notices == (TEMPLATE_PHASE_NOTICE,)


def test_fast_with_data_only_falls_back(make_request):
    decision = select_strategy(make_request(fast=True, data_only=True))

    assert decision.strategy == Strategy.DUMP_RESTORE_PIPE
    assert decision.notices == (TEMPLATE_PHASE_NOTICE,)


def test_fast_with_filters_and_schema_only_reports_both(make_request):
    decision = select_strategy(
        make_request(fast=True, schema_only=True, include_tables=("users",))
    )

    assert decision.strategy == Strategy.DUMP_RESTORE_PIPE
    assert decision.notices == (TEMPLATE_FILTER_NOTICE, TEMPLATE_PHASE_NOTICE)
