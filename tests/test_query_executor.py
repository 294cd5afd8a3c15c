import pytest

from askai.online.query_executor import QueryExecutor, bind_scope_parameters

from .conftest import ACTIVE_SQL, CHECKED_IN_SQL


def test_bind_scope_parameters_rewrites_placeholders():
    sql, params = bind_scope_parameters(
        "SELECT * FROM p WHERE p.ApplicationId = @ApplicationId AND e = @eventid", 5, 9
    )

    assert sql == "SELECT * FROM p WHERE p.ApplicationId = :application_id AND e = :event_id"
    assert params == {"application_id": 5, "event_id": 9}


def test_bind_scope_parameters_only_binds_used_names():
    sql, params = bind_scope_parameters("SELECT 1 WHERE a = @ApplicationId", 5, 0)

    assert sql == "SELECT 1 WHERE a = :application_id"
    assert params == {"application_id": 5}


def test_bind_scope_parameters_ignores_longer_names():
    sql, params = bind_scope_parameters("SELECT @ApplicationIdX", 5, 0)

    assert sql == "SELECT @ApplicationIdX"
    assert params == {}


@pytest.mark.asyncio
async def test_run_returns_rows_and_columns_in_result_order(datastore):
    result = await QueryExecutor(datastore).run(1, 0, ACTIVE_SQL + ";")

    assert result.succeeded
    assert result.columns == ["Id", "FirstName"]
    assert result.rows == [{"Id": 1, "FirstName": "Ada"}, {"Id": 2, "FirstName": "Grace"}]


@pytest.mark.asyncio
async def test_run_binds_event_scope(datastore):
    result = await QueryExecutor(datastore).run(1, 42, CHECKED_IN_SQL + ";")

    assert result.rows == [{"Id": 1, "FirstName": "Ada"}]


@pytest.mark.asyncio
async def test_run_reports_execution_failure_as_message(datastore):
    result = await QueryExecutor(datastore).run(1, 0, "SELECT Missing FROM NoSuchTable;")

    assert result.succeeded is False
    assert "NoSuchTable" in result.error_message
    assert result.rows == []
    assert result.columns == []
