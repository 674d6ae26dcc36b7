"""
Tests for dbapi.db.mysql_backend against the in-process fake server.
"""
import asyncio

import pymysql
import pytest

from dbapi import (
    ConnectionFailed,
    MySQLClient,
    PooledMySQLClient,
    Query,
    QueryFailed,
    TransactionInProgress,
    UsageError,
)
from dbapi.db.mysql_backend import SCHEMA_EXISTS_SQL, quote_identifier


def options(**overrides):
    base = {"host": "db.local", "port": 3306, "user": "app", "password": "secret"}
    base.update(overrides)
    return base


class TestOpen:

    @pytest.mark.asyncio
    async def test_connects_without_schema(self, mysql_server):
        client = await MySQLClient.open(options())
        try:
            conn = mysql_server.connections[0]
            assert "database" not in conn.kwargs
            assert "db" not in conn.kwargs
            assert conn.kwargs["host"] == "db.local"
            assert conn.kwargs["password"] == "secret"
            assert conn.kwargs["autocommit"] is True
            assert mysql_server.statements() == []
            assert client.is_new is False
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_creates_missing_schema(self, mysql_server):
        client = await MySQLClient.open(options(database="fresh"))
        try:
            assert client.is_new is True
            assert mysql_server.statements() == [
                SCHEMA_EXISTS_SQL,
                "CREATE DATABASE `fresh`",
                "USE `fresh`",
            ]
            assert mysql_server.connections[0].db == "fresh"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_selects_existing_schema(self, mysql_server):
        mysql_server.schemas.add("app")
        client = await MySQLClient.open(options(database="app"))
        try:
            assert client.is_new is False
            assert mysql_server.statements() == [SCHEMA_EXISTS_SQL, "USE `app`"]
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_queries_run_after_schema_selection(self, mysql_server):
        client = await MySQLClient.open(options(database="fresh"))
        try:
            await client.run("CREATE TABLE t (x INT)")
            assert mysql_server.statements()[-2:] == ["USE `fresh`", "CREATE TABLE t (x INT)"]
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_connect_failure(self, mysql_server):
        mysql_server.connect_error = pymysql.err.OperationalError(2003, "Can't connect")
        with pytest.raises(ConnectionFailed) as exc:
            await MySQLClient.open(options())
        assert isinstance(exc.value.__cause__, pymysql.err.OperationalError)

    @pytest.mark.asyncio
    async def test_schema_creation_failure_closes_connection(self, mysql_server):
        mysql_server.failures["CREATE DATABASE"] = pymysql.err.OperationalError(1044, "Access denied")
        with pytest.raises(QueryFailed):
            await MySQLClient.open(options(database="forbidden"))
        assert mysql_server.connections[0].open is False

    def test_quote_identifier(self):
        assert quote_identifier("app") == "`app`"
        assert quote_identifier("we`ird") == "`we``ird`"


class TestQueries:

    @pytest.mark.asyncio
    async def test_parameters_passed_through(self, mysql_server):
        client = await MySQLClient.open(options())
        try:
            await client.run(Query("INSERT INTO t (x) VALUES (%s)", [5]))
            await client.run("DELETE FROM t")
            conn = mysql_server.connections[0]
            assert conn.log == [
                ("INSERT INTO t (x) VALUES (%s)", (5,)),
                ("DELETE FROM t", None),
            ]
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_get_all_and_get_one(self, mysql_server):
        query = "SELECT value FROM t"
        mysql_server.results[query] = [{"value": 1}, {"value": 2}]
        client = await MySQLClient.open(options())
        try:
            assert await client.get_all(query) == [{"value": 1}, {"value": 2}]
            assert await client.get_one(query) == {"value": 1}
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_no_rows(self, mysql_server):
        client = await MySQLClient.open(options())
        try:
            assert await client.get_all("SELECT value FROM empty") == []
            assert await client.get_one("SELECT value FROM empty") is None
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_driver_error_wrapped(self, mysql_server):
        mysql_server.failures["INSERT"] = pymysql.err.IntegrityError(1062, "Duplicate entry")
        client = await MySQLClient.open(options())
        try:
            with pytest.raises(QueryFailed) as exc:
                await client.run(Query("INSERT INTO t (x) VALUES (%s)", [1]))
            assert exc.value.values == [1]
            assert isinstance(exc.value.__cause__, pymysql.err.IntegrityError)
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_closed_client_rejects_queries(self, mysql_server):
        client = await MySQLClient.open(options())
        await client.close()
        await client.close()
        assert mysql_server.connections[0].open is False
        with pytest.raises(UsageError):
            await client.run("SELECT 1")


class TestTransactions:

    @pytest.mark.asyncio
    async def test_commit(self, mysql_server):
        client = await MySQLClient.open(options())
        try:
            async def work(tx):
                assert tx is client
                assert tx.in_transaction
                await tx.run("INSERT INTO t VALUES (1)")
                return "ok"

            assert await client.transaction(work) == "ok"
            assert mysql_server.statements() == ["BEGIN", "INSERT INTO t VALUES (1)", "COMMIT"]
            assert not client.in_transaction
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_rollback_surfaces_original_error(self, mysql_server):
        client = await MySQLClient.open(options())
        error = ValueError("bad input")
        try:
            async def work(tx):
                await tx.run("INSERT INTO t VALUES (1)")
                raise error

            with pytest.raises(ValueError) as exc:
                await client.transaction(work)
            assert exc.value is error
            assert mysql_server.statements() == ["BEGIN", "INSERT INTO t VALUES (1)", "ROLLBACK"]
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_rollback_failure_is_swallowed(self, mysql_server):
        mysql_server.failures["ROLLBACK"] = pymysql.err.OperationalError(2013, "Lost connection")
        client = await MySQLClient.open(options())
        try:
            async def work(tx):
                raise KeyError("original")

            with pytest.raises(KeyError, match="original"):
                await client.transaction(work)
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_commit_failure_rolls_back(self, mysql_server):
        mysql_server.failures["COMMIT"] = pymysql.err.OperationalError(1213, "Deadlock")
        client = await MySQLClient.open(options())
        try:
            with pytest.raises(QueryFailed, match="Deadlock"):
                await client.transaction(lambda tx: None)
            assert mysql_server.statements() == ["BEGIN", "COMMIT", "ROLLBACK"]
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_nested_transaction_rejected(self, mysql_server):
        client = await MySQLClient.open(options())
        try:
            async def work(tx):
                with pytest.raises(TransactionInProgress):
                    tx.transaction(lambda inner: None)

            await client.transaction(work)
        finally:
            await client.close()


class TestPooled:

    @pytest.mark.asyncio
    async def test_open_connects_eagerly(self, mysql_server):
        client = await PooledMySQLClient.open(options(database="fresh", pool_size=2))
        try:
            assert client.is_new is True
            assert len(mysql_server.connections) == 1
            assert client.pool.idle == 1
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_connect_failure(self, mysql_server):
        mysql_server.connect_error = pymysql.err.OperationalError(1045, "Access denied")
        with pytest.raises(ConnectionFailed):
            await PooledMySQLClient.open(options())

    @pytest.mark.asyncio
    async def test_connect_reuses_released_connection(self, mysql_server):
        client = await PooledMySQLClient.open(options(pool_size=1))
        try:
            first = await client.connect(lambda c: c.conn)
            second = await client.connect(lambda c: c.conn)
            assert first is second
            assert client.pool.idle == 1
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_released_after_failure(self, mysql_server):
        client = await PooledMySQLClient.open(options(pool_size=1))
        try:
            async def broken(c):
                await c.run("INSERT INTO t VALUES (1)")
                raise RuntimeError("handler failed")

            with pytest.raises(RuntimeError, match="handler failed"):
                await client.connect(broken)

            conn = mysql_server.connections[0]
            assert conn.rollbacks == 1
            assert client.pool.idle == 1

            # A pool of one would hang here if the connection had leaked.
            result = await asyncio.wait_for(client.connect(lambda c: "still works"), timeout=1)
            assert result == "still works"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_transient_client_unusable_after_release(self, mysql_server):
        client = await PooledMySQLClient.open(options())
        try:
            leaked = await client.connect(lambda c: c)
            with pytest.raises(UsageError):
                await leaked.run("SELECT 1")
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_concurrent_connects_get_distinct_connections(self, mysql_server):
        client = await PooledMySQLClient.open(options(database="app", pool_size=2))
        try:
            both_in = asyncio.Event()
            inside = []

            async def hold(c):
                inside.append(c.conn)
                if len(inside) == 2:
                    both_in.set()
                await asyncio.wait_for(both_in.wait(), timeout=1)
                return c.conn

            a, b = await asyncio.gather(client.connect(hold), client.connect(hold))
            assert a is not b
            assert len(mysql_server.connections) == 2
            # The second connection repeated the schema bootstrap.
            second = mysql_server.connections[1]
            assert mysql_server.statements(second) == [SCHEMA_EXISTS_SQL, "USE `app`"]
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_each_checkout_reselects_schema(self, mysql_server):
        client = await PooledMySQLClient.open(options(database="app", pool_size=1))
        try:
            await client.connect(lambda c: c.run("USE `other`"))
            assert mysql_server.connections[0].db == "other"

            assert await client.connect(lambda c: c.conn.db) == "app"
            assert len(mysql_server.connections) == 1
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_checkout_recreates_dropped_schema(self, mysql_server):
        client = await PooledMySQLClient.open(options(database="app", pool_size=1))
        try:
            assert await client.connect(lambda c: c.is_new) is False

            mysql_server.schemas.discard("app")
            assert await client.connect(lambda c: c.is_new) is True
            assert "app" in mysql_server.schemas
            assert mysql_server.statements()[-2:] == ["CREATE DATABASE `app`", "USE `app`"]
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_checkout_bootstrap_failure_releases_connection(self, mysql_server):
        client = await PooledMySQLClient.open(options(database="app", pool_size=1))
        try:
            mysql_server.failures["USE"] = pymysql.err.OperationalError(1044, "Access denied")
            with pytest.raises(QueryFailed):
                await client.connect(lambda c: "unreachable")
            assert client.pool.idle == 1

            del mysql_server.failures["USE"]
            result = await asyncio.wait_for(client.connect(lambda c: c.conn.db), timeout=1)
            assert result == "app"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_close_while_connect_in_flight(self, mysql_server):
        client = await PooledMySQLClient.open(options(pool_size=2))
        entered = asyncio.Event()
        proceed = asyncio.Event()

        async def hold(c):
            entered.set()
            await proceed.wait()
            await c.run("DELETE FROM t")
            return "finished"

        task = asyncio.ensure_future(client.connect(hold))
        await asyncio.wait_for(entered.wait(), timeout=1)

        await client.close()
        with pytest.raises(UsageError):
            await client.connect(lambda c: None)

        proceed.set()
        assert await asyncio.wait_for(task, timeout=1) == "finished"

        conn = mysql_server.connections[0]
        assert mysql_server.statements(conn)[-1] == "DELETE FROM t"
        assert conn.open is False
        assert client.pool.idle == 0

    @pytest.mark.asyncio
    async def test_common_contract_goes_through_pool(self, mysql_server):
        query = "SELECT value FROM t"
        mysql_server.results[query] = [{"value": 1}]
        client = await PooledMySQLClient.open(options(pool_size=1))
        try:
            await client.run("DELETE FROM t")
            assert await client.get_all(query) == [{"value": 1}]
            assert await client.get_one(query) == {"value": 1}
            assert await client.transaction(lambda tx: "committed") == "committed"
            assert mysql_server.statements()[-2:] == ["BEGIN", "COMMIT"]
            assert client.pool.idle == 1
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_close(self, mysql_server):
        client = await PooledMySQLClient.open(options())
        await client.close()
        await client.close()
        assert mysql_server.connections[0].open is False
        with pytest.raises(UsageError):
            await client.connect(lambda c: None)
        with pytest.raises(UsageError):
            client.transaction(lambda tx: None)
