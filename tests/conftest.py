import re
import threading

import pytest

from dbapi.db import mysql_backend


# ----------------------------------------------------------------------
# In-process stand-in for a MySQL server reached through pymysql.connect
# ----------------------------------------------------------------------

class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.description = None
        self._rows = []

    def execute(self, query, args=None):
        self.conn.server.handle(self.conn, self, query, args)
        return len(self._rows)

    def fetchall(self):
        rows, self._rows = self._rows, []
        return rows

    def fetchone(self):
        return self._rows.pop(0) if self._rows else None

    def close(self):
        pass


class FakeConnection:
    def __init__(self, server, kwargs):
        self.server = server
        self.kwargs = kwargs
        self.open = True
        self.db = None
        self.log = []
        self.rollbacks = 0

    def cursor(self):
        if not self.open:
            raise mysql_backend.pymysql.err.InterfaceError(0, "closed")
        return FakeCursor(self)

    def rollback(self):
        self.rollbacks += 1
        self.log.append(("ROLLBACK", None))

    def close(self):
        self.open = False


class FakeServer:
    """
    Records every statement and answers the handful the clients issue.

    ``results`` maps a SELECT's text to the rows it returns; ``failures``
    maps a statement prefix to the exception it raises.
    """

    def __init__(self):
        self.schemas = set()
        self.connections = []
        self.results = {}
        self.failures = {}
        self.connect_error = None
        self._lock = threading.Lock()

    def connect(self, **kwargs):
        if self.connect_error is not None:
            raise self.connect_error
        conn = FakeConnection(self, kwargs)
        with self._lock:
            self.connections.append(conn)
        return conn

    def statements(self, conn=None):
        conns = [conn] if conn is not None else self.connections
        return [q for c in conns for q, _ in c.log]

    def handle(self, conn, cursor, query, args):
        conn.log.append((query, args))
        for prefix, exc in self.failures.items():
            if query.startswith(prefix):
                raise exc

        if query == mysql_backend.SCHEMA_EXISTS_SQL:
            cursor.description = (("SCHEMA_NAME",),)
            name = args[0]
            cursor._rows = [{"SCHEMA_NAME": name}] if name in self.schemas else []
        elif query.startswith("CREATE DATABASE"):
            self.schemas.add(_identifier(query))
        elif query.startswith("USE"):
            conn.db = _identifier(query)
        elif query.lstrip().upper().startswith("SELECT"):
            cursor.description = (("value",),)
            cursor._rows = [dict(r) for r in self.results.get(query, [])]


def _identifier(query):
    return re.search(r"`((?:[^`]|``)*)`", query).group(1).replace("``", "`")


@pytest.fixture()
def mysql_server(monkeypatch):
    server = FakeServer()
    monkeypatch.setattr(mysql_backend.pymysql, "connect", server.connect)
    return server


@pytest.fixture()
def db_path(tmp_path):
    return str(tmp_path / "test.db")
