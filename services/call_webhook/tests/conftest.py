"""
Shared fixtures: an in-memory Salesforce org and a CRMClient that talks to it.
No test here reaches a real Salesforce instance.
"""
import os
import re
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("LOG_LEVEL", "WARNING")

from app.adapters.base import CRMClient
from app.main import app, get_crm_factory

_FROM = re.compile(r"FROM\s+(\w+)")
_WHERE = re.compile(r"WHERE\s+(\w+)\s*=\s*'((?:[^'\\]|\\.)*)'")


class FakeSalesforceOrg:
    """Remote state shared by every request of a test, plus a log of calls."""

    def __init__(self):
        self.records = {}
        self.calls = []
        self.errors = {}
        self._clock = datetime(2024, 1, 1)
        self._ids = 0

    def _tick(self) -> str:
        self._clock += timedelta(seconds=1)
        return self._clock.strftime("%Y-%m-%dT%H:%M:%S.000+0000")

    def fail(self, operation, object_name=None, error=None):
        """Make every `operation` (on `object_name`) raise `error`."""
        self.errors[(operation, object_name)] = error

    def _maybe_fail(self, operation, object_name=None):
        error = self.errors.get((operation, object_name))
        if error is not None:
            raise error

    def seed(self, object_name, fields):
        return self.insert(object_name, fields)

    def insert(self, object_name, fields):
        self._ids += 1
        record_id = f"{object_name[:3].upper()}{self._ids:015d}"
        record = dict(fields, Id=record_id, LastModifiedDate=self._tick())
        self.records.setdefault(object_name, []).append(record)
        return record_id

    def find(self, object_name, record_id):
        for record in self.records.get(object_name, []):
            if record["Id"] == record_id:
                return record
        return None

    def outbound(self, kind=None):
        """Logged calls, optionally only those of one kind."""
        return [c for c in self.calls if kind is None or c[0] == kind]


class FakeCRMClient(CRMClient):
    def __init__(self, org: FakeSalesforceOrg):
        self.org = org
        self.authenticated = False

    async def authenticate(self):
        self.org.calls.append(("authenticate",))
        self.org._maybe_fail("authenticate")
        self.authenticated = True

    async def create(self, object_name, fields):
        assert self.authenticated, "create before authenticate"
        self.org.calls.append(("create", object_name, dict(fields)))
        self.org._maybe_fail("create", object_name)
        return self.org.insert(object_name, fields)

    async def update(self, object_name, record_id, fields):
        assert self.authenticated, "update before authenticate"
        self.org.calls.append(("update", object_name, record_id, dict(fields)))
        self.org._maybe_fail("update", object_name)
        record = self.org.find(object_name, record_id)
        record.update(fields)
        record["LastModifiedDate"] = self.org._tick()
        return record_id

    async def query(self, soql):
        assert self.authenticated, "query before authenticate"
        self.org.calls.append(("query", soql))
        self.org._maybe_fail("query")
        object_name = _FROM.search(soql).group(1)
        where = _WHERE.search(soql)
        field, value = where.group(1), re.sub(r"\\(.)", r"\1", where.group(2))
        matches = [
            {"Id": r["Id"], "LastModifiedDate": r["LastModifiedDate"]}
            for r in self.org.records.get(object_name, [])
            if str(r.get(field)) == value
        ]
        return sorted(matches, key=lambda r: r["LastModifiedDate"], reverse=True)


@pytest.fixture
def org():
    return FakeSalesforceOrg()


@pytest.fixture
def crm(org):
    return FakeCRMClient(org)


@pytest.fixture
def client(org):
    """Test client whose requests each get a FakeCRMClient on the shared org."""
    app.dependency_overrides[get_crm_factory] = lambda: (lambda: FakeCRMClient(org))
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
