"""In-memory CouchDB stand-in used by the end-to-end tests."""

import copy
import json
import uuid
from urllib.parse import unquote, urlsplit

import pytest
from requests.structures import CaseInsensitiveDict

from divan import DivanClient

REASONS = {
    200: "OK",
    201: "Created",
    404: "Object Not Found",
    409: "Conflict",
    412: "Precondition Failed",
}


class FakeResponse:
    def __init__(self, status_code, payload=None, headers=None):
        self.status_code = status_code
        self.reason = REASONS.get(status_code, "")
        self.headers = CaseInsensitiveDict(headers or {})
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return copy.deepcopy(self._payload)


class FakeCouchSession:
    """Answers the subset of the CouchDB HTTP API the client uses.

    Views are Python map functions registered under
    ``(db, design, view)`` that yield ``(key, value)`` pairs per document.
    """

    def __init__(self):
        self.headers = {}
        self.databases = {}
        self.views = {}
        self.requests = []
        self.closed = False

    def close(self):
        self.closed = True

    def request(self, method, url, params=None, headers=None, json=None, timeout=None):
        self.requests.append((method, url, params, headers, json))
        parts = [unquote(p) for p in urlsplit(url).path.split("/")[1:]]
        db, rest = parts[0], [p for p in parts[1:] if p]
        if not rest:
            return self._database(method, db)
        if db not in self.databases:
            return FakeResponse(404, {"error": "not_found", "reason": "Database does not exist."})
        docs = self.databases[db]
        if rest == ["_all_docs"]:
            return self._all_docs(docs)
        if rest[0] == "_design":
            return self._view(db, rest[1], rest[3], params or {})
        return self._document(method, docs, rest[0], headers or {}, json)

    def _database(self, method, db):
        exists = db in self.databases
        if method == "GET":
            return FakeResponse(200, {"db_name": db}) if exists else FakeResponse(404, {})
        if method == "PUT":
            if exists:
                return FakeResponse(412, {"error": "file_exists"})
            self.databases[db] = {}
            return FakeResponse(201, {"ok": True})
        if method == "DELETE":
            if not exists:
                return FakeResponse(404, {"error": "not_found"})
            del self.databases[db]
            return FakeResponse(200, {"ok": True})
        raise AssertionError(f"unexpected {method} on database")

    def _document(self, method, docs, doc_id, headers, body):
        current = docs.get(doc_id)
        if method in ("HEAD", "GET"):
            if current is None:
                return FakeResponse(404, {"error": "not_found"} if method == "GET" else None)
            etag = {"ETag": f'"{current["_rev"]}"'}
            return FakeResponse(200, current if method == "GET" else None, etag)
        if method == "PUT":
            given = body.get("_rev")
            expected = current["_rev"] if current else None
            if given != expected:
                return FakeResponse(409, {"error": "conflict"})
            generation = int(expected.split("-")[0]) + 1 if expected else 1
            rev = f"{generation}-{uuid.uuid4().hex}"
            docs[doc_id] = dict(body, _id=doc_id, _rev=rev)
            return FakeResponse(201, {"ok": True, "id": doc_id, "rev": rev}, {"ETag": f'"{rev}"'})
        if method == "DELETE":
            if current is None:
                return FakeResponse(404, {"error": "not_found"})
            if headers.get("If-Match") != current["_rev"]:
                return FakeResponse(409, {"error": "conflict"})
            del docs[doc_id]
            return FakeResponse(200, {"ok": True})
        raise AssertionError(f"unexpected {method} on document")

    def _all_docs(self, docs):
        rows = [
            {"id": doc_id, "key": doc_id, "value": {"rev": docs[doc_id]["_rev"]}}
            for doc_id in sorted(docs)
        ]
        return FakeResponse(200, {"total_rows": len(rows), "offset": 0, "rows": rows})

    def _view(self, db, design, name, params):
        emit = self.views.get((db, design, name))
        if emit is None:
            return FakeResponse(404, {"error": "not_found", "reason": "missing"})
        docs = self.databases[db]
        rows = sorted(
            (
                {"id": doc_id, "key": key, "value": value}
                for doc_id in sorted(docs)
                for key, value in emit(docs[doc_id])
            ),
            key=lambda row: row["key"],
        )
        total = len(rows)
        offset = 0
        if "startkey" in params:
            start = json.loads(params["startkey"])
            offset = len([row for row in rows if row["key"] < start])
            rows = [row for row in rows if row["key"] >= start]
        if "endkey" in params:
            end = json.loads(params["endkey"])
            rows = [row for row in rows if row["key"] <= end]
        return FakeResponse(200, {"total_rows": total, "offset": offset, "rows": rows})


@pytest.fixture
def couch():
    return FakeCouchSession()


@pytest.fixture
def client(couch):
    return DivanClient("http://couch.test:5984", session=couch)
