"""
Divan Python Client
Minimal client for a CouchDB-style document database over HTTP.

Usage:
    from divan import DivanClient

    client = DivanClient("http://localhost:5984")
    db = client.get_or_create_database("tests")

    # Insert
    rev = db.insert("doc1", {"name": "a"})

    # Fetch
    doc, rev = db.fetch("doc1")

    # Update
    rev = db.update("doc1", rev, {"name": "b"})

    # Query a view
    rows = db.view("people", "by_name").range("a", "m")

    # Delete
    db.remove("doc1", rev)
"""

import json
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union
from urllib.parse import quote

import requests

from .errors import (
    ConflictError,
    ConnectionError,
    DecodeError,
    EncodeError,
    HTTPStatusError,
    NotFoundError,
    RequestError,
    ResponseBodyError,
)
from .ids import new_id

logger = logging.getLogger(__name__)

METADATA_FIELDS = ("_id", "_rev")


def _unquote(etag: str) -> str:
    return etag.replace('"', "")


def _segment(value: str) -> str:
    return quote(value, safe="")


def _merge_document(doc_id: str, rev: str, value: Any) -> Dict[str, Any]:
    """Build a request body with ``_id`` and ``_rev`` ahead of the caller's fields.

    Empty metadata values are left out. Any ``_id``/``_rev`` already present
    in ``value`` is replaced by the synthesized one.
    """
    if not isinstance(value, Mapping):
        raise EncodeError(
            f"document {doc_id!r} must be a JSON object, got {type(value).__name__}"
        )
    try:
        fields = json.loads(json.dumps(value, allow_nan=False))
    except (TypeError, ValueError) as exc:
        raise EncodeError(f"cannot encode document {doc_id!r}: {exc}") from exc

    body: Dict[str, Any] = {}
    if doc_id:
        body["_id"] = doc_id
    if rev:
        body["_rev"] = rev
    for key, item in fields.items():
        if key not in METADATA_FIELDS:
            body[key] = item
    return body


def _encode_key(param: str, key: Any) -> str:
    try:
        return json.dumps(key, separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise EncodeError(f"cannot encode {param}: {exc}") from exc


def _decode_json(resp: requests.Response, what: str) -> Any:
    try:
        return resp.json()
    except ValueError as exc:
        raise DecodeError(f"{what}: invalid JSON body: {exc}") from exc


def _convert(into: Optional[Callable[[Any], Any]], value: Any, what: str) -> Any:
    if into is None:
        return value
    try:
        return into(value)
    except (TypeError, ValueError, KeyError) as exc:
        name = getattr(into, "__name__", repr(into))
        raise DecodeError(f"{what}: cannot decode into {name}: {exc}") from exc


def _rows(payload: Any, what: str) -> List[Any]:
    rows = payload.get("rows") if isinstance(payload, dict) else None
    if not isinstance(rows, list):
        raise DecodeError(f"{what}: response has no 'rows' list")
    return rows


class ViewResult:
    """Result of a view query."""

    def __init__(self, data: dict, rows: list):
        self.total_rows = data.get("total_rows", len(rows))
        self.offset = data.get("offset", 0)
        self.rows = rows

    def __len__(self):
        return len(self.rows)

    def __iter__(self):
        return iter(self.rows)

    def __repr__(self):
        return f"ViewResult(total_rows={self.total_rows}, offset={self.offset}, rows={len(self.rows)})"


class View:
    """A named view inside a design document. Every query hits the server."""

    def __init__(self, transport: "HttpTransport", database: "Database", design: str, name: str):
        self._transport = transport
        self._database = database
        self._design = design
        self._name = name

    @property
    def design(self) -> str:
        return self._design

    @property
    def name(self) -> str:
        return self._name

    def _path(self) -> str:
        return self._database._path(
            f"_design/{_segment(self._design)}/_view/{_segment(self._name)}"
        )

    def query(
        self,
        start: Any = None,
        end: Any = None,
        row_type: Optional[Callable[[Any], Any]] = None,
    ) -> ViewResult:
        """Query the view between inclusive ``start`` and ``end`` keys.

        A bound of ``None`` is left out of the query string. Each row is
        passed through ``row_type`` when given.
        """
        params: Dict[str, str] = {}
        if start is not None:
            params["startkey"] = _encode_key("startkey", start)
        if end is not None:
            params["endkey"] = _encode_key("endkey", end)

        path = self._path()
        logger.debug("Query URL: %s %s", path, params)
        resp = self._transport.request("GET", path, params=params or None)
        if resp.status_code == 404:
            raise NotFoundError(
                f"view '{self._design}/{self._name}' not found in database "
                f"'{self._database.name}'"
            )
        if resp.status_code != 200:
            raise self._transport.status_error(resp, "GET", path)

        what = f"GET {path}"
        data = _decode_json(resp, what)
        rows = [_convert(row_type, row, what) for row in _rows(data, what)]
        return ViewResult(data, rows)

    def all(self, row_type: Optional[Callable[[Any], Any]] = None) -> list:
        """Return every row emitted by the view."""
        return self.query(row_type=row_type).rows

    def range(
        self,
        start: Any = None,
        end: Any = None,
        row_type: Optional[Callable[[Any], Any]] = None,
    ) -> list:
        """Return rows with ``start <= key <= end``; either bound may be omitted."""
        return self.query(start, end, row_type=row_type).rows

    def __repr__(self):
        return f"View(database='{self._database.name}', design='{self._design}', name='{self._name}')"


class Database:
    """Represents a CouchDB database. Obtained from :class:`DivanClient`."""

    def __init__(self, transport: "HttpTransport", name: str):
        self._transport = transport
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    def _path(self, path: str = "") -> str:
        return f"/{_segment(self._name)}/{path}"

    def _doc_path(self, doc_id: str) -> str:
        if not doc_id:
            raise ValueError("Document id is required")
        return self._path(_segment(doc_id))

    def url(self, path: str = "") -> str:
        """Absolute URL of ``path`` inside this database."""
        return self._transport.url(self._path(path))

    def revision(self, doc_id: str) -> str:
        """Return the current revision of a document, or ``""`` if it does not exist."""
        path = self._doc_path(doc_id)
        resp = self._transport.request("HEAD", path)
        if resp.status_code == 404:
            return ""
        if resp.status_code != 200:
            raise self._transport.status_error(resp, "HEAD", path)
        etag = resp.headers.get("ETag")
        if not etag:
            raise DecodeError(f"HEAD {path}: header 'ETag' not found")
        return _unquote(etag)

    def fetch(
        self,
        doc_id: str,
        into: Optional[Callable[[Any], Any]] = None,
    ) -> Tuple[Any, str]:
        """Fetch a document and its revision.

        ``_id`` and ``_rev`` are stripped from the returned body, which is
        then passed through ``into`` when given. Raises
        :class:`NotFoundError` when the document does not exist.
        """
        path = self._doc_path(doc_id)
        resp = self._transport.request("GET", path)
        if resp.status_code == 404:
            raise NotFoundError(
                f"document '{doc_id}' not found in database '{self._name}'"
            )
        if resp.status_code != 200:
            raise self._transport.status_error(resp, "GET", path)

        what = f"GET {path}"
        doc = _decode_json(resp, what)
        if not isinstance(doc, dict):
            raise DecodeError(f"{what}: expected a JSON object, got {type(doc).__name__}")
        rev = _unquote(resp.headers.get("ETag") or doc.get("_rev", ""))
        for field in METADATA_FIELDS:
            doc.pop(field, None)
        return _convert(into, doc, what), rev

    def _put(self, doc_id: str, rev: str, value: Mapping[str, Any]) -> str:
        path = self._doc_path(doc_id)
        body = _merge_document(doc_id, rev, value)
        resp = self._transport.request("PUT", path, body=body)
        if resp.status_code != 201:
            raise self._transport.status_error(resp, "PUT", path)

        etag = resp.headers.get("ETag")
        if etag:
            return _unquote(etag)
        payload = _decode_json(resp, f"PUT {path}")
        new_rev = payload.get("rev") if isinstance(payload, dict) else None
        if not new_rev:
            raise DecodeError(f"PUT {path}: response carries no revision")
        return new_rev

    def insert(self, doc_id: str, value: Mapping[str, Any]) -> str:
        """Create a new document and return its revision."""
        return self._put(doc_id, "", value)

    def insert_new(self, value: Mapping[str, Any]) -> Tuple[str, str]:
        """Create a document under a freshly generated id. Returns ``(id, rev)``."""
        doc_id = new_id()
        return doc_id, self._put(doc_id, "", value)

    def update(self, doc_id: str, rev: str, value: Mapping[str, Any]) -> str:
        """Replace a document at ``rev`` and return the new revision.

        A stale ``rev`` raises :class:`ConflictError`.
        """
        return self._put(doc_id, rev, value)

    def upsert(self, doc_id: str, value: Mapping[str, Any]) -> str:
        """Insert or update depending on whether the document exists.

        Not atomic: a concurrent writer between the lookup and the write
        makes the server reject the write with :class:`ConflictError`.
        """
        rev = self.revision(doc_id)
        if not rev:
            return self.insert(doc_id, value)
        return self.update(doc_id, rev, value)

    def remove(self, doc_id: str, rev: str) -> None:
        """Delete a document at ``rev``. A missing document is not an error."""
        path = self._doc_path(doc_id)
        resp = self._transport.request("DELETE", path, headers={"If-Match": rev})
        if resp.status_code == 404:
            return
        if not 200 <= resp.status_code < 300:
            raise self._transport.status_error(resp, "DELETE", path)

    def all_ids(self) -> List[str]:
        """List every document id in the database, in server order."""
        path = self._path("_all_docs")
        resp = self._transport.request("GET", path)
        if resp.status_code == 404:
            raise NotFoundError(f"database '{self._name}' not found")
        if resp.status_code != 200:
            raise self._transport.status_error(resp, "GET", path)

        what = f"GET {path}"
        try:
            return [row["id"] for row in _rows(_decode_json(resp, what), what)]
        except (TypeError, KeyError) as exc:
            raise DecodeError(f"{what}: malformed row: {exc}") from exc

    def view(self, design: str, name: str) -> View:
        """Get a view by design document and view name."""
        return View(self._transport, self, design, name)

    def __repr__(self):
        return f"Database(name='{self._name}')"


class HttpTransport:
    """HTTP transport layer for CouchDB API calls. Never retries."""

    def __init__(
        self,
        base_url: str,
        timeout: Optional[float] = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._session = session if session is not None else requests.Session()
        self._session.headers.update({"Accept": "application/json"})
        self._timeout = timeout

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def timeout(self) -> Optional[float]:
        return self._timeout

    def url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> requests.Response:
        """Issue one request and return the raw response, whatever its status."""
        url = self.url(path)
        logger.debug("%s %s", method, url)
        try:
            return self._session.request(
                method,
                url,
                params=params,
                headers=headers,
                json=body,
                timeout=self._timeout,
            )
        except (
            requests.exceptions.MissingSchema,
            requests.exceptions.InvalidSchema,
            requests.exceptions.InvalidURL,
            requests.exceptions.InvalidHeader,
        ) as exc:
            raise RequestError(f"{method} {url}: cannot create request: {exc}") from exc
        except requests.Timeout as exc:
            raise ConnectionError(
                f"{method} {url}: request timed out after {self._timeout}s"
            ) from exc
        except (
            requests.exceptions.ChunkedEncodingError,
            requests.exceptions.ContentDecodingError,
        ) as exc:
            raise ResponseBodyError(
                f"{method} {url}: cannot read response body: {exc}"
            ) from exc
        except requests.RequestException as exc:
            raise ConnectionError(f"{method} {url}: {exc}") from exc

    def status_error(self, resp: requests.Response, method: str, path: str) -> HTTPStatusError:
        """Build the error for an unexpected response status."""
        cls = ConflictError if resp.status_code == 409 else HTTPStatusError
        url = self.url(path)
        logger.debug("%s %s failed with status %s", method, url, resp.status_code)
        return cls(resp.status_code, resp.reason or "", method, url)

    def close(self):
        """Close the HTTP session."""
        self._session.close()


class DivanClient:
    """
    Divan Client - entry point for database lifecycle operations.

    Usage:
        client = DivanClient("http://localhost:5984", timeout=10)
        db = client.get_or_create_database("tests")
        rev = db.insert("doc1", {"name": "a"})
    """

    def __init__(
        self,
        uri: str = "http://localhost:5984",
        timeout: Optional[float] = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self._transport = HttpTransport(uri, timeout, session)
        self._uri = self._transport.base_url

    @property
    def uri(self) -> str:
        return self._uri

    def get_database(self, name: str) -> Database:
        """Get an existing database. Raises :class:`NotFoundError` if it does not exist."""
        db = Database(self._transport, name)
        path = db._path()
        resp = self._transport.request("GET", path)
        if resp.status_code == 404:
            raise NotFoundError(f"database '{name}' doesn't exist")
        if resp.status_code != 200:
            raise self._transport.status_error(resp, "GET", path)
        return db

    def create_database(self, name: str) -> Database:
        """Create a database."""
        db = Database(self._transport, name)
        path = db._path()
        resp = self._transport.request("PUT", path)
        if resp.status_code != 201:
            raise self._transport.status_error(resp, "PUT", path)
        logger.info("Created database '%s' at %s", name, self._uri)
        return db

    def get_or_create_database(self, name: str) -> Database:
        """Get a database, creating it only if the server reports it missing."""
        try:
            return self.get_database(name)
        except NotFoundError:
            return self.create_database(name)

    def delete_database(self, database: Union[Database, str]) -> None:
        """Delete a database. A missing database is not an error."""
        if isinstance(database, Database):
            database = database.name
        path = Database(self._transport, database)._path()
        resp = self._transport.request("DELETE", path)
        if resp.status_code == 404:
            return
        if not 200 <= resp.status_code < 300:
            raise self._transport.status_error(resp, "DELETE", path)
        logger.info("Deleted database '%s' at %s", database, self._uri)

    def close(self):
        """Close the client connection."""
        self._transport.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def __repr__(self):
        return f"DivanClient(uri='{self._uri}')"
