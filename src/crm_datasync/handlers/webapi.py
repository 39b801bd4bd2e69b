"""
Web API Store - OData v4 entity service source and destination

===============================================================================
PROVENANCE TRACKING
===============================================================================
File: src/crm_datasync/handlers/webapi.py
Created: 2026-10-19
Author: CRM Datasync Contributors
Type: Core Implementation

Change History:
-------------------------------------------------------------------------------
Date        Author      Type    Description
-------------------------------------------------------------------------------
2026-10-19  maintainers CREATE  requests-based handler for the CRM Web API:
                                paged FetchXML queries, single-record CRUD,
                                native upsert, $batch with
                                continue-on-error, associations and
                                relationship metadata.
2026-10-19  maintainers MODIFY  Multipart/mixed $batch (OData 4.0), lookup
                                binding through navigation properties,
                                single-page queries for FetchXML with top.
-------------------------------------------------------------------------------

License: MIT

PROTOCOL NOTES:
- Entity set names and primary id attributes come from EntityDefinitions
  and are cached for the lifetime of the store.
- Update sends If-Match: * so it never creates; upsert omits it.
- Bulk requests are multipart/mixed batches, one application/http part per
  operation; results are matched by Content-ID, else by position.
- Lookups bind through the navigation property named in the entity's
  ManyToOneRelationships, cached per entity.
===============================================================================
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Type
from urllib.parse import unquote
import json
import logging
import re
import uuid
import xml.etree.ElementTree as ET

import requests
from requests.adapters import HTTPAdapter
from requests_toolbelt.multipart import decoder
from urllib3.util.retry import Retry

from ..errors import (
    DataSyncError,
    DestinationUnavailable,
    InvalidConfiguration,
    RecordOperationFault,
    RelationshipNotFound,
    SourceUnavailable,
)
from ..records import (
    BulkItemResult,
    EntityReference,
    Operation,
    OperationKind,
    Record,
    RelationshipDescriptor,
)
from .base import DestinationStore, QueryPage, SourceProvider

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000

LOOKUP_ANNOTATION = "@Microsoft.Dynamics.CRM.lookuplogicalname"
FORMATTED_ANNOTATION = "@OData.Community.Display.V1.FormattedValue"
MORE_RECORDS_ANNOTATION = "@Microsoft.Dynamics.CRM.morerecords"
PAGING_COOKIE_ANNOTATION = "@Microsoft.Dynamics.CRM.fetchxmlpagingcookie"
MANY_TO_MANY_TYPE = "#Microsoft.Dynamics.CRM.ManyToManyRelationshipMetadata"

_ENTITY_ID_RE = re.compile(r"\(([0-9a-fA-F-]{36})\)\s*$")


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class WebApiConfig:
    """Connection settings for a Web API endpoint"""
    url: str
    token: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    api_version: str = "9.2"
    timeout: int = 120
    max_retries: int = 3
    retry_backoff: float = 0.5
    verify_ssl: bool = True
    page_size: int = PAGE_SIZE

    @property
    def api_base(self) -> str:
        return f"{self.url.rstrip('/')}/api/data/v{self.api_version}"

    @classmethod
    def from_connection_string(cls, text: str) -> "WebApiConfig":
        """
        Parse a ``Key=Value;Key=Value`` connection string.

        Recognized keys (case-insensitive): Url, Token, Username, Password,
        ApiVersion, Timeout, MaxRetries, VerifySsl.

        Raises:
            InvalidConfiguration: If Url is missing or a value is malformed
        """
        values: Dict[str, str] = {}
        for part in text.split(";"):
            if not part.strip():
                continue
            if "=" not in part:
                raise InvalidConfiguration(f"Malformed connection string segment: '{part.strip()}'")
            key, value = part.split("=", 1)
            values[key.strip().lower()] = value.strip()

        url = values.get("url")
        if not url:
            raise InvalidConfiguration("Connection string has no Url")

        try:
            return cls(
                url=url,
                token=values.get("token") or None,
                username=values.get("username") or None,
                password=values.get("password") or None,
                api_version=values.get("apiversion", "9.2"),
                timeout=int(values.get("timeout", 120)),
                max_retries=int(values.get("maxretries", 3)),
                verify_ssl=values.get("verifyssl", "true").lower() != "false",
            )
        except ValueError as e:
            raise InvalidConfiguration(f"Invalid connection string value: {e}")


@dataclass(frozen=True)
class EntityInfo:
    """Resolved entity metadata"""
    logical_name: str
    entity_set: str
    primary_id: str


@dataclass
class BatchResponsePart:
    """One HTTP response carried in a multipart batch response"""
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    content_id: Optional[str] = None

    @classmethod
    def from_http(cls, raw: bytes, content_id: Optional[str] = None) -> "BatchResponsePart":
        """
        Parse an embedded ``HTTP/1.1 <status> <reason>`` message.

        Raises:
            ValueError: If the status line is malformed
        """
        text = raw.decode("utf-8").replace("\r\n", "\n")
        head, _, body_text = text.lstrip("\n").partition("\n\n")
        lines = head.split("\n")

        status_line = lines[0].split(" ", 2)
        if len(status_line) < 2 or not status_line[0].startswith("HTTP/"):
            raise ValueError(f"Not an HTTP response: '{lines[0]}'")

        headers: Dict[str, str] = {}
        for line in lines[1:]:
            key, sep, value = line.partition(":")
            if sep:
                headers[key.strip()] = value.strip()

        body_text = body_text.strip()
        body: Any = None
        if body_text:
            try:
                body = json.loads(body_text)
            except ValueError:
                body = body_text
        return cls(status=int(status_line[1]), headers=headers, body=body, content_id=content_id)


# =============================================================================
# Web API Store
# =============================================================================

class WebApiStore(DestinationStore):
    """
    Store handler for an OData v4 CRM Web API.

    One requests.Session is shared by all calls of a run; it is not meant
    to be shared between concurrent runs.
    """

    def __init__(self, config: WebApiConfig, name: str = ""):
        super().__init__(name=name or config.url)
        self.config = config
        self._session: Optional[requests.Session] = None
        self._entities: Dict[str, EntityInfo] = {}
        self._navigation: Dict[str, Dict[Tuple[str, str], str]] = {}

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    def _create_session(self) -> requests.Session:
        """Create requests session with retry logic"""
        session = requests.Session()

        # Retry's default allowed methods exclude POST and PATCH
        retry_strategy = Retry(
            total=self.config.max_retries,
            backoff_factor=self.config.retry_backoff,
            status_forcelist=[429, 500, 502, 503, 504],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        session.headers.update({
            "Accept": "application/json",
            "OData-MaxVersion": "4.0",
            "OData-Version": "4.0",
            "Content-Type": "application/json; charset=utf-8",
        })

        if self.config.token:
            session.headers["Authorization"] = f"Bearer {self.config.token}"
        elif self.config.username:
            session.auth = (self.config.username, self.config.password or "")

        session.verify = self.config.verify_ssl
        return session

    def connect(self) -> None:
        """
        Open the session and verify the endpoint answers.

        Raises:
            DestinationUnavailable: If the service cannot be reached
        """
        self._session = self._create_session()
        response = self._request("GET", "WhoAmI")
        if response.status_code != 200:
            message = self._error_message(response)
            self.disconnect()
            raise DestinationUnavailable(f"Cannot connect to {self.config.url}: {message}")
        super().connect()
        logger.info(f"Connected to {self.config.url}")

    def disconnect(self) -> None:
        """Close the session"""
        if self._session is not None:
            self._session.close()
        self._session = None
        super().disconnect()

    def _request(self, method: str, path: str,
                 unavailable: Type[DataSyncError] = DestinationUnavailable,
                 **kwargs) -> requests.Response:
        """Issue one HTTP request relative to the API base URL"""
        if self._session is None:
            raise unavailable(f"{self.name} is not connected")

        url = f"{self.config.api_base}/{path}"
        try:
            return self._session.request(method, url, timeout=self.config.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise unavailable(f"Request to {url} failed: {e}")

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        """Extract the OData error message from a response"""
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            return body["error"].get("message") or str(body["error"])
        text = (response.text or "").strip()
        return text or f"HTTP {response.status_code} {response.reason or ''}".strip()

    # -------------------------------------------------------------------------
    # Metadata
    # -------------------------------------------------------------------------

    def entity_info(self, logical_name: str,
                    unavailable: Type[DataSyncError] = DestinationUnavailable) -> EntityInfo:
        """
        Resolve the entity set name and primary id attribute of an entity.

        Raises:
            RecordOperationFault: If the entity is unknown to the service
            DataSyncError: ``unavailable`` if the service cannot be reached
        """
        if logical_name in self._entities:
            return self._entities[logical_name]

        response = self._request(
            "GET",
            f"EntityDefinitions(LogicalName='{logical_name}')",
            unavailable=unavailable,
            params={"$select": "LogicalName,EntitySetName,PrimaryIdAttribute"},
        )
        if response.status_code != 200:
            raise RecordOperationFault(
                f"Unknown entity '{logical_name}': {self._error_message(response)}",
                logical_name=logical_name,
                status_code=response.status_code,
            )

        body = response.json()
        info = EntityInfo(
            logical_name=logical_name,
            entity_set=body["EntitySetName"],
            primary_id=body["PrimaryIdAttribute"],
        )
        self._entities[logical_name] = info
        return info

    def navigation_property(self, logical_name: str, attribute: str, target: str) -> str:
        """
        Resolve the single-valued navigation property that binds a lookup.

        Polymorphic lookups have one navigation property per target entity
        (``parentcustomerid_account``, ``parentcustomerid_contact``) and
        custom lookups use schema-name casing, so the attribute name alone
        cannot be bound.

        Raises:
            RecordOperationFault: If the entity has no such lookup
        """
        if logical_name not in self._navigation:
            response = self._request(
                "GET",
                f"EntityDefinitions(LogicalName='{logical_name}')/ManyToOneRelationships",
                params={
                    "$select": "ReferencingAttribute,ReferencedEntity,"
                               "ReferencingEntityNavigationPropertyName",
                },
            )
            if response.status_code != 200:
                raise RecordOperationFault(
                    f"Cannot read lookups of '{logical_name}': {self._error_message(response)}",
                    logical_name=logical_name,
                    status_code=response.status_code,
                )
            self._navigation[logical_name] = {
                (item["ReferencingAttribute"], item["ReferencedEntity"]):
                    item["ReferencingEntityNavigationPropertyName"]
                for item in response.json().get("value", [])
            }

        try:
            return self._navigation[logical_name][(attribute, target)]
        except KeyError:
            raise RecordOperationFault(
                f"'{logical_name}.{attribute}' is not a lookup to '{target}'",
                logical_name=logical_name,
            )

    def get_relationship_metadata(self, name: str) -> RelationshipDescriptor:
        """Look up a many-to-many relationship by schema name"""
        response = self._request("GET", f"RelationshipDefinitions(SchemaName='{name}')")
        if response.status_code == 404:
            raise RelationshipNotFound(name, self._error_message(response))
        if response.status_code != 200:
            raise DestinationUnavailable(
                f"Relationship lookup for '{name}' failed: {self._error_message(response)}"
            )

        body = response.json()
        is_many_to_many = (
            body.get("@odata.type") == MANY_TO_MANY_TYPE
            or body.get("RelationshipType") == "ManyToManyRelationship"
        )
        if not is_many_to_many:
            raise RelationshipNotFound(name, "relationship is not many-to-many")

        return RelationshipDescriptor(
            schema_name=body["SchemaName"],
            entity1_logical_name=body["Entity1LogicalName"],
            entity1_intersect_attribute=body["Entity1IntersectAttribute"],
            entity2_logical_name=body["Entity2LogicalName"],
            entity2_intersect_attribute=body["Entity2IntersectAttribute"],
            intersect_entity_name=body.get("IntersectEntityName", ""),
        )

    # -------------------------------------------------------------------------
    # Conversion
    # -------------------------------------------------------------------------

    def _record_path(self, logical_name: str, record_id: uuid.UUID) -> str:
        return f"{self.entity_info(logical_name).entity_set}({record_id})"

    def _to_payload(self, record: Record, include_id: bool) -> Dict[str, Any]:
        """Convert record attributes to a Web API request body"""
        primary_id = self.entity_info(record.logical_name).primary_id
        payload: Dict[str, Any] = {}

        for name, value in record.attributes.items():
            if name == primary_id:
                continue
            if isinstance(value, EntityReference):
                navigation = self.navigation_property(record.logical_name, name, value.logical_name)
                target = self.entity_info(value.logical_name).entity_set
                payload[f"{navigation}@odata.bind"] = f"/{target}({value.id})"
            elif isinstance(value, uuid.UUID):
                payload[name] = str(value)
            elif isinstance(value, (datetime, date)):
                payload[name] = value.isoformat()
            elif isinstance(value, Decimal):
                payload[name] = float(value)
            else:
                payload[name] = value

        if include_id:
            payload[primary_id] = str(record.id)
        return payload

    @staticmethod
    def _from_row(info: EntityInfo, row: Dict[str, Any]) -> Record:
        """Convert a Web API row to a record"""
        attributes: Dict[str, Any] = {}

        for key, value in row.items():
            if "@" in key:
                continue
            if key.startswith("_") and key.endswith("_value"):
                name = key[1:-len("_value")]
                target = row.get(f"{key}{LOOKUP_ANNOTATION}")
                if value is None:
                    attributes[name] = None
                elif target:
                    attributes[name] = EntityReference(
                        logical_name=target,
                        id=uuid.UUID(value),
                        name=row.get(f"{key}{FORMATTED_ANNOTATION}"),
                    )
                else:
                    attributes[name] = uuid.UUID(value)
                continue
            attributes[key] = value

        record_id = uuid.UUID(str(row[info.primary_id]))
        return Record(logical_name=info.logical_name, id=record_id, attributes=attributes)

    @staticmethod
    def _entity_id_from_header(response_headers: Dict[str, str], fallback: uuid.UUID) -> uuid.UUID:
        for key, value in response_headers.items():
            if key.lower() == "odata-entityid":
                match = _ENTITY_ID_RE.search(value)
                if match:
                    return uuid.UUID(match.group(1))
        return fallback

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def query_page(self, fetch_xml: str, page: int = 1,
                   paging_cookie: Optional[str] = None) -> QueryPage:
        """
        Execute one page of a FetchXML query.

        Raises:
            InvalidConfiguration: If the query is not valid FetchXML
            SourceUnavailable: If the service rejects the query
        """
        try:
            fetch = ET.fromstring(fetch_xml)
        except ET.ParseError as e:
            raise InvalidConfiguration(f"Query is not valid FetchXML: {e}")

        entity = fetch.find("entity")
        if fetch.tag != "fetch" or entity is None or not entity.get("name"):
            raise InvalidConfiguration("FetchXML query must contain <fetch><entity name=...>")

        # top cannot be combined with paging; such a query is a single page
        paged = not fetch.get("top")
        if paged:
            fetch.set("page", str(page))
            fetch.set("count", str(self.config.page_size))
            if paging_cookie:
                fetch.set("paging-cookie", paging_cookie)
        elif page > 1:
            raise InvalidConfiguration("FetchXML queries with top return a single page")

        try:
            info = self.entity_info(entity.get("name"), unavailable=SourceUnavailable)
        except RecordOperationFault as e:
            raise SourceUnavailable(str(e))

        response = self._request(
            "GET",
            info.entity_set,
            unavailable=SourceUnavailable,
            params={"fetchXml": ET.tostring(fetch, encoding="unicode")},
            headers={"Prefer": 'odata.include-annotations="*"'},
        )
        if response.status_code != 200:
            raise SourceUnavailable(f"Query failed: {self._error_message(response)}")

        body = response.json()
        records = [self._from_row(info, row) for row in body.get("value", [])]
        return QueryPage(
            records=records,
            more_records=paged and bool(body.get(MORE_RECORDS_ANNOTATION, False)),
            paging_cookie=self._parse_paging_cookie(body.get(PAGING_COOKIE_ANNOTATION)),
        )

    @staticmethod
    def _parse_paging_cookie(raw: Optional[str]) -> Optional[str]:
        """
        Extract the paging cookie from the response annotation.

        The annotation is a ``<cookie pagingcookie="..."/>`` element whose
        attribute is URL-encoded twice.
        """
        if not raw:
            return None
        try:
            element = ET.fromstring(raw)
        except ET.ParseError:
            return None
        cookie = element.get("pagingcookie")
        return unquote(unquote(cookie)) if cookie else None

    def query_all(self, fetch_xml: str) -> List[Record]:
        """Execute a FetchXML query, following paging cookies until the last page"""
        page = 1
        result = self.query_page(fetch_xml, page)
        records = list(result.records)

        while result.more_records:
            page += 1
            result = self.query_page(fetch_xml, page, result.paging_cookie)
            records.extend(result.records)

        logger.info(f"Query returned {len(records)} records in {page} page(s)")
        return records

    # -------------------------------------------------------------------------
    # Single-record operations
    # -------------------------------------------------------------------------

    @property
    def supports_upsert(self) -> bool:
        return True

    def _fault(self, record: Record, action: str, response: requests.Response) -> RecordOperationFault:
        return RecordOperationFault(
            f"{action} {record.logical_name} {record.id} failed: {self._error_message(response)}",
            logical_name=record.logical_name,
            record_id=record.id,
            status_code=response.status_code,
        )

    def retrieve(self, logical_name: str, record_id: uuid.UUID,
                 columns: Sequence[str] = ()) -> Optional[Record]:
        info = self.entity_info(logical_name)
        select = ",".join(columns) if columns else info.primary_id
        response = self._request(
            "GET",
            f"{info.entity_set}({record_id})",
            params={"$select": select},
            headers={"Prefer": 'odata.include-annotations="*"'},
        )
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise RecordOperationFault(
                f"Retrieve {logical_name} {record_id} failed: {self._error_message(response)}",
                logical_name=logical_name,
                record_id=record_id,
                status_code=response.status_code,
            )
        return self._from_row(info, response.json())

    def create(self, record: Record) -> uuid.UUID:
        info = self.entity_info(record.logical_name)
        response = self._request("POST", info.entity_set,
                                 json=self._to_payload(record, include_id=True))
        if response.status_code not in (200, 201, 204):
            raise self._fault(record, "Create", response)
        return self._entity_id_from_header(response.headers, record.id)

    def update(self, record: Record) -> None:
        response = self._request(
            "PATCH",
            self._record_path(record.logical_name, record.id),
            json=self._to_payload(record, include_id=False),
            headers={"If-Match": "*"},
        )
        if response.status_code not in (200, 204):
            raise self._fault(record, "Update", response)

    def upsert(self, record: Record) -> Tuple[uuid.UUID, bool]:
        response = self._request(
            "PATCH",
            self._record_path(record.logical_name, record.id),
            json=self._to_payload(record, include_id=False),
            headers={"Prefer": "return=representation"},
        )
        if response.status_code not in (200, 201, 204):
            raise self._fault(record, "Upsert", response)
        return record.id, response.status_code == 201

    def associate(self, logical_name: str, record_id: uuid.UUID,
                  relationship: str, related: Sequence[EntityReference]) -> None:
        path = f"{self._record_path(logical_name, record_id)}/{relationship}/$ref"
        for reference in related:
            target = f"{self.config.api_base}/{self._record_path(reference.logical_name, reference.id)}"
            response = self._request("POST", path, json={"@odata.id": target})
            if response.status_code not in (200, 204):
                raise RecordOperationFault(
                    f"Associate {logical_name} {record_id} -> {reference.logical_name} "
                    f"{reference.id} failed: {self._error_message(response)}",
                    logical_name=logical_name,
                    record_id=record_id,
                    status_code=response.status_code,
                )

    # -------------------------------------------------------------------------
    # Bulk execution
    # -------------------------------------------------------------------------

    def _batch_request(self, request_id: str, operation: Operation) -> Dict[str, Any]:
        """Describe one batch part for an operation"""
        record = operation.record
        kind = operation.kind
        base = self.config.api_base

        if kind == OperationKind.RETRIEVE:
            info = self.entity_info(record.logical_name)
            return {
                "id": request_id,
                "method": "GET",
                "url": f"{base}/{info.entity_set}({record.id})?$select={info.primary_id}",
                "headers": {"Accept": "application/json"},
            }
        if kind == OperationKind.CREATE:
            return {
                "id": request_id,
                "method": "POST",
                "url": f"{base}/{self.entity_info(record.logical_name).entity_set}",
                "headers": {"Content-Type": "application/json; type=entry"},
                "body": self._to_payload(record, include_id=True),
            }
        if kind in (OperationKind.UPDATE, OperationKind.UPSERT):
            headers = {"Content-Type": "application/json; type=entry"}
            if kind == OperationKind.UPDATE:
                headers["If-Match"] = "*"
            else:
                headers["Prefer"] = "return=representation"
            return {
                "id": request_id,
                "method": "PATCH",
                "url": f"{base}/{self._record_path(record.logical_name, record.id)}",
                "headers": headers,
                "body": self._to_payload(record, include_id=False),
            }
        if kind == OperationKind.ASSOCIATE:
            target, related = operation.target, operation.related
            return {
                "id": request_id,
                "method": "POST",
                "url": f"{base}/{self._record_path(target.logical_name, target.id)}/{operation.relationship}/$ref",
                "headers": {"Content-Type": "application/json"},
                "body": {
                    "@odata.id": f"{base}/{self._record_path(related.logical_name, related.id)}",
                },
            }
        raise ValueError(f"Unsupported operation kind: {kind}")

    @staticmethod
    def _build_batch_body(batch_requests: Sequence[Dict[str, Any]], boundary: str) -> str:
        """
        Build the multipart/mixed batch request body.

        Each operation is its own application/http part outside any change
        set, so one failing operation does not roll back the others.
        """
        body = []

        for request in batch_requests:
            body.append(f"--{boundary}")
            body.append("Content-Type: application/http")
            body.append("Content-Transfer-Encoding: binary")
            body.append(f"Content-ID: {request['id']}")
            body.append("")
            body.append(f"{request['method']} {request['url']} HTTP/1.1")
            for key, value in request.get("headers", {}).items():
                body.append(f"{key}: {value}")
            body.append("")
            body.append(json.dumps(request["body"]) if "body" in request else "")

        body.append(f"--{boundary}--")
        return "\r\n".join(body)

    def _parse_batch_response(self, response: requests.Response) -> List[BatchResponsePart]:
        """
        Decode a multipart batch response into its HTTP responses, in order.

        Raises:
            DestinationUnavailable: If the response is not a readable batch
        """
        content_type = response.headers.get("Content-Type", "")
        if "multipart/mixed" not in content_type:
            raise DestinationUnavailable(f"Expected multipart/mixed batch response, got: {content_type}")

        try:
            return list(self._decode_parts(response.content, content_type))
        except (decoder.ImproperBodyPartContentException,
                decoder.NonMultipartContentTypeException,
                UnicodeDecodeError, ValueError, IndexError) as e:
            raise DestinationUnavailable(f"Malformed batch response: {e}")

    @classmethod
    def _decode_parts(cls, content: bytes, content_type: str) -> Iterator[BatchResponsePart]:
        for part in decoder.MultipartDecoder(content, content_type).parts:
            part_type = part.headers.get(b"Content-Type", b"").decode("utf-8")
            if part_type.startswith("multipart/mixed"):
                # change set
                yield from cls._decode_parts(part.content, part_type)
                continue
            content_id = part.headers.get(b"Content-ID")
            yield BatchResponsePart.from_http(
                part.content,
                content_id.decode("utf-8").strip() if content_id else None,
            )

    def execute_bulk(self, operations: Sequence[Operation],
                     continue_on_error: bool = True) -> List[BulkItemResult]:
        """
        Submit operations as one multipart batch request.

        Operations that cannot even be built (e.g. unknown entity) fault
        immediately without being submitted. Responses are matched to
        operations by Content-ID when the server echoes it, else in order.

        Raises:
            DestinationUnavailable: If the batch request as a whole fails
        """
        results: List[Optional[BulkItemResult]] = [None] * len(operations)
        batch_requests = []
        positions: Dict[str, int] = {}

        for index, operation in enumerate(operations):
            request_id = str(index + 1)
            try:
                batch_requests.append(self._batch_request(request_id, operation))
                positions[request_id] = index
            except RecordOperationFault as e:
                results[index] = BulkItemResult(fault=e.message, status_code=e.status_code)

        if batch_requests:
            boundary = f"batch_{uuid.uuid4().hex}"
            headers = {
                "Content-Type": f"multipart/mixed; boundary={boundary}",
                "Accept": "multipart/mixed",
            }
            if continue_on_error:
                headers["Prefer"] = "odata.continue-on-error"

            response = self._request(
                "POST", "$batch",
                data=self._build_batch_body(batch_requests, boundary).encode("utf-8"),
                headers=headers,
            )
            if response.status_code != 200:
                raise DestinationUnavailable(
                    f"Bulk request failed: {self._error_message(response)}"
                )

            for part in self._parse_batch_response(response):
                index = positions.pop(part.content_id, None) if part.content_id else None
                if index is None:
                    if not positions:
                        break
                    index = positions.pop(next(iter(positions)))
                results[index] = self._batch_item_result(operations[index], part)

        return [
            r if r is not None else BulkItemResult(fault="Not executed: batch stopped after an earlier failure")
            for r in results
        ]

    def _batch_item_result(self, operation: Operation, part: BatchResponsePart) -> BulkItemResult:
        status = part.status
        body = part.body

        if 200 <= status < 300:
            response: Any = body
            if operation.kind == OperationKind.RETRIEVE and isinstance(body, dict):
                response = self._from_row(self.entity_info(operation.record.logical_name), body)
            elif operation.kind == OperationKind.CREATE:
                response = self._entity_id_from_header(part.headers, operation.record.id)
            return BulkItemResult(
                response=response if response is not None else {},
                status_code=status,
                created=operation.kind == OperationKind.CREATE or status == 201,
            )

        message = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            message = body["error"].get("message")
        elif isinstance(body, str) and body:
            message = body
        return BulkItemResult(fault=message or f"HTTP {status}", status_code=status)


# =============================================================================
# Web API Source
# =============================================================================

class WebApiSource(SourceProvider):
    """Reads the RecordSet produced by a FetchXML query"""

    def __init__(self, store: WebApiStore, query: str):
        super().__init__(name=store.name)
        self.store = store
        self.query = query

    def connect(self) -> None:
        try:
            self.store.connect()
        except DestinationUnavailable as e:
            raise SourceUnavailable(str(e))
        super().connect()

    def disconnect(self) -> None:
        self.store.disconnect()
        super().disconnect()

    def read_records(self) -> List[Record]:
        return self.store.query_all(self.query)
