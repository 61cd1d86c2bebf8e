"""Accounting system (ledger) client.

``LedgerClient`` is the collaborator protocol the workers program against;
``HttpLedgerClient`` talks to a Fiken-style v2 REST API with httpx.

All amounts crossing this boundary are integers in øre. Response payloads
are normalised to snake_case keys, so ``purchaseId`` becomes ``purchase_id``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Protocol

import httpx

from ledgerAgent.config.settings import LedgerSettings
from ledgerAgent.utils.error_handler import (
    CounterNotInitializedError,
    InvalidDateError,
    LedgerApiError,
    RateLimitError,
    StaleReferenceError,
)

LOGGER = logging.getLogger(__name__)


class LedgerClient(Protocol):
    """Operations the workers need from the accounting system."""

    # Contacts & products
    async def list_contacts(self, name: Optional[str] = None, customer: Optional[bool] = None, supplier: Optional[bool] = None) -> List[Dict[str, Any]]: ...
    async def get_contact(self, contact_id: int) -> Dict[str, Any]: ...
    async def create_contact(self, payload: Dict[str, Any]) -> Dict[str, Any]: ...
    async def update_contact(self, contact_id: int, payload: Dict[str, Any]) -> Dict[str, Any]: ...
    async def list_products(self, name: Optional[str] = None) -> List[Dict[str, Any]]: ...
    async def create_product(self, payload: Dict[str, Any]) -> Dict[str, Any]: ...

    # Sales documents
    async def list_invoices(self, customer_id: Optional[int] = None, date_from: Optional[str] = None, date_to: Optional[str] = None, settled: Optional[bool] = None) -> List[Dict[str, Any]]: ...
    async def get_invoice(self, invoice_id: int) -> Dict[str, Any]: ...
    async def create_invoice(self, payload: Dict[str, Any]) -> Dict[str, Any]: ...
    async def send_invoice(self, invoice_id: int, payload: Dict[str, Any]) -> Dict[str, Any]: ...
    async def create_credit_note(self, invoice_id: int, payload: Dict[str, Any]) -> Dict[str, Any]: ...
    async def create_partial_credit_note(self, payload: Dict[str, Any]) -> Dict[str, Any]: ...
    async def list_sales(self, date_from: Optional[str] = None, date_to: Optional[str] = None) -> List[Dict[str, Any]]: ...
    async def create_sale(self, payload: Dict[str, Any]) -> Dict[str, Any]: ...
    async def add_sale_payment(self, sale_id: int, payload: Dict[str, Any]) -> Dict[str, Any]: ...
    async def get_counter(self, kind: str) -> int: ...
    async def create_counter(self, kind: str, start: int) -> int: ...

    # Quotations
    async def list_offers(self, date_from: Optional[str] = None, date_to: Optional[str] = None) -> List[Dict[str, Any]]: ...
    async def create_offer(self, payload: Dict[str, Any]) -> Dict[str, Any]: ...

    # Purchases
    async def list_purchases(self, date_from: Optional[str] = None, date_to: Optional[str] = None) -> List[Dict[str, Any]]: ...
    async def get_purchase(self, purchase_id: int) -> Dict[str, Any]: ...
    async def create_purchase(self, payload: Dict[str, Any]) -> Dict[str, Any]: ...
    async def add_purchase_payment(self, purchase_id: int, payload: Dict[str, Any]) -> Dict[str, Any]: ...

    # Banking & general ledger
    async def list_bank_accounts(self) -> List[Dict[str, Any]]: ...
    async def list_bank_balances(self, date: Optional[str] = None) -> List[Dict[str, Any]]: ...
    async def list_accounts(self, from_account: Optional[int] = None, to_account: Optional[int] = None) -> List[Dict[str, Any]]: ...
    async def list_journal_entries(self, date_from: Optional[str] = None, date_to: Optional[str] = None) -> List[Dict[str, Any]]: ...
    async def create_journal_entry(self, payload: Dict[str, Any]) -> Dict[str, Any]: ...
    async def reverse_transaction(self, transaction_id: int, description: str) -> Dict[str, Any]: ...
    async def create_project(self, payload: Dict[str, Any]) -> Dict[str, Any]: ...

    # Attachments
    async def list_attachments(self, entity_type: str, entity_id: int) -> List[Dict[str, Any]]: ...
    async def add_attachment(self, entity_type: str, entity_id: int, filename: str, media_type: str, content: bytes) -> Dict[str, Any]: ...


# ========== Key normalisation ==========

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def snake_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {to_snake(str(k)): snake_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [snake_keys(v) for v in value]
    return value


def camel_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {to_camel(str(k)): camel_keys(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [camel_keys(v) for v in value]
    return value


def _strip_html(text: str) -> str:
    text = re.sub(r"<br\s*/?>", " ", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]*>", "", text)
    return re.sub(r"\s+", " ", text).strip()


# Entity path segments that accept attachments
ATTACHMENT_PATHS = {
    "purchase": "purchases",
    "invoice": "invoices",
    "sale": "sales",
    "offer": "offers",
    "journal_entry": "journalEntries",
    "contact": "contacts",
}

COUNTER_PATHS = {
    "invoice": "invoices/counter",
    "credit_note": "creditNotes/counter",
    "offer": "offers/counter",
    "order_confirmation": "orderConfirmations/counter",
}


class HttpLedgerClient:
    """httpx implementation of ``LedgerClient`` for a company-scoped REST API.

    Rate limits (HTTP 429) and transport hiccups are retried with
    exponential backoff; every other failure is mapped onto the
    error taxonomy in ``ledgerAgent.utils.error_handler``.
    """

    def __init__(
        self,
        settings: LedgerSettings,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if not settings.company_slug:
            raise ValueError("LEDGER_COMPANY is not configured")
        self.settings = settings
        self.company = settings.company_slug
        headers = {"Accept": "application/json"}
        if settings.access_token:
            headers["Authorization"] = f"Bearer {settings.access_token}"
        self._http = http_client or httpx.AsyncClient(
            base_url=settings.base_url,
            headers=headers,
            timeout=settings.timeout_seconds,
        )
        if http_client is not None and settings.access_token:
            self._http.headers.update(headers)

    async def __aenter__(self) -> "HttpLedgerClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ========== Core request handling ==========

    def _path(self, endpoint: str) -> str:
        return f"/companies/{self.company}/{endpoint.lstrip('/')}"

    async def _send(self, method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        max_retries = self.settings.max_retries
        last_error: Optional[Exception] = None

        for attempt in range(max_retries + 1):
            try:
                response = await self._http.request(method, self._path(endpoint), **kwargs)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_error = e
                if attempt >= max_retries:
                    raise LedgerApiError(
                        f"{method} {endpoint} failed: {e}",
                        "Fikk ikke kontakt med regnskapssystemet.",
                    ) from e
                delay = self.settings.backoff_seconds * (2 ** attempt)
                LOGGER.warning(f"{method} {endpoint}: transport error, retry {attempt + 1}/{max_retries} in {delay:.1f}s")
                await asyncio.sleep(delay)
                continue

            if response.status_code == 429:
                retry_after = _retry_after(response)
                last_error = RateLimitError(f"{method} {endpoint} rate limited", retry_after=retry_after)
                if attempt >= max_retries:
                    raise last_error
                delay = retry_after if retry_after is not None else self.settings.backoff_seconds * (2 ** attempt)
                LOGGER.warning(f"{method} {endpoint}: 429, retry {attempt + 1}/{max_retries} in {delay:.1f}s")
                await asyncio.sleep(delay)
                continue

            if response.is_error:
                raise _classify_error(response, endpoint)
            return response

        # Unreachable: the loop either returns or raises
        raise last_error or LedgerApiError(f"{method} {endpoint} failed")

    async def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        clean = {to_camel(k): v for k, v in (params or {}).items() if v is not None and v != ""}
        response = await self._send("GET", endpoint, params=clean)
        if not response.content:
            return {}
        return snake_keys(response.json())

    async def _get_all(self, endpoint: str, params: Optional[Dict[str, Any]] = None, page_size: int = 100, max_pages: int = 10) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        for page in range(max_pages):
            batch = await self._get(endpoint, {**(params or {}), "page": page, "page_size": page_size})
            if not isinstance(batch, list):
                break
            items.extend(batch)
            if len(batch) < page_size:
                break
        return items

    async def _create(self, endpoint: str, payload: Dict[str, Any], entity: str) -> Dict[str, Any]:
        response = await self._send("POST", endpoint, json=camel_keys(payload))
        return self._created(response, entity)

    def _created(self, response: httpx.Response, entity: str) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        if response.content:
            try:
                parsed = response.json()
                if isinstance(parsed, dict):
                    body = snake_keys(parsed)
            except ValueError:
                body = {}
        key = f"{entity}_id"
        if key not in body:
            location = response.headers.get("Location", "")
            tail = location.rstrip("/").rsplit("/", 1)[-1] if location else ""
            if tail.isdigit():
                body[key] = int(tail)
        return body

    # ========== Contacts & products ==========

    async def list_contacts(self, name=None, customer=None, supplier=None):
        return await self._get_all("contacts", {"name": name, "customer": customer, "supplier": supplier})

    async def get_contact(self, contact_id):
        return await self._get(f"contacts/{contact_id}")

    async def create_contact(self, payload):
        return await self._create("contacts", payload, "contact")

    async def update_contact(self, contact_id, payload):
        await self._send("PUT", f"contacts/{contact_id}", json=camel_keys(payload))
        return {"contact_id": contact_id}

    async def list_products(self, name=None):
        return await self._get_all("products", {"name": name})

    async def create_product(self, payload):
        return await self._create("products", payload, "product")

    # ========== Sales documents ==========

    async def list_invoices(self, customer_id=None, date_from=None, date_to=None, settled=None):
        return await self._get_all("invoices", {
            "customer_id": customer_id, "issue_date_ge": date_from, "issue_date_le": date_to, "settled": settled,
        })

    async def get_invoice(self, invoice_id):
        return await self._get(f"invoices/{invoice_id}")

    async def create_invoice(self, payload):
        return await self._create("invoices", payload, "invoice")

    async def send_invoice(self, invoice_id, payload):
        await self._send("POST", "invoices/send", json=camel_keys({"invoice_id": invoice_id, **payload}))
        return {"invoice_id": invoice_id}

    async def create_credit_note(self, invoice_id, payload):
        return await self._create("creditNotes/full", {"invoice_id": invoice_id, **payload}, "credit_note")

    async def create_partial_credit_note(self, payload):
        return await self._create("creditNotes/partial", payload, "credit_note")

    async def list_sales(self, date_from=None, date_to=None):
        return await self._get_all("sales", {"date_ge": date_from, "date_le": date_to})

    async def create_sale(self, payload):
        return await self._create("sales", payload, "sale")

    async def add_sale_payment(self, sale_id, payload):
        return await self._create(f"sales/{sale_id}/payments", payload, "payment")

    async def get_counter(self, kind):
        try:
            data = await self._get(COUNTER_PATHS[kind])
        except StaleReferenceError as e:
            raise CounterNotInitializedError(f"{kind} counter missing: {e}", kind=kind) from e
        value = data.get("value") if isinstance(data, dict) else None
        if value is None:
            raise CounterNotInitializedError(f"{kind} counter has no value", kind=kind)
        return int(value)

    async def create_counter(self, kind, start):
        await self._send("POST", COUNTER_PATHS[kind], json={"value": start})
        return start

    # ========== Quotations ==========

    async def list_offers(self, date_from=None, date_to=None):
        return await self._get_all("offers", {"date_ge": date_from, "date_le": date_to})

    async def create_offer(self, payload):
        return await self._create("offers/drafts", payload, "offer")

    # ========== Purchases ==========

    async def list_purchases(self, date_from=None, date_to=None):
        return await self._get_all("purchases", {"date_ge": date_from, "date_le": date_to})

    async def get_purchase(self, purchase_id):
        return await self._get(f"purchases/{purchase_id}")

    async def create_purchase(self, payload):
        return await self._create("purchases", payload, "purchase")

    async def add_purchase_payment(self, purchase_id, payload):
        return await self._create(f"purchases/{purchase_id}/payments", payload, "payment")

    # ========== Banking & general ledger ==========

    async def list_bank_accounts(self):
        accounts = await self._get_all("bankAccounts")
        return [a for a in accounts if not a.get("inactive")]

    async def list_bank_balances(self, date=None):
        return await self._get_all("bankBalances", {"date": date})

    async def list_accounts(self, from_account=None, to_account=None):
        return await self._get_all("accounts", {"from_account": from_account, "to_account": to_account})

    async def list_journal_entries(self, date_from=None, date_to=None):
        return await self._get_all("journalEntries", {"date_ge": date_from, "date_le": date_to})

    async def create_journal_entry(self, payload):
        return await self._create("generalJournalEntries", payload, "journal_entry")

    async def reverse_transaction(self, transaction_id, description):
        await self._send("DELETE", f"transactions/{transaction_id}", params={"description": description})
        return {"transaction_id": transaction_id, "reversed": True}

    async def create_project(self, payload):
        return await self._create("projects", payload, "project")

    # ========== Attachments ==========

    async def list_attachments(self, entity_type, entity_id):
        data = await self._get(f"{ATTACHMENT_PATHS[entity_type]}/{entity_id}/attachments")
        return data if isinstance(data, list) else []

    async def add_attachment(self, entity_type, entity_id, filename, media_type, content):
        response = await self._send(
            "POST",
            f"{ATTACHMENT_PATHS[entity_type]}/{entity_id}/attachments",
            data={"filename": filename, "attachToPayment": "false", "attachToSale": "true"},
            files={"file": (filename, content, media_type)},
        )
        return {"entity_type": entity_type, "entity_id": entity_id, "filename": filename, "status": response.status_code}


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _error_text(response: httpx.Response) -> tuple:
    """(message, offending field) from an error response body."""
    try:
        data = response.json()
    except ValueError:
        return _strip_html(response.text or response.reason_phrase or ""), None

    if isinstance(data, list):
        return "; ".join(_strip_html(str(e.get("message", e)) if isinstance(e, dict) else str(e)) for e in data), None

    message = ""
    for key in ("error_description", "message", "error"):
        if data.get(key):
            message = _strip_html(str(data[key]))
            break
    field = None
    errors = data.get("errors") or []
    if errors:
        field = to_snake(str(errors[0].get("field", ""))) or None
        details = "; ".join(f"'{e.get('field')}': {_strip_html(str(e.get('message', '')))}" for e in errors)
        message = f"{message}. {details}" if message else details
    return message or "Ukjent feil", field


def _classify_error(response: httpx.Response, endpoint: str) -> LedgerApiError:
    status = response.status_code
    message, field = _error_text(response)
    technical = f"{response.request.method} {endpoint} -> {status}: {message}"
    lowered = message.lower()

    if any(word in lowered for word in ("counter", "teller", "nummerserie")):
        kind = next((k for k, p in COUNTER_PATHS.items() if endpoint.startswith(p.split("/")[0])), "invoice")
        return CounterNotInitializedError(technical, kind=kind, status=status)
    if status in (400, 422) and (("dato" in lowered or "date" in lowered) or (field and "date" in field)):
        return InvalidDateError(technical, field=field or "date", status=status)
    if status == 404:
        return StaleReferenceError(technical, field=field, status=status)
    return LedgerApiError(technical, status=status, code=field)
