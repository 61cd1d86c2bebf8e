"""Test doubles: an in-memory ledger and scripted chat models."""

from __future__ import annotations

import inspect
import itertools
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from langchain_core.messages import AIMessage, BaseMessage, SystemMessage

from ledgerAgent.utils.error_handler import CounterNotInitializedError, StaleReferenceError
from ledgerAgent.utils.message_utils import stringify_content


# ========== Ledger ==========

class InMemoryLedger:
    """``LedgerClient`` backed by dictionaries; records every write in ``calls``."""

    def __init__(
        self,
        bank_accounts: Optional[List[Dict[str, Any]]] = None,
        journal_entries: Optional[List[Dict[str, Any]]] = None,
        contacts: Optional[List[Dict[str, Any]]] = None,
        counters: Optional[Dict[str, int]] = None,
    ):
        self._ids = itertools.count(1)
        self.bank_accounts = bank_accounts if bank_accounts is not None else [
            {"name": "Driftskonto", "account_code": "1920:10001", "bank_account_number": "12345678903", "balance": 5000000},
        ]
        self.journal_entries: List[Dict[str, Any]] = list(journal_entries or [])
        self.contacts: Dict[int, Dict[str, Any]] = {}
        for contact in contacts or []:
            self.contacts[contact["contact_id"]] = dict(contact)
        self.counters: Dict[str, int] = dict(counters or {})
        self.purchases: Dict[int, Dict[str, Any]] = {}
        self.invoices: Dict[int, Dict[str, Any]] = {}
        self.sales: Dict[int, Dict[str, Any]] = {}
        self.offers: Dict[int, Dict[str, Any]] = {}
        self.products: Dict[int, Dict[str, Any]] = {}
        self.projects: Dict[int, Dict[str, Any]] = {}
        self.attachments: Dict[Tuple[str, int], List[Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, Any]] = []

    def _next_id(self) -> int:
        return next(self._ids)

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    # ========== Contacts & products ==========

    async def list_contacts(self, name=None, customer=None, supplier=None):
        found = list(self.contacts.values())
        if name:
            found = [c for c in found if name.lower() in str(c.get("name", "")).lower()]
        if customer is not None:
            found = [c for c in found if bool(c.get("customer")) == customer]
        if supplier is not None:
            found = [c for c in found if bool(c.get("supplier")) == supplier]
        return found

    async def get_contact(self, contact_id):
        if contact_id not in self.contacts:
            raise StaleReferenceError(f"contact {contact_id} not found", field="contact_id")
        return dict(self.contacts[contact_id])

    async def create_contact(self, payload):
        contact_id = self._next_id()
        self.contacts[contact_id] = {**payload, "contact_id": contact_id}
        self.calls.append(("create_contact", payload))
        return {"contact_id": contact_id}

    async def update_contact(self, contact_id, payload):
        self.contacts[contact_id] = {**self.contacts.get(contact_id, {}), **payload, "contact_id": contact_id}
        self.calls.append(("update_contact", payload))
        return {"contact_id": contact_id}

    async def list_products(self, name=None):
        found = list(self.products.values())
        if name:
            found = [p for p in found if name.lower() in str(p.get("name", "")).lower()]
        return found

    async def create_product(self, payload):
        product_id = self._next_id()
        self.products[product_id] = {**payload, "product_id": product_id}
        self.calls.append(("create_product", payload))
        return {"product_id": product_id}

    # ========== Sales documents ==========

    async def list_invoices(self, customer_id=None, date_from=None, date_to=None, settled=None):
        return [i for i in self.invoices.values() if customer_id is None or i.get("customer_id") == customer_id]

    async def get_invoice(self, invoice_id):
        return dict(self.invoices[invoice_id])

    async def create_invoice(self, payload):
        if "invoice" not in self.counters:
            raise CounterNotInitializedError("invoice counter missing", kind="invoice")
        invoice_id = self._next_id()
        number = self.counters["invoice"]
        self.counters["invoice"] += 1
        self.invoices[invoice_id] = {**payload, "invoice_id": invoice_id, "invoice_number": number}
        self.calls.append(("create_invoice", payload))
        return {"invoice_id": invoice_id, "invoice_number": number}

    async def send_invoice(self, invoice_id, payload):
        self.calls.append(("send_invoice", {"invoice_id": invoice_id, **payload}))
        return {}

    async def create_credit_note(self, invoice_id, payload):
        if "credit_note" not in self.counters:
            raise CounterNotInitializedError("credit note counter missing", kind="credit_note")
        credit_note_id = self._next_id()
        self.counters["credit_note"] += 1
        self.calls.append(("create_credit_note", {"invoice_id": invoice_id, **payload}))
        return {"credit_note_id": credit_note_id}

    async def create_partial_credit_note(self, payload):
        if "credit_note" not in self.counters:
            raise CounterNotInitializedError("credit note counter missing", kind="credit_note")
        credit_note_id = self._next_id()
        self.counters["credit_note"] += 1
        self.calls.append(("create_partial_credit_note", payload))
        return {"credit_note_id": credit_note_id}

    async def list_sales(self, date_from=None, date_to=None):
        return list(self.sales.values())

    async def create_sale(self, payload):
        sale_id = self._next_id()
        self.sales[sale_id] = {**payload, "sale_id": sale_id}
        self.calls.append(("create_sale", payload))
        return {"sale_id": sale_id}

    async def add_sale_payment(self, sale_id, payload):
        if sale_id not in self.sales:
            raise StaleReferenceError(f"sale {sale_id} not found", field="sale_id")
        payment_id = self._next_id()
        self.calls.append(("add_sale_payment", {"sale_id": sale_id, **payload}))
        return {"payment_id": payment_id}

    async def get_counter(self, kind):
        if kind not in self.counters:
            raise CounterNotInitializedError(f"{kind} counter missing", kind=kind)
        return self.counters[kind]

    async def create_counter(self, kind, start):
        self.counters[kind] = start
        self.calls.append(("create_counter", {"kind": kind, "start": start}))
        return start

    # ========== Quotations ==========

    async def list_offers(self, date_from=None, date_to=None):
        return list(self.offers.values())

    async def create_offer(self, payload):
        if "offer" not in self.counters:
            raise CounterNotInitializedError("offer counter missing", kind="offer")
        offer_id = self._next_id()
        self.offers[offer_id] = {**payload, "offer_id": offer_id}
        self.calls.append(("create_offer", payload))
        return {"offer_id": offer_id}

    # ========== Purchases ==========

    async def list_purchases(self, date_from=None, date_to=None):
        found = list(self.purchases.values())
        if date_from:
            found = [p for p in found if p.get("date", "") >= date_from]
        if date_to:
            found = [p for p in found if p.get("date", "") <= date_to]
        return found

    async def get_purchase(self, purchase_id):
        if purchase_id not in self.purchases:
            raise StaleReferenceError(f"purchase {purchase_id} not found", field="purchase_id")
        return dict(self.purchases[purchase_id])

    async def create_purchase(self, payload):
        purchase_id = self._next_id()
        self.purchases[purchase_id] = {**payload, "purchase_id": purchase_id}
        self.calls.append(("create_purchase", payload))
        return {"purchase_id": purchase_id}

    async def add_purchase_payment(self, purchase_id, payload):
        payment_id = self._next_id()
        self.calls.append(("add_purchase_payment", {"purchase_id": purchase_id, **payload}))
        return {"payment_id": payment_id}

    # ========== Bank & general ledger ==========

    async def list_bank_accounts(self):
        return list(self.bank_accounts)

    async def list_bank_balances(self, date=None):
        return [{"name": a["name"], "balance": a.get("balance", 0)} for a in self.bank_accounts]

    async def list_accounts(self, from_account=None, to_account=None):
        return []

    async def list_journal_entries(self, date_from=None, date_to=None):
        found = list(self.journal_entries)
        if date_from:
            found = [e for e in found if e.get("date", "") >= date_from]
        if date_to:
            found = [e for e in found if e.get("date", "") <= date_to]
        return found

    async def create_journal_entry(self, payload):
        entry_id = self._next_id()
        entry = payload["journal_entries"][0]
        self.journal_entries.append({**entry, "journal_entry_id": entry_id, "transaction_id": entry_id})
        self.calls.append(("create_journal_entry", payload))
        return {"journal_entry_id": entry_id, "transaction_id": entry_id}

    async def reverse_transaction(self, transaction_id, description):
        self.calls.append(("reverse_transaction", {"transaction_id": transaction_id, "description": description}))
        return {}

    async def create_project(self, payload):
        project_id = self._next_id()
        self.projects[project_id] = {**payload, "project_id": project_id}
        self.calls.append(("create_project", payload))
        return {"project_id": project_id}

    # ========== Attachments ==========

    async def list_attachments(self, entity_type, entity_id):
        return list(self.attachments.get((entity_type, int(entity_id)), []))

    async def add_attachment(self, entity_type, entity_id, filename, media_type, content):
        self.attachments.setdefault((entity_type, int(entity_id)), []).append({"filename": filename, "size": len(content)})
        self.calls.append(("add_attachment", {"entity_type": entity_type, "entity_id": entity_id, "filename": filename}))
        return {}


# ========== Chat models ==========

# Markers found in the rendered system prompts
COORDINATOR_MARKER = "regnskapsassistenten brukeren snakker med"
PURCHASE_MARKER = "Kjøpsspesialist"
INVOICE_MARKER = "Fakturaspesialist"
CONTACT_MARKER = "Kontaktspesialist"

Step = Union[AIMessage, Callable[[List[BaseMessage]], Any]]


def tool_call(name: str, args: Dict[str, Any], call_id: str) -> Dict[str, Any]:
    return {"name": name, "args": args, "id": call_id, "type": "tool_call"}


def calls(*items: Tuple[str, Dict[str, Any]], prefix: str = "call") -> AIMessage:
    """AIMessage requesting the given (name, args) tool calls."""
    return AIMessage(content="", tool_calls=[tool_call(name, args, f"{prefix}_{i}") for i, (name, args) in enumerate(items, 1)])


class ScriptedChatModel:
    """Returns scripted decisions in order; ``Ferdig.`` once the script runs out."""

    def __init__(self, steps: Sequence[Step] = (), default: str = "Ferdig."):
        self.steps: List[Step] = list(steps)
        self.default = default
        self.seen: List[List[BaseMessage]] = []
        self.bound_tools: List[List[str]] = []

    def bind_tools(self, tools):
        self.bound_tools.append([t.name for t in tools])
        return self

    async def ainvoke(self, messages, config=None):
        messages = list(messages)
        self.seen.append(messages)
        if not self.steps:
            return AIMessage(content=self.default)
        step = self.steps.pop(0)
        if not callable(step):
            return step
        result = step(messages)
        if inspect.isawaitable(result):
            result = await result
        return result


class RoutedChatModel:
    """Dispatches to a scripted model chosen by a marker in the system prompt."""

    def __init__(self, routes: Dict[str, ScriptedChatModel], default: Optional[ScriptedChatModel] = None):
        self.routes = routes
        self.default = default or ScriptedChatModel()
        self._bound: Optional[ScriptedChatModel] = None

    def _pick(self, messages: Sequence[BaseMessage]) -> ScriptedChatModel:
        system = next((m for m in messages if isinstance(m, SystemMessage)), None)
        text = stringify_content(system.content) if system is not None else ""
        for marker, model in self.routes.items():
            if marker in text:
                return model
        return self.default

    def bind_tools(self, tools):
        return _BoundRoute(self, tools)


class _BoundRoute:
    def __init__(self, router: RoutedChatModel, tools):
        self.router = router
        self.tools = list(tools)

    async def ainvoke(self, messages, config=None):
        model = self.router._pick(messages)
        model.bound_tools.append([t.name for t in self.tools])
        return await model.ainvoke(messages, config)
