"""Sales documents: invoices, full and partial credit notes, cash sales, sale payments and the invoice counter."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from ledgerAgent.accounting.rules import (
    format_amount,
    gross_to_net,
    is_valid_sales_vat_type,
    kroner_to_oere,
    net_to_gross,
)
from ledgerAgent.transcript.records import failure, success
from ledgerAgent.utils.error_handler import CounterNotInitializedError, MissingInformationError
from ledgerAgent.workers.actions import ActionContext, ActionSpec, initialize_counter, make_action
from ledgerAgent.workers.domains.common import as_dict, compact, require_date, upload_attachment_action

LOGGER = logging.getLogger(__name__)

INSTRUCTIONS = """
Du lager og følger opp salgsdokumenter: fakturaer, kreditnotaer og kontantsalg.

- En faktura krever kunde (customer_id). Finnes ikke kunden, deleger til contact_agent og bruk ID-en du får tilbake.
- Priser er eksklusive mva med mindre brukeren sier noe annet. Er det uklart, spør én gang.
- Fakturaer slettes aldri. Skal en faktura annulleres, lag en kreditnota. Gjelder det bare deler av fakturaen, bruk delvis kreditnota med linjene som krediteres.
- Innbetaling på et ubetalt salg registreres med add_sale_payment.
- Nummerserien settes opp automatisk første gang; du trenger ikke spørre om det.
- Sending av faktura er en egen handling og krever bekreftelse.
"""

DEFAULT_DUE_DAYS = 14


# ========== Argument schemas ==========

class SalesLine(BaseModel):
    description: str
    unit_price: float = Field(description="Pris per enhet i kroner")
    quantity: float = 1
    price_includes_vat: bool = Field(default=False, description="true når prisen er inklusive mva")
    vat_type: str = Field(default="HIGH", description="HIGH, MEDIUM, LOW, NONE, EXEMPT, OUTSIDE ...")
    income_account: str = Field(default="3000", description="Inntektskonto")
    product_id: Optional[int] = None


class CreateInvoiceArgs(BaseModel):
    customer_id: int = Field(description="Kundens kontakt-ID")
    lines: List[SalesLine]
    issue_date: Optional[str] = Field(default=None, description="Fakturadato, YYYY-MM-DD (standard i dag)")
    due_date: Optional[str] = Field(default=None, description="Forfallsdato (standard 14 dager)")
    bank_account: Optional[str] = Field(default=None, description="Bankkonto betaling skal til")
    our_reference: Optional[str] = None
    your_reference: Optional[str] = None
    project_id: Optional[int] = None


class SearchInvoicesArgs(BaseModel):
    customer_id: Optional[int] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    unpaid_only: bool = False


class InvoiceIdArgs(BaseModel):
    invoice_id: int


class SendInvoiceArgs(BaseModel):
    invoice_id: int
    method: str = Field(default="email", description="email eller ehf")
    recipient_email: Optional[str] = None


class CreateCreditNoteArgs(BaseModel):
    invoice_id: int = Field(description="Fakturaen som skal krediteres")
    issue_date: Optional[str] = None
    reason: Optional[str] = Field(default=None, description="Begrunnelse som vises på kreditnotaen")


class CreditLine(BaseModel):
    description: str
    unit_price: float = Field(description="Beløp per enhet i kroner, eksklusive mva")
    quantity: float = 1
    vat_type: str = Field(default="HIGH", description="HIGH, MEDIUM, LOW, NONE, EXEMPT, OUTSIDE ...")
    income_account: str = Field(default="3000", description="Inntektskonto som krediteres")


class CreatePartialCreditNoteArgs(BaseModel):
    invoice_id: Optional[int] = Field(default=None, description="Fakturaen som delvis krediteres")
    customer_id: Optional[int] = Field(default=None, description="Kunden, når kreditnotaen ikke gjelder én faktura")
    lines: List[CreditLine]
    issue_date: Optional[str] = None
    reason: Optional[str] = Field(default=None, description="Begrunnelse som vises på kreditnotaen")


class AddSalePaymentArgs(BaseModel):
    sale_id: int
    date: str = Field(description="Betalingsdato, YYYY-MM-DD")
    amount: float = Field(description="Beløp i kroner")
    account: Optional[str] = Field(default=None, description="Bankkonto betalingen kom inn på, f.eks. 1920:10001")


class SearchSalesArgs(BaseModel):
    date_from: Optional[str] = None
    date_to: Optional[str] = None


class CreateSaleArgs(BaseModel):
    date: str = Field(description="Salgsdato, YYYY-MM-DD")
    lines: List[SalesLine]
    customer_id: Optional[int] = None
    paid: bool = True
    payment_account: Optional[str] = Field(default=None, description="Konto betalingen kom inn på")
    identifier: Optional[str] = None


class EmptyArgs(BaseModel):
    pass


class InitializeCounterArgs(BaseModel):
    start: Optional[int] = Field(default=None, description="Første fakturanummer")


# ========== Helpers ==========

def build_sales_lines(lines: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Sales lines in øre; prices including VAT are converted to net."""
    built = []
    for line in lines:
        vat_type = str(line.get("vat_type") or "HIGH").upper()
        if not is_valid_sales_vat_type(vat_type):
            raise MissingInformationError(f"Mva-typen «{vat_type}» er ikke gyldig for salg. Hvilken mva-sats gjelder?")
        price = kroner_to_oere(float(line["unit_price"]))
        if line.get("price_includes_vat"):
            price, _ = gross_to_net(price, vat_type)
        built.append(compact({
            "description": line["description"],
            "unit_price": price,
            "quantity": line.get("quantity") or 1,
            "vat_type": vat_type,
            "income_account": str(line.get("income_account") or "3000"),
            "product_id": line.get("product_id"),
        }))
    return built


def lines_gross(lines: List[Dict[str, Any]]) -> int:
    return sum(int(round(net_to_gross(line["unit_price"], line["vat_type"]) * float(line["quantity"]))) for line in lines)


def _sale_line(line: Dict[str, Any]) -> Dict[str, Any]:
    net = int(round(line["unit_price"] * float(line["quantity"])))
    return {
        "description": line["description"],
        "net_price": net,
        "vat": net_to_gross(net, line["vat_type"]) - net,
        "vat_type": line["vat_type"],
        "account": line["income_account"],
    }


def _lines_summary(args: Mapping[str, Any]) -> str:
    lines = [as_dict(line) for line in args.get("lines") or []]
    parts = []
    for line in lines:
        qty = line.get("quantity") or 1
        vat = "inkl." if line.get("price_includes_vat") else "eks."
        parts.append(f"{line.get('description')} {qty} x {line.get('unit_price')} kr {vat} mva")
    return "; ".join(parts)


def _credit_target(args: Mapping[str, Any]) -> str:
    if args.get("invoice_id"):
        return f"faktura {args['invoice_id']}"
    return f"kunde {args.get('customer_id')}"


async def _default_bank_account(client) -> str:
    accounts = await client.list_bank_accounts()
    if len(accounts) == 1:
        return str(accounts[0].get("account_code"))
    if not accounts:
        raise MissingInformationError("Jeg fant ingen bankkonto. Hvilken konto skal kunden betale til?")
    options = "\n".join(f"{i}) {a.get('name')} ({a.get('account_code')})" for i, a in enumerate(accounts, 1))
    raise MissingInformationError(f"Hvilken konto skal kunden betale til?\n{options}")


# ========== Actions ==========

def build_actions(ctx: ActionContext) -> List[ActionSpec]:
    client = ctx.client
    counter_start = ctx.settings.accounting.invoice_counter_start
    counter_corrections = {"counter_not_initialized": initialize_counter(client, counter_start)}

    async def search_invoices(
        customer_id: Optional[int] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        unpaid_only: bool = False,
    ) -> Dict[str, Any]:
        invoices = await client.list_invoices(
            customer_id=customer_id,
            date_from=date_from,
            date_to=date_to,
            settled=False if unpaid_only else None,
        )
        return success(f"{len(invoices)} fakturaer funnet", invoices=invoices[:25])

    async def get_invoice(invoice_id: int) -> Dict[str, Any]:
        return success(invoice=await client.get_invoice(invoice_id))

    async def create_invoice(
        customer_id: int,
        lines: List[Any],
        issue_date: Optional[str] = None,
        due_date: Optional[str] = None,
        bank_account: Optional[str] = None,
        our_reference: Optional[str] = None,
        your_reference: Optional[str] = None,
        project_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        issue_date = require_date(issue_date, "issue_date")
        if due_date is None:
            due_date = (date.fromisoformat(issue_date) + timedelta(days=DEFAULT_DUE_DAYS)).isoformat()
        else:
            due_date = require_date(due_date, "due_date")
        built = build_sales_lines([as_dict(line) for line in lines])
        payload = compact({
            "issue_date": issue_date,
            "due_date": due_date,
            "customer_id": customer_id,
            "lines": built,
            "bank_account_code": bank_account or await _default_bank_account(client),
            "our_reference": our_reference,
            "your_reference": your_reference,
            "project_id": project_id,
            "currency": "NOK",
            "cash": False,
        })
        created = await client.create_invoice(payload)
        invoice_id = created.get("invoice_id")
        return success(
            f"Faktura opprettet (ID {invoice_id}), {format_amount(lines_gross(built))} inkl. mva, forfall {due_date}",
            created={"invoice": invoice_id},
            invoice_id=invoice_id,
            invoice_number=created.get("invoice_number"),
        )

    async def send_invoice(invoice_id: int, method: str = "email", recipient_email: Optional[str] = None) -> Dict[str, Any]:
        await client.send_invoice(invoice_id, compact({"method": [method], "recipient_email": recipient_email}))
        return success(f"Faktura {invoice_id} sendt ({method})", operation_complete=True, invoice_id=invoice_id)

    async def create_credit_note(invoice_id: int, issue_date: Optional[str] = None, reason: Optional[str] = None) -> Dict[str, Any]:
        issue_date = require_date(issue_date, "issue_date")
        created = await client.create_credit_note(invoice_id, compact({"issue_date": issue_date, "credit_note_text": reason}))
        credit_note_id = created.get("credit_note_id")
        return success(
            f"Kreditnota opprettet for faktura {invoice_id} (ID {credit_note_id})",
            created={"credit_note": credit_note_id},
            credit_note_id=credit_note_id,
            invoice_id=invoice_id,
        )

    async def create_partial_credit_note(
        lines: List[Any],
        invoice_id: Optional[int] = None,
        customer_id: Optional[int] = None,
        issue_date: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        if invoice_id is None and customer_id is None:
            raise MissingInformationError("Hvilken faktura eller kunde gjelder kreditnotaen?")
        issue_date = require_date(issue_date, "issue_date")
        built = build_sales_lines([{**as_dict(line), "price_includes_vat": False} for line in lines])
        created = await client.create_partial_credit_note(compact({
            "invoice_id": invoice_id,
            "customer_id": customer_id,
            "issue_date": issue_date,
            "lines": built,
            "credit_note_text": reason,
            "currency": "NOK",
        }))
        credit_note_id = created.get("credit_note_id")
        target = _credit_target({"invoice_id": invoice_id, "customer_id": customer_id})
        return success(
            f"Kreditnota på {format_amount(lines_gross(built))} inkl. mva opprettet for {target} (ID {credit_note_id})",
            created={"credit_note": credit_note_id},
            credit_note_id=credit_note_id,
            invoice_id=invoice_id,
        )

    async def search_sales(date_from: Optional[str] = None, date_to: Optional[str] = None) -> Dict[str, Any]:
        sales = await client.list_sales(date_from=date_from, date_to=date_to)
        return success(f"{len(sales)} salg funnet", sales=sales[:25])

    async def create_sale(
        date: str,
        lines: List[Any],
        customer_id: Optional[int] = None,
        paid: bool = True,
        payment_account: Optional[str] = None,
        identifier: Optional[str] = None,
    ) -> Dict[str, Any]:
        date = require_date(date)
        built = build_sales_lines([as_dict(line) for line in lines])
        payload = compact({
            "date": date,
            "kind": "cash_sale" if paid else "external_invoice",
            "lines": [_sale_line(line) for line in built],
            "customer_id": customer_id,
            "identifier": identifier,
            "currency": "NOK",
        })
        if paid:
            payload["payment_account"] = payment_account or await _default_bank_account(client)
            payload["payment_date"] = date
        created = await client.create_sale(payload)
        sale_id = created.get("sale_id")
        return success(f"Salg registrert {date} (ID {sale_id})", created={"sale": sale_id}, sale_id=sale_id)

    async def add_sale_payment(sale_id: int, date: str, amount: float, account: Optional[str] = None) -> Dict[str, Any]:
        date = require_date(date)
        created = await client.add_sale_payment(sale_id, {
            "date": date,
            "amount": kroner_to_oere(amount),
            "account": account or await _default_bank_account(client),
        })
        payment_id = created.get("payment_id")
        return success(
            f"Innbetaling på {format_amount(kroner_to_oere(amount))} registrert på salg {sale_id}",
            created={"payment": payment_id} if payment_id is not None else None,
            operation_complete=True,
            sale_id=sale_id,
        )

    async def get_invoice_counter() -> Dict[str, Any]:
        try:
            value = await client.get_counter("invoice")
        except CounterNotInitializedError:
            return success("Nummerserien for fakturaer er ikke satt opp ennå.", initialized=False)
        return success(f"Neste fakturanummer er {value}", initialized=True, value=value)

    async def initialize_invoice_counter(start: Optional[int] = None) -> Dict[str, Any]:
        try:
            value = await client.get_counter("invoice")
        except CounterNotInitializedError:
            value = await client.create_counter("invoice", start or counter_start)
            return success(f"Nummerserien for fakturaer starter på {value}", operation_complete=True, value=value)
        return failure(f"Nummerserien er allerede satt opp (neste nummer {value}).", value=value)

    return [
        make_action(
            search_invoices,
            name="search_invoices",
            description="Søk etter fakturaer, eventuelt per kunde, periode eller kun ubetalte.",
            args_schema=SearchInvoicesArgs,
        ),
        make_action(
            get_invoice,
            name="get_invoice",
            description="Hent én faktura med linjer og betalingsstatus.",
            args_schema=InvoiceIdArgs,
        ),
        make_action(
            create_invoice,
            name="create_invoice",
            description="Opprett en faktura til en eksisterende kunde. Nummerserien settes opp automatisk ved behov.",
            args_schema=CreateInvoiceArgs,
            side_effect=True,
            creates="invoice",
            intent_fields=("customer_id", "lines", "issue_date"),
            summary=lambda a: f"Opprette faktura til kunde {a.get('customer_id')}: {_lines_summary(a)}",
            corrections=counter_corrections,
        ),
        make_action(
            send_invoice,
            name="send_invoice",
            description="Send en eksisterende faktura til kunden (e-post eller EHF).",
            args_schema=SendInvoiceArgs,
            side_effect=True,
            summary=lambda a: f"Sende faktura {a.get('invoice_id')} med {a.get('method') or 'email'}",
        ),
        make_action(
            create_credit_note,
            name="create_credit_note",
            description="Krediter en faktura i sin helhet. Fakturaer slettes ikke; dette er måten å annullere på.",
            args_schema=CreateCreditNoteArgs,
            side_effect=True,
            creates="credit_note",
            intent_fields=("invoice_id",),
            summary=lambda a: f"Kreditere faktura {a.get('invoice_id')}" + (f" ({a['reason']})" if a.get("reason") else ""),
            corrections=counter_corrections,
        ),
        make_action(
            create_partial_credit_note,
            name="create_partial_credit_note",
            description="Krediter deler av en faktura (f.eks. én linje eller et avslag). Oppgi faktura eller kunde og linjene som krediteres.",
            args_schema=CreatePartialCreditNoteArgs,
            side_effect=True,
            creates="credit_note",
            intent_fields=("invoice_id", "customer_id", "lines"),
            summary=lambda a: f"Delvis kreditere {_credit_target(a)}: {_lines_summary(a)}",
            corrections=counter_corrections,
        ),
        make_action(
            search_sales,
            name="search_sales",
            description="Søk etter registrerte salg (kontantsalg og eksterne fakturaer).",
            args_schema=SearchSalesArgs,
        ),
        make_action(
            create_sale,
            name="create_sale",
            description="Registrer et kontantsalg eller en ekstern faktura uten å sende noe til kunden.",
            args_schema=CreateSaleArgs,
            side_effect=True,
            creates="sale",
            intent_fields=("date", "lines", "customer_id", "identifier"),
            summary=lambda a: f"Registrere salg {a.get('date')}: {_lines_summary(a)}",
        ),
        make_action(
            add_sale_payment,
            name="add_sale_payment",
            description="Registrer innbetaling på et eksisterende, ubetalt salg (ekstern faktura).",
            args_schema=AddSalePaymentArgs,
            side_effect=True,
            summary=lambda a: f"Registrere innbetaling {a.get('date')} på {a.get('amount')} kr for salg {a.get('sale_id')}",
        ),
        make_action(
            get_invoice_counter,
            name="get_invoice_counter",
            description="Vis neste fakturanummer, eller at nummerserien ikke er satt opp.",
            args_schema=EmptyArgs,
        ),
        make_action(
            initialize_invoice_counter,
            name="initialize_invoice_counter",
            description="Sett opp nummerserien for fakturaer.",
            args_schema=InitializeCounterArgs,
            side_effect=True,
            summary=lambda a: f"Sette opp nummerserien for fakturaer fra {a.get('start') or counter_start}",
        ),
        upload_attachment_action(ctx, ("invoice", "sale")),
    ]
