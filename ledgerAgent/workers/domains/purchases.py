"""Purchases and expenses: receipts, supplier bills, payments, bank matching."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, Field

from ledgerAgent.accounting.rules import (
    format_amount,
    gross_to_net,
    is_valid_purchase_vat_type,
    kroner_to_oere,
    net_to_gross,
    suggest_accounts,
)
from ledgerAgent.transcript.records import duplicate_noop, failure, success
from ledgerAgent.utils.error_handler import MissingInformationError
from ledgerAgent.workers.actions import ActionContext, ActionSpec, make_action
from ledgerAgent.workers.domains.common import (
    as_dict,
    compact,
    find_bank_matches_action,
    require_date,
    upload_attachment_action,
)

LOGGER = logging.getLogger(__name__)

INSTRUCTIONS = """
Du registrerer kjøp og utgifter: kvitteringer, leverandørfakturaer og betalinger.

- Ett kjøp per kvittering. Er det flere kvitteringer, registrer hver for seg og last opp riktig fil til riktig kjøp.
- Beløp på kvitteringer er normalt inklusive mva (amount_includes_vat=true). Er mva-behandlingen uklar, spør.
- Bruk suggest_accounts når du er usikker på kostnadskonto.
- Kontantkjøp (cash_purchase) er betalt med en gang; leverandørfaktura (supplier) krever supplier_id. Finnes ikke leverandøren, deleger til contact_agent.
- Er det uklart om kjøpet er betalt, bruk find_bank_matches og la brukeren svare.
- Etter at et kjøp er opprettet: last opp kvitteringen med upload_attachment og kjøpets ID.
"""


# ========== Argument schemas ==========

class PurchaseLine(BaseModel):
    description: str = Field(description="Hva som ble kjøpt")
    amount: float = Field(description="Beløp i kroner")
    amount_includes_vat: bool = Field(default=True, description="true når beløpet er inklusive mva")
    vat_type: str = Field(default="HIGH", description="HIGH (25 %), MEDIUM (15 %), LOW (12 %), NONE ...")
    account: str = Field(description="Kostnadskonto, f.eks. 6800")


class CreatePurchaseArgs(BaseModel):
    date: str = Field(description="Kjøpsdato, YYYY-MM-DD")
    description: str = Field(description="Kort beskrivelse, f.eks. butikk og hva som ble kjøpt")
    lines: List[PurchaseLine]
    kind: Literal["cash_purchase", "supplier"] = "cash_purchase"
    supplier_id: Optional[int] = Field(default=None, description="Leverandørens kontakt-ID (påkrevd for supplier)")
    paid: bool = Field(default=True, description="Om kjøpet allerede er betalt")
    payment_account: Optional[str] = Field(default=None, description="Bankkonto betalt fra, f.eks. 1920:10001")
    due_date: Optional[str] = Field(default=None, description="Forfallsdato for ubetalte kjøp")
    identifier: Optional[str] = Field(default=None, description="Kvitterings- eller fakturanummer")


class SuggestAccountsArgs(BaseModel):
    description: str = Field(description="Hva utgiften gjelder")


class SearchPurchasesArgs(BaseModel):
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    text: Optional[str] = Field(default=None, description="Filtrer på beskrivelse eller leverandør")


class GetPurchaseArgs(BaseModel):
    purchase_id: int


class AddPurchasePaymentArgs(BaseModel):
    purchase_id: int
    date: str = Field(description="Betalingsdato, YYYY-MM-DD")
    amount: float = Field(description="Betalt beløp i kroner")
    account: str = Field(description="Bankkonto betalt fra, f.eks. 1920:10001")


# ========== Helpers ==========

def purchase_gross(purchase: Mapping[str, Any]) -> int:
    """Gross total in øre of a purchase as stored in the ledger."""
    total = 0
    for line in purchase.get("lines") or []:
        if line.get("gross") is not None:
            total += int(line["gross"])
        else:
            total += int(line.get("net_price") or line.get("net") or 0) + int(line.get("vat") or 0)
    return total


def _words(text: Any) -> str:
    return " ".join(str(text or "").lower().split())


def find_existing_purchase(
    purchases: List[Mapping[str, Any]],
    date: str,
    gross_oere: int,
    description: str,
    supplier_id: Optional[int],
    identifier: Optional[str],
    margin_oere: int,
) -> Optional[Mapping[str, Any]]:
    """A purchase on the same date with (nearly) the same total and a matching description, supplier or receipt number."""
    wanted = _words(description)
    for purchase in purchases:
        if purchase.get("date") != date:
            continue
        if abs(purchase_gross(purchase) - gross_oere) > margin_oere:
            continue
        descriptions = {_words(purchase.get("description"))}
        descriptions.update(_words(line.get("description")) for line in purchase.get("lines") or [])
        supplier = purchase.get("supplier_id") or (purchase.get("supplier") or {}).get("contact_id")
        if wanted and wanted in descriptions:
            return purchase
        if supplier_id is not None and supplier == supplier_id:
            return purchase
        if identifier and _words(purchase.get("identifier")) == _words(identifier):
            return purchase
    return None


def build_purchase_lines(lines: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    built = []
    for line in lines:
        vat_type = str(line.get("vat_type") or "HIGH").upper()
        if not is_valid_purchase_vat_type(vat_type):
            raise MissingInformationError(f"Mva-typen «{vat_type}» er ikke gyldig for kjøp. Hvilken mva-sats gjelder?")
        amount = kroner_to_oere(float(line["amount"]))
        if line.get("amount_includes_vat", True):
            net, vat = gross_to_net(amount, vat_type)
        else:
            net = amount
            vat = net_to_gross(amount, vat_type) - amount
        built.append({
            "description": line["description"],
            "net_price": net,
            "vat": vat,
            "vat_type": vat_type,
            "account": str(line["account"]),
        })
    return built


def _purchase_summary(args: Mapping[str, Any]) -> str:
    lines = [as_dict(line) for line in args.get("lines") or []]
    gross = 0
    for line in lines:
        amount = kroner_to_oere(float(line.get("amount") or 0))
        if line.get("amount_includes_vat", True):
            gross += amount
        else:
            gross += net_to_gross(amount, str(line.get("vat_type") or "HIGH").upper())
    status = "betalt" if args.get("paid", True) else "ubetalt"
    return f"Registrere kjøp {args.get('date')}: {args.get('description')}, {format_amount(gross)} inkl. mva ({status})"


# ========== Actions ==========

def build_actions(ctx: ActionContext) -> List[ActionSpec]:
    client = ctx.client
    margin = ctx.settings.accounting.duplicate_margin_oere

    async def suggest_expense_accounts(description: str) -> Dict[str, Any]:
        chart = await client.list_accounts(from_account=4000, to_account=7999)
        suggestions = suggest_accounts(description, "expense", chart or None)
        if not suggestions:
            return success("Fant ingen kontoforslag; spør brukeren eller velg en generell kostnadskonto.", suggestions=[])
        return success(f"{len(suggestions)} kontoforslag", suggestions=suggestions)

    async def search_purchases(date_from: Optional[str] = None, date_to: Optional[str] = None, text: Optional[str] = None) -> Dict[str, Any]:
        purchases = await client.list_purchases(date_from=date_from, date_to=date_to)
        if text:
            needle = _words(text)
            purchases = [
                p for p in purchases
                if needle in _words(p.get("description"))
                or any(needle in _words(line.get("description")) for line in p.get("lines") or [])
            ]
        return success(f"{len(purchases)} kjøp funnet", purchases=purchases[:25])

    async def get_purchase(purchase_id: int) -> Dict[str, Any]:
        purchase = await client.get_purchase(purchase_id)
        return success(purchase=purchase)

    async def create_purchase(
        date: str,
        description: str,
        lines: List[Any],
        kind: str = "cash_purchase",
        supplier_id: Optional[int] = None,
        paid: bool = True,
        payment_account: Optional[str] = None,
        due_date: Optional[str] = None,
        identifier: Optional[str] = None,
    ) -> Dict[str, Any]:
        date = require_date(date)
        if kind == "supplier" and supplier_id is None:
            raise MissingInformationError("Hvilken leverandør er fakturaen fra?")

        built = build_purchase_lines([as_dict(line) for line in lines])
        gross = sum(line["net_price"] + line["vat"] for line in built)

        existing = find_existing_purchase(
            await client.list_purchases(date_from=date, date_to=date),
            date, gross, description, supplier_id, identifier, margin,
        )
        if existing is not None:
            existing_id = existing.get("purchase_id")
            LOGGER.info(f"Purchase already registered as {existing_id}, not creating again")
            return duplicate_noop("purchase", existing_id, f"Kjøpet er allerede registrert (ID {existing_id}), ikke opprettet på nytt")

        payload: Dict[str, Any] = compact({
            "date": date,
            "kind": kind,
            "description": description,
            "lines": built,
            "supplier_id": supplier_id,
            "identifier": identifier,
            "currency": "NOK",
            "paid": paid,
        })
        if paid:
            if not payment_account:
                payment_account = await _pick_bank_account(client)
            payload["payment_account"] = payment_account
            payload["payment_date"] = date
        else:
            payload["due_date"] = require_date(due_date, "due_date") if due_date else date

        created = await client.create_purchase(payload)
        purchase_id = created.get("purchase_id")
        return success(
            f"Kjøp registrert: {description}, {format_amount(gross)} (ID {purchase_id})",
            created={"purchase": purchase_id},
            purchase_id=purchase_id,
            gross=gross,
        )

    async def add_purchase_payment(purchase_id: int, date: str, amount: float, account: str) -> Dict[str, Any]:
        date = require_date(date)
        created = await client.add_purchase_payment(purchase_id, {
            "date": date,
            "amount": kroner_to_oere(amount),
            "account": account,
        })
        payment_id = created.get("payment_id")
        return success(
            f"Betaling på {format_amount(kroner_to_oere(amount))} registrert på kjøp {purchase_id}",
            created={"payment": payment_id} if payment_id is not None else None,
            operation_complete=True,
            purchase_id=purchase_id,
        )

    return [
        make_action(
            suggest_expense_accounts,
            name="suggest_accounts",
            description="Foreslå kostnadskonto (NS 4102) og mva-behandling ut fra en beskrivelse.",
            args_schema=SuggestAccountsArgs,
        ),
        make_action(
            search_purchases,
            name="search_purchases",
            description="Søk etter registrerte kjøp i en periode, eventuelt filtrert på tekst.",
            args_schema=SearchPurchasesArgs,
        ),
        make_action(
            get_purchase,
            name="get_purchase",
            description="Hent ett kjøp med linjer, betalinger og vedlegg.",
            args_schema=GetPurchaseArgs,
        ),
        make_action(
            create_purchase,
            name="create_purchase",
            description=(
                "Registrer ett kjøp (kvittering eller leverandørfaktura).\n"
                "Sjekker selv om samme kjøp allerede finnes og velger bankkonto når det bare finnes én."
            ),
            args_schema=CreatePurchaseArgs,
            side_effect=True,
            creates="purchase",
            intent_fields=("date", "description", "lines", "supplier_id", "identifier"),
            summary=_purchase_summary,
        ),
        make_action(
            add_purchase_payment,
            name="add_purchase_payment",
            description="Registrer betaling av et eksisterende, ubetalt kjøp.",
            args_schema=AddPurchasePaymentArgs,
            side_effect=True,
            summary=lambda a: f"Registrere betaling {a.get('date')} på {a.get('amount')} kr for kjøp {a.get('purchase_id')} fra konto {a.get('account')}",
        ),
        find_bank_matches_action(ctx),
        upload_attachment_action(ctx, ("purchase",)),
    ]


async def _pick_bank_account(client) -> str:
    """The only bank account, or a question when there are several."""
    accounts = await client.list_bank_accounts()
    if not accounts:
        raise MissingInformationError("Jeg fant ingen bankkonto i regnskapet. Hvilken konto ble kjøpet betalt fra?")
    if len(accounts) == 1:
        return str(accounts[0].get("account_code"))
    options = "\n".join(f"{i}) {a.get('name')} ({a.get('account_code')})" for i, a in enumerate(accounts, 1))
    raise MissingInformationError(f"Hvilken konto ble kjøpet betalt fra?\n{options}")
