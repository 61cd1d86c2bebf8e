"""General ledger: chart of accounts, journal entries, reversals and projects."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ledgerAgent.accounting.rules import format_amount, kroner_to_oere
from ledgerAgent.transcript.records import success
from ledgerAgent.utils.error_handler import MissingInformationError
from ledgerAgent.workers.actions import ActionContext, ActionSpec, make_action
from ledgerAgent.workers.domains.common import as_dict, compact, require_date, upload_attachment_action

LOGGER = logging.getLogger(__name__)

INSTRUCTIONS = """
Du fører bilag direkte i hovedboken og svarer på spørsmål om kontoplanen.

- Et bilag må balansere: sum debet = sum kredit.
- Bilag slettes ikke. Feil rettes med et motbilag (reverse_journal_entry).
- Kjøp og salg med kvittering eller faktura hører hjemme hos purchase_agent og invoice_agent, ikke som manuelle bilag.
- Etter at et bilag er opprettet: last opp eventuell fil med upload_attachment og bilagets ID.
"""


class ListAccountsArgs(BaseModel):
    from_account: Optional[int] = Field(default=None, description="Fra kontonummer, f.eks. 6000")
    to_account: Optional[int] = Field(default=None, description="Til kontonummer, f.eks. 6999")


class SearchJournalEntriesArgs(BaseModel):
    date_from: str
    date_to: str
    text: Optional[str] = None


class JournalLine(BaseModel):
    account: str = Field(description="Kontokode, f.eks. 6300 eller 1920:10001")
    debit: float = Field(default=0, description="Debetbeløp i kroner")
    credit: float = Field(default=0, description="Kreditbeløp i kroner")
    vat_type: Optional[str] = None


class CreateJournalEntryArgs(BaseModel):
    date: str = Field(description="Bilagsdato, YYYY-MM-DD")
    description: str
    lines: List[JournalLine]
    project_id: Optional[int] = None


class ReverseJournalEntryArgs(BaseModel):
    transaction_id: int = Field(description="Transaksjonen som skal reverseres")
    reason: str = Field(description="Begrunnelse for reverseringen")


class CreateProjectArgs(BaseModel):
    name: str
    number: str = Field(description="Prosjektnummer")
    start_date: Optional[str] = None
    contact_id: Optional[int] = None


def balance_lines(lines: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Signed journal lines in øre; raises when debit and credit differ."""
    debit = sum(kroner_to_oere(float(line.get("debit") or 0)) for line in lines)
    credit = sum(kroner_to_oere(float(line.get("credit") or 0)) for line in lines)
    if debit != credit:
        raise MissingInformationError(
            f"Bilaget balanserer ikke: debet {format_amount(debit)}, kredit {format_amount(credit)}. "
            "Hvilket beløp eller hvilken konto skal justeres?"
        )
    if debit == 0:
        raise MissingInformationError("Bilaget har ingen beløp. Hvilke kontoer og beløp skal føres?")

    built = []
    for line in lines:
        amount = kroner_to_oere(float(line.get("debit") or 0)) - kroner_to_oere(float(line.get("credit") or 0))
        if amount == 0:
            continue
        account = str(line["account"])
        built.append(compact({
            "account": account,
            "amount": amount,
            "vat_code": line.get("vat_type"),
        }))
    return built


def build_actions(ctx: ActionContext) -> List[ActionSpec]:
    client = ctx.client

    async def list_accounts(from_account: Optional[int] = None, to_account: Optional[int] = None) -> Dict[str, Any]:
        accounts = await client.list_accounts(from_account=from_account, to_account=to_account)
        return success(f"{len(accounts)} kontoer", accounts=[{"code": a.get("code"), "name": a.get("name")} for a in accounts[:100]])

    async def search_journal_entries(date_from: str, date_to: str, text: Optional[str] = None) -> Dict[str, Any]:
        entries = await client.list_journal_entries(date_from=date_from, date_to=date_to)
        if text:
            needle = text.lower()
            entries = [e for e in entries if needle in str(e.get("description") or "").lower()]
        return success(f"{len(entries)} bilag funnet", journal_entries=entries[:25])

    async def create_journal_entry(date: str, description: str, lines: List[Any], project_id: Optional[int] = None) -> Dict[str, Any]:
        date = require_date(date)
        built = balance_lines([as_dict(line) for line in lines])
        created = await client.create_journal_entry({
            "description": description,
            "journal_entries": [compact({
                "description": description,
                "date": date,
                "lines": built,
                "project_id": project_id,
            })],
        })
        entry_id = created.get("journal_entry_id")
        total = sum(line["amount"] for line in built if line["amount"] > 0)
        return success(
            f"Bilag ført {date}: {description}, {format_amount(total)} (ID {entry_id})",
            created={"journal_entry": entry_id},
            journal_entry_id=entry_id,
            transaction_id=created.get("transaction_id"),
        )

    async def reverse_journal_entry(transaction_id: int, reason: str) -> Dict[str, Any]:
        await client.reverse_transaction(transaction_id, reason)
        return success(f"Transaksjon {transaction_id} er reversert med motbilag", operation_complete=True, transaction_id=transaction_id)

    async def create_project(name: str, number: str, start_date: Optional[str] = None, contact_id: Optional[int] = None) -> Dict[str, Any]:
        start_date = require_date(start_date, "start_date")
        created = await client.create_project(compact({
            "name": name,
            "number": number,
            "start_date": start_date,
            "contact_id": contact_id,
            "completed": False,
        }))
        project_id = created.get("project_id")
        return success(f"Prosjekt {number} {name} opprettet (ID {project_id})", created={"project": project_id}, project_id=project_id)

    def _entry_summary(a: Dict[str, Any]) -> str:
        parts = []
        for line in (as_dict(x) for x in a.get("lines") or []):
            if line.get("debit"):
                parts.append(f"debet {line.get('account')} {line['debit']} kr")
            if line.get("credit"):
                parts.append(f"kredit {line.get('account')} {line['credit']} kr")
        return f"Føre bilag {a.get('date')}: {a.get('description')} ({', '.join(parts)})"

    return [
        make_action(
            list_accounts,
            name="list_accounts",
            description="List kontoplanen, eventuelt et kontointervall.",
            args_schema=ListAccountsArgs,
        ),
        make_action(
            search_journal_entries,
            name="search_journal_entries",
            description="Søk etter bilag i en periode.",
            args_schema=SearchJournalEntriesArgs,
        ),
        make_action(
            create_journal_entry,
            name="create_journal_entry",
            description="Før et manuelt bilag. Linjene må balansere (sum debet = sum kredit).",
            args_schema=CreateJournalEntryArgs,
            side_effect=True,
            creates="journal_entry",
            intent_fields=("date", "description", "lines"),
            summary=_entry_summary,
        ),
        make_action(
            reverse_journal_entry,
            name="reverse_journal_entry",
            description="Reverser en transaksjon med et motbilag. Bilag slettes aldri.",
            args_schema=ReverseJournalEntryArgs,
            side_effect=True,
            summary=lambda a: f"Reversere transaksjon {a.get('transaction_id')} ({a.get('reason')})",
        ),
        make_action(
            create_project,
            name="create_project",
            description="Opprett et prosjekt som bilag og fakturaer kan knyttes til.",
            args_schema=CreateProjectArgs,
            side_effect=True,
            creates="project",
            intent_fields=("number",),
            summary=lambda a: f"Opprette prosjekt {a.get('number')} {a.get('name')}",
        ),
        upload_attachment_action(ctx, ("journal_entry",)),
    ]
