"""Banking: accounts, balances, bank transactions and statement reconciliation."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ledgerAgent.accounting.rules import (
    format_amount,
    reconcile_statement,
    reconciliation_summary,
    same_bank_account,
    today_iso,
)
from ledgerAgent.transcript.records import success
from ledgerAgent.workers.actions import ActionContext, ActionSpec, make_action
from ledgerAgent.workers.domains.common import bank_lines, as_dict, find_bank_matches_action, require_date

LOGGER = logging.getLogger(__name__)

INSTRUCTIONS = """
Du svarer på spørsmål om bankkontoer, saldoer og banktransaksjoner.

- Du endrer ingenting selv; registrering av kjøp, salg og bilag gjøres av de andre spesialistene.
- Skal en transaksjon kobles til et kjøp, bruk find_bank_matches og la brukeren bekrefte treffet.
- Ved avstemming av kontoutskrift: les alle linjene fra utskriften (beløp i kroner, negativt = ut) og kall reconcile_bank_statement. Linjer som ikke er bokført, sendes til riktig spesialist etter at brukeren har sagt hva de gjelder.
"""


class EmptyArgs(BaseModel):
    pass


class BalancesArgs(BaseModel):
    date: Optional[str] = Field(default=None, description="Saldo per dato (standard i dag)")


class SearchTransactionsArgs(BaseModel):
    date_from: str
    date_to: str
    text: Optional[str] = Field(default=None, description="Filtrer på beskrivelse")
    min_amount: Optional[float] = Field(default=None, description="Minste beløp i kroner (absoluttverdi)")


class StatementLine(BaseModel):
    date: str = Field(description="Transaksjonsdato, YYYY-MM-DD")
    amount: float = Field(description="Beløp i kroner (negativ = ut, positiv = inn)")
    description: str = Field(default="", description="Teksten fra kontoutskriften")


class ReconcileArgs(BaseModel):
    bank_account: str = Field(description="Bankkontoens kontokode, f.eks. 1920:10001")
    period_from: str = Field(description="Periodens start, YYYY-MM-DD")
    period_to: str = Field(description="Periodens slutt, YYYY-MM-DD")
    transactions: List[StatementLine] = Field(description="Alle linjene fra kontoutskriften")


def build_actions(ctx: ActionContext) -> List[ActionSpec]:
    client = ctx.client

    async def list_bank_accounts() -> Dict[str, Any]:
        accounts = await client.list_bank_accounts()
        return success(
            f"{len(accounts)} bankkonto(er)",
            bank_accounts=[
                {"name": a.get("name"), "account_code": a.get("account_code"), "bank_account_number": a.get("bank_account_number")}
                for a in accounts
            ],
        )

    async def get_bank_balances(date: Optional[str] = None) -> Dict[str, Any]:
        on_date = date or today_iso()
        balances = await client.list_bank_balances(date=on_date)
        lines = [f"{b.get('name')}: {format_amount(int(b.get('balance') or 0))}" for b in balances]
        return success(f"Saldo per {on_date}: " + "; ".join(lines) if lines else "Ingen saldoer funnet", balances=balances)

    async def search_transactions(
        date_from: str,
        date_to: str,
        text: Optional[str] = None,
        min_amount: Optional[float] = None,
    ) -> Dict[str, Any]:
        lines = bank_lines(await client.list_journal_entries(date_from=date_from, date_to=date_to))
        if text:
            needle = text.lower()
            lines = [line for line in lines if needle in line["description"].lower()]
        if min_amount is not None:
            lines = [line for line in lines if abs(line["amount"]) >= round(min_amount * 100)]
        return success(f"{len(lines)} banktransaksjoner {date_from}–{date_to}", transactions=lines[:50])

    async def reconcile_bank_statement(bank_account: str, period_from: str, period_to: str, transactions: List[Any]) -> Dict[str, Any]:
        period_from = require_date(period_from, "period_from")
        period_to = require_date(period_to, "period_to")
        statement = [as_dict(t) for t in transactions]
        for line in statement:
            line["date"] = require_date(line.get("date"))
        entries = await client.list_journal_entries(date_from=period_from, date_to=period_to)
        booked = [
            {**line, "date": line["date"] or period_from}
            for line in bank_lines(entries)
            if same_bank_account(line["account"], bank_account)
        ]
        matched, unmatched = reconcile_statement(statement, booked, ctx.settings.accounting.reconcile_tolerance_kr, ctx.settings.accounting.reconcile_days)
        LOGGER.info(f"Reconciled {len(statement)} statement line(s) on {bank_account}: {len(matched)} matched, {len(unmatched)} unmatched")
        return success(
            reconciliation_summary(bank_account, period_from, period_to, len(statement), matched, unmatched),
            total_transactions=len(statement),
            matched_count=len(matched),
            unmatched_count=len(unmatched),
            matched=matched,
            unmatched=unmatched,
            booked_entries_count=len(booked),
        )

    return [
        make_action(
            list_bank_accounts,
            name="list_bank_accounts",
            description="List bankkontoene i regnskapet med kontokode.",
            args_schema=EmptyArgs,
        ),
        make_action(
            get_bank_balances,
            name="get_bank_balances",
            description="Vis saldo på bankkontoene per dato.",
            args_schema=BalancesArgs,
        ),
        make_action(
            search_transactions,
            name="search_transactions",
            description="Søk etter banktransaksjoner i en periode.",
            args_schema=SearchTransactionsArgs,
        ),
        make_action(
            reconcile_bank_statement,
            name="reconcile_bank_statement",
            description=(
                "Avstem en kontoutskrift mot bokførte banktransaksjoner (±5 kr, ±5 dager).\n"
                "Returnerer hvilke linjer som allerede er bokført og hvilke som trenger bokføring. Endrer ingenting."
            ),
            args_schema=ReconcileArgs,
        ),
        find_bank_matches_action(ctx),
    ]
