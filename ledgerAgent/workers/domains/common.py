"""Pieces shared by the domain modules: attachment upload, bank matching, argument helpers."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Sequence

from pydantic import BaseModel, Field

from ledgerAgent.accounting.rules import (
    bank_match_question,
    date_window,
    is_bank_account,
    is_valid_iso_date,
    match_bank_lines,
    today_iso,
)
from ledgerAgent.transcript.creations import CreationFact
from ledgerAgent.transcript.records import failure, success
from ledgerAgent.utils.error_handler import InvalidDateError
from ledgerAgent.workers.actions import ActionContext, ActionSpec, make_action

LOGGER = logging.getLogger(__name__)

EntityType = Literal["purchase", "invoice", "sale", "offer", "journal_entry", "contact"]


def as_dict(value: Any) -> Dict[str, Any]:
    """Tool arguments arrive as pydantic models or plain dicts."""
    if isinstance(value, BaseModel):
        return value.model_dump()
    return dict(value or {})


def require_date(value: Optional[str], field: str = "date") -> str:
    """Return an ISO date or raise the correctable invalid-date error."""
    if value is None:
        return today_iso()
    if not is_valid_iso_date(value):
        raise InvalidDateError(f"{field}={value!r} is not an ISO date", field=field)
    return value


def compact(payload: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in payload.items() if v is not None}


# ========== Attachment upload ==========

class UploadAttachmentArgs(BaseModel):
    entity_type: EntityType = Field(description="Hva filen skal knyttes til")
    entity_id: int = Field(description="ID-en til kjøpet/fakturaen/bilaget filen hører til")
    file_index: Optional[int] = Field(
        default=None,
        description="Filnummer fra vedleggslisten (1 = første fil). Utelat for å laste opp alle filene.",
    )


def created_in_task(args: Mapping[str, Any], creations: Sequence[CreationFact]) -> bool:
    """Uploads to an entity created earlier in the same task need no new consent."""
    entity_type = args.get("entity_type")
    entity_id = str(args.get("entity_id"))
    return any(f.entity_type == entity_type and str(f.identifier) == entity_id for f in creations)


def upload_attachment_action(ctx: ActionContext, entity_types: Iterable[str]) -> ActionSpec:
    allowed = tuple(entity_types)

    async def upload_attachment(entity_type: str, entity_id: int, file_index: Optional[int] = None) -> Dict[str, Any]:
        if entity_type not in allowed:
            return failure(f"Denne spesialisten kan ikke laste opp filer til {entity_type}.")
        if not ctx.attachments:
            return failure("Det er ikke lastet opp noen filer i denne oppgaven.")

        result = await ctx.attachments.upload(ctx.client, entity_type, entity_id, file_index)
        uploaded, skipped, errors = result["uploaded"], result["skipped"], result["errors"]
        if errors and not uploaded and not skipped:
            return failure(f"Klarte ikke å laste opp {', '.join(errors)}.")

        parts = []
        if uploaded:
            parts.append(f"Lastet opp {', '.join(uploaded)}")
        if skipped:
            parts.append(f"{', '.join(skipped)} var allerede vedlagt")
        if errors:
            parts.append(f"feilet: {', '.join(errors)}")
        return success(
            f"{'; '.join(parts)} ({entity_type} ID {entity_id})",
            operation_complete=True,
            uploaded=uploaded,
            skipped=skipped,
            **{f"{entity_type}_id": entity_id},
        )

    def summary(args: Mapping[str, Any]) -> str:
        which = f"fil {args['file_index']}" if args.get("file_index") else "alle filene"
        return f"Laste opp {which} til {args.get('entity_type')} ID {args.get('entity_id')}"

    return make_action(
        upload_attachment,
        name="upload_attachment",
        description=(
            "Last opp en fil brukeren har sendt til et eksisterende kjøp, en faktura eller et bilag.\n"
            "Bruk ID-en til det som allerede er opprettet. Filer som allerede er vedlagt hoppes over."
        ),
        args_schema=UploadAttachmentArgs,
        side_effect=True,
        summary=summary,
        authorize=created_in_task,
    )


# ========== Bank matching ==========

class FindBankMatchesArgs(BaseModel):
    amount: float = Field(description="Beløpet i kroner (brutto)")
    date: str = Field(description="Kjøpsdato, YYYY-MM-DD")
    days: Optional[int] = Field(default=None, description="Antall dager før/etter datoen som søkes (standard 5)")


def find_bank_matches_action(ctx: ActionContext) -> ActionSpec:
    tolerance = ctx.settings.accounting.bank_match_tolerance_kr
    default_days = ctx.settings.accounting.bank_match_days

    async def find_bank_matches(amount: float, date: str, days: Optional[int] = None) -> Dict[str, Any]:
        on_date = require_date(date)
        date_from, date_to = date_window(on_date, default_days if days is None else days)
        entries = await ctx.client.list_journal_entries(date_from=date_from, date_to=date_to)
        candidates = match_bank_lines(entries, abs(amount), tolerance, default_date=on_date)
        LOGGER.info(f"Bank match for {amount} kr around {on_date}: {len(candidates)} candidate(s)")
        return success(
            f"{len(candidates)} mulige banktransaksjoner",
            candidates=candidates,
            search_criteria={"amount": amount, "date_from": date_from, "date_to": date_to, "tolerance_kr": tolerance},
            needs_input=True,
            question=bank_match_question(candidates, abs(amount), on_date),
        )

    return make_action(
        find_bank_matches,
        name="find_bank_matches",
        description=(
            "Søk etter banktransaksjoner som kan være betalingen av et kjøp (±2 kr, ±5 dager).\n"
            "Resultatet er et spørsmål til brukeren: betalt/ubetalt, bekreftelse av ett treff, eller valg mellom flere."
        ),
        args_schema=FindBankMatchesArgs,
    )


def bank_lines(entries: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Flatten journal entries into their bank-account lines."""
    lines: List[Dict[str, Any]] = []
    for entry in entries:
        for line in entry.get("lines") or []:
            account = line.get("account") or line.get("debit_account") or line.get("credit_account")
            if account and is_bank_account(account):
                lines.append({
                    "journal_entry_id": entry.get("journal_entry_id"),
                    "transaction_id": entry.get("transaction_id"),
                    "date": entry.get("date"),
                    "description": entry.get("description") or "",
                    "account": account,
                    "amount": int(line.get("amount") or 0),
                })
    return lines
