"""Quotations (tilbud) and the offer counter."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ledgerAgent.accounting.rules import format_amount
from ledgerAgent.transcript.records import failure, success
from ledgerAgent.utils.error_handler import CounterNotInitializedError
from ledgerAgent.workers.actions import ActionContext, ActionSpec, initialize_counter, make_action
from ledgerAgent.workers.domains.common import as_dict, compact, require_date, upload_attachment_action
from ledgerAgent.workers.domains.invoices import SalesLine, build_sales_lines, lines_gross

LOGGER = logging.getLogger(__name__)

INSTRUCTIONS = """
Du lager tilbud til kunder.

- Et tilbud krever kunde (customer_id). Finnes ikke kunden, deleger til contact_agent.
- Priser er eksklusive mva med mindre brukeren sier noe annet.
- Et akseptert tilbud blir faktura hos invoice_agent; du lager ikke fakturaer selv.
"""

DEFAULT_VALID_DAYS = 30


class SearchOffersArgs(BaseModel):
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    customer_id: Optional[int] = None


class CreateOfferArgs(BaseModel):
    customer_id: int
    lines: List[SalesLine]
    date: Optional[str] = Field(default=None, description="Tilbudsdato, YYYY-MM-DD (standard i dag)")
    valid_until: Optional[str] = Field(default=None, description="Gyldig til (standard 30 dager)")
    our_reference: Optional[str] = None
    your_reference: Optional[str] = None
    project_id: Optional[int] = None


class EmptyArgs(BaseModel):
    pass


class InitializeOfferCounterArgs(BaseModel):
    start: Optional[int] = Field(default=None, description="Første tilbudsnummer")


def build_actions(ctx: ActionContext) -> List[ActionSpec]:
    client = ctx.client
    counter_start = ctx.settings.accounting.invoice_counter_start

    async def search_offers(date_from: Optional[str] = None, date_to: Optional[str] = None, customer_id: Optional[int] = None) -> Dict[str, Any]:
        offers = await client.list_offers(date_from=date_from, date_to=date_to)
        if customer_id is not None:
            offers = [o for o in offers if (o.get("customer_id") or (o.get("customer") or {}).get("contact_id")) == customer_id]
        return success(f"{len(offers)} tilbud funnet", offers=offers[:25])

    async def create_offer(
        customer_id: int,
        lines: List[Any],
        date: Optional[str] = None,
        valid_until: Optional[str] = None,
        our_reference: Optional[str] = None,
        your_reference: Optional[str] = None,
        project_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        offer_date = require_date(date)
        if valid_until is None:
            valid_until = (_parse(offer_date) + timedelta(days=DEFAULT_VALID_DAYS)).isoformat()
        built = build_sales_lines([as_dict(line) for line in lines])
        created = await client.create_offer(compact({
            "date": offer_date,
            "customer_id": customer_id,
            "lines": built,
            "our_reference": our_reference,
            "your_reference": your_reference,
            "project_id": project_id,
            "valid_until": valid_until,
            "currency": "NOK",
        }))
        offer_id = created.get("offer_id") or created.get("offer_draft_id")
        return success(
            f"Tilbud opprettet (ID {offer_id}), {format_amount(lines_gross(built))} inkl. mva, gyldig til {valid_until}",
            created={"offer": offer_id},
            offer_id=offer_id,
        )

    async def get_offer_counter() -> Dict[str, Any]:
        try:
            value = await client.get_counter("offer")
        except CounterNotInitializedError:
            return success("Nummerserien for tilbud er ikke satt opp ennå.", initialized=False)
        return success(f"Neste tilbudsnummer er {value}", initialized=True, value=value)

    async def initialize_offer_counter(start: Optional[int] = None) -> Dict[str, Any]:
        try:
            value = await client.get_counter("offer")
        except CounterNotInitializedError:
            value = await client.create_counter("offer", start or counter_start)
            return success(f"Nummerserien for tilbud starter på {value}", operation_complete=True, value=value)
        return failure(f"Nummerserien for tilbud er allerede satt opp (neste nummer {value}).", value=value)

    return [
        make_action(
            search_offers,
            name="search_offers",
            description="Søk etter tilbud i en periode, eventuelt for én kunde.",
            args_schema=SearchOffersArgs,
        ),
        make_action(
            create_offer,
            name="create_offer",
            description="Opprett et tilbud til en eksisterende kunde.",
            args_schema=CreateOfferArgs,
            side_effect=True,
            creates="offer",
            intent_fields=("customer_id", "lines", "date"),
            summary=lambda a: f"Opprette tilbud til kunde {a.get('customer_id')} med {len(a.get('lines') or [])} linje(r)",
            corrections={"counter_not_initialized": initialize_counter(client, counter_start)},
        ),
        make_action(
            get_offer_counter,
            name="get_offer_counter",
            description="Vis neste tilbudsnummer, eller at nummerserien ikke er satt opp.",
            args_schema=EmptyArgs,
        ),
        make_action(
            initialize_offer_counter,
            name="initialize_offer_counter",
            description="Sett opp nummerserien for tilbud.",
            args_schema=InitializeOfferCounterArgs,
            side_effect=True,
            summary=lambda a: f"Sette opp nummerserien for tilbud fra {a.get('start') or counter_start}",
        ),
        upload_attachment_action(ctx, ("offer",)),
    ]


def _parse(value: str) -> date:
    return date.fromisoformat(value)
