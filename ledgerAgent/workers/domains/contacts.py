"""Counterparties and the product catalog."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from ledgerAgent.accounting.rules import format_amount, is_valid_sales_vat_type, kroner_to_oere
from ledgerAgent.transcript.records import duplicate_noop, success
from ledgerAgent.utils.error_handler import MissingInformationError
from ledgerAgent.workers.actions import ActionContext, ActionSpec, make_action
from ledgerAgent.workers.domains.common import compact

LOGGER = logging.getLogger(__name__)

INSTRUCTIONS = """
Du har ansvar for kunder, leverandører og produktregisteret.

- Søk alltid før du oppretter. Finnes kontakten allerede, bruk den eksisterende ID-en.
- Oppgi alltid kontaktens ID i svaret, slik at den som spurte kan bruke den videre.
- En kontakt kan være kunde, leverandør eller begge deler.
"""


class SearchContactsArgs(BaseModel):
    name: Optional[str] = Field(default=None, description="Hele eller deler av navnet")
    customer: Optional[bool] = None
    supplier: Optional[bool] = None


class ContactIdArgs(BaseModel):
    contact_id: int


class CreateContactArgs(BaseModel):
    name: str
    customer: bool = False
    supplier: bool = False
    organization_number: Optional[str] = Field(default=None, description="Organisasjonsnummer (9 siffer)")
    email: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    post_code: Optional[str] = None
    city: Optional[str] = None


class UpdateContactArgs(BaseModel):
    contact_id: int
    name: Optional[str] = None
    customer: Optional[bool] = None
    supplier: Optional[bool] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    organization_number: Optional[str] = None


class SearchProductsArgs(BaseModel):
    name: Optional[str] = None


class CreateProductArgs(BaseModel):
    name: str
    unit_price: float = Field(description="Pris i kroner, eksklusive mva")
    vat_type: str = "HIGH"
    income_account: str = "3000"
    product_number: Optional[str] = None


def _same_name(a: Any, b: Any) -> bool:
    return " ".join(str(a or "").lower().split()) == " ".join(str(b or "").lower().split())


def _digits(value: Any) -> str:
    return "".join(ch for ch in str(value or "") if ch.isdigit())


def find_existing_contact(
    contacts: List[Mapping[str, Any]],
    name: str,
    organization_number: Optional[str],
) -> Optional[Mapping[str, Any]]:
    org = _digits(organization_number)
    for contact in contacts:
        if org and _digits(contact.get("organization_number")) == org:
            return contact
        if _same_name(contact.get("name"), name):
            return contact
    return None


def build_actions(ctx: ActionContext) -> List[ActionSpec]:
    client = ctx.client

    async def search_contacts(name: Optional[str] = None, customer: Optional[bool] = None, supplier: Optional[bool] = None) -> Dict[str, Any]:
        contacts = await client.list_contacts(name=name, customer=customer, supplier=supplier)
        found = [
            compact({
                "contact_id": c.get("contact_id"),
                "name": c.get("name"),
                "organization_number": c.get("organization_number"),
                "email": c.get("email"),
                "customer": c.get("customer"),
                "supplier": c.get("supplier"),
            })
            for c in contacts[:25]
        ]
        return success(f"{len(contacts)} kontakter funnet", contacts=found)

    async def get_contact(contact_id: int) -> Dict[str, Any]:
        return success(contact=await client.get_contact(contact_id))

    async def create_contact(
        name: str,
        customer: bool = False,
        supplier: bool = False,
        organization_number: Optional[str] = None,
        email: Optional[str] = None,
        phone_number: Optional[str] = None,
        address: Optional[str] = None,
        post_code: Optional[str] = None,
        city: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not customer and not supplier:
            raise MissingInformationError(f"Skal {name} registreres som kunde eller leverandør?")

        existing = find_existing_contact(await client.list_contacts(name=name), name, organization_number)
        if existing is not None:
            contact_id = existing.get("contact_id")
            LOGGER.info(f"Contact {name!r} already exists as {contact_id}")
            return duplicate_noop("contact", contact_id, f"{existing.get('name')} finnes allerede (kontakt-ID {contact_id})")

        payload = compact({
            "name": name,
            "customer": customer,
            "supplier": supplier,
            "organization_number": _digits(organization_number) or None,
            "email": email,
            "phone_number": phone_number,
        })
        if address or post_code or city:
            payload["address"] = compact({"street_address": address, "post_code": post_code, "city": city, "country": "Norge"})
        created = await client.create_contact(payload)
        contact_id = created.get("contact_id")
        return success(f"Kontakt opprettet: {name} (ID {contact_id})", created={"contact": contact_id}, contact_id=contact_id)

    async def update_contact(
        contact_id: int,
        name: Optional[str] = None,
        customer: Optional[bool] = None,
        supplier: Optional[bool] = None,
        email: Optional[str] = None,
        phone_number: Optional[str] = None,
        organization_number: Optional[str] = None,
    ) -> Dict[str, Any]:
        changes = {
            "name": name,
            "customer": customer,
            "supplier": supplier,
            "email": email,
            "phone_number": phone_number,
            "organization_number": _digits(organization_number) or None,
        }
        current = await client.get_contact(contact_id)
        payload = {**current, **compact(changes)}
        payload.pop("contact_id", None)
        await client.update_contact(contact_id, payload)
        changed = ", ".join(sorted(compact(changes))) or "ingenting"
        return success(f"Kontakt {contact_id} oppdatert ({changed})", operation_complete=True, contact_id=contact_id)

    async def search_products(name: Optional[str] = None) -> Dict[str, Any]:
        products = await client.list_products(name=name)
        return success(f"{len(products)} produkter funnet", products=products[:25])

    async def create_product(
        name: str,
        unit_price: float,
        vat_type: str = "HIGH",
        income_account: str = "3000",
        product_number: Optional[str] = None,
    ) -> Dict[str, Any]:
        vat_type = vat_type.upper()
        if not is_valid_sales_vat_type(vat_type):
            raise MissingInformationError(f"Mva-typen «{vat_type}» er ikke gyldig. Hvilken mva-sats gjelder for {name}?")
        existing = [p for p in await client.list_products(name=name) if _same_name(p.get("name"), name)]
        if existing:
            product_id = existing[0].get("product_id")
            return duplicate_noop("product", product_id, f"Produktet {name} finnes allerede (ID {product_id})")
        created = await client.create_product(compact({
            "name": name,
            "unit_price": kroner_to_oere(unit_price),
            "vat_type": vat_type,
            "income_account": income_account,
            "product_number": product_number,
            "active": True,
        }))
        product_id = created.get("product_id")
        return success(
            f"Produkt opprettet: {name}, {format_amount(kroner_to_oere(unit_price))} eks. mva (ID {product_id})",
            created={"product": product_id},
            product_id=product_id,
        )

    def _contact_summary(a: Mapping[str, Any]) -> str:
        roles = [r for r, on in (("kunde", a.get("customer")), ("leverandør", a.get("supplier"))) if on]
        org = f", org.nr. {a['organization_number']}" if a.get("organization_number") else ""
        return f"Opprette kontakt {a.get('name')} ({' og '.join(roles) or 'uten rolle'}{org})"

    return [
        make_action(
            search_contacts,
            name="search_contacts",
            description="Søk etter kunder og leverandører på navn.",
            args_schema=SearchContactsArgs,
        ),
        make_action(
            get_contact,
            name="get_contact",
            description="Hent én kontakt med adresse og kontaktpersoner.",
            args_schema=ContactIdArgs,
        ),
        make_action(
            create_contact,
            name="create_contact",
            description="Opprett en kunde eller leverandør. Finnes kontakten allerede, returneres den eksisterende ID-en.",
            args_schema=CreateContactArgs,
            side_effect=True,
            creates="contact",
            intent_fields=("name", "organization_number"),
            summary=_contact_summary,
        ),
        make_action(
            update_contact,
            name="update_contact",
            description="Endre opplysninger på en eksisterende kontakt.",
            args_schema=UpdateContactArgs,
            side_effect=True,
            summary=lambda a: "Oppdatere kontakt {}: {}".format(
                a.get("contact_id"),
                ", ".join(f"{k}={v}" for k, v in a.items() if k != "contact_id" and v is not None),
            ),
        ),
        make_action(
            search_products,
            name="search_products",
            description="Søk i produktregisteret.",
            args_schema=SearchProductsArgs,
        ),
        make_action(
            create_product,
            name="create_product",
            description="Opprett et produkt med pris eksklusive mva.",
            args_schema=CreateProductArgs,
            side_effect=True,
            creates="product",
            intent_fields=("name",),
            summary=lambda a: f"Opprette produkt {a.get('name')} til {a.get('unit_price')} kr eks. mva",
        ),
    ]
