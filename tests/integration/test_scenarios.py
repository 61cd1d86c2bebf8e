"""End-to-end conversations: coordinator → worker → in-memory ledger.

The models are scripted; everything between them (policy, delegation,
distillation, the action gate, the ledger calls) is the real code.
"""

import pytest
from langchain_core.messages import AIMessage

from tests.fakes import PURCHASE_MARKER, InMemoryLedger, calls

RECEIPTS = [
    {"date": "2026-10-01", "description": "Clas Ohlson kontorrekvisita", "lines": [{"description": "Papir", "amount": 500, "account": "6800"}]},
    {"date": "2026-10-02", "description": "Rema 1000 møtemat", "lines": [{"description": "Lunsj", "amount": 345, "vat_type": "MEDIUM", "account": "5910"}]},
    {"date": "2026-10-03", "description": "Taxi til kunde", "lines": [{"description": "Taxi", "amount": 289, "vat_type": "LOW", "account": "7140"}]},
    {"date": "2026-10-04", "description": "Elkjøp skjerm", "lines": [{"description": "Skjerm", "amount": 2490, "account": "6540"}]},
]

FILES = [{"name": f"kvittering_{i}.jpg", "type": "image/jpeg", "data": b"\xff\xd8" + bytes([i])} for i in range(1, 5)]

PURCHASE_TASK = "Registrer de fire kvitteringene som kjøp, ett kjøp per kvittering. Beløpene er inkl. mva."


def _purchase_model(app):
    return app.models["worker"].routes[PURCHASE_MARKER]


# ========== Four receipts ==========

@pytest.mark.asyncio
async def test_four_receipts_make_four_purchases(make_app):
    ledger = InMemoryLedger()
    uploads = [
        ("upload_attachment", {"entity_type": "purchase", "entity_id": i, "file_index": i})
        for i in range(1, 5)
    ]
    app = make_app(
        ledger,
        coordinator=[calls(("delegate_to_purchase_agent", {"task": PURCHASE_TASK}))],
        workers={PURCHASE_MARKER: [
            calls(*[("create_purchase", receipt) for receipt in RECEIPTS], prefix="propose"),
            calls(*uploads, prefix="upload"),
            # repeating a creation after the uploads is a no-op
            calls(("create_purchase", RECEIPTS[0]), prefix="again"),
        ]},
    )

    first = await app.coordinator.handle_turn(
        app.new_session(), "Registrer kvitteringene fra forrige uke, alle beløp inkl. mva", files=FILES,
    )

    assert first.awaiting_confirmation
    assert first.delegations == ["purchase_agent"]
    assert "Skal jeg gjennomføre dette?" in first.reply
    assert first.reply.count("kr inkl. mva") == 4
    assert ledger.calls == []

    second = await app.coordinator.handle_turn(first.session, "ja")

    assert second.delegations == ["purchase_agent"]
    assert ledger.count("create_purchase") == 4
    assert ledger.count("add_attachment") == 4
    assert sorted(ledger.purchases) == [1, 2, 3, 4]
    assert [a[0]["filename"] for _, a in sorted(ledger.attachments.items())] == [f["name"] for f in FILES]

    third = await app.coordinator.handle_turn(second.session, "Ja takk")

    assert third.delegations == ["purchase_agent"]
    assert ledger.count("create_purchase") == 4
    assert ledger.count("add_attachment") <= 4
    assert len(third.session.relay) == 4


@pytest.mark.asyncio
async def test_resent_receipts_are_not_uploaded_twice(make_app):
    ledger = InMemoryLedger()
    app = make_app(
        ledger,
        coordinator=[calls(("delegate_to_purchase_agent", {"task": PURCHASE_TASK}))],
        workers={PURCHASE_MARKER: [
            calls(*[("create_purchase", receipt) for receipt in RECEIPTS], prefix="propose"),
            calls(*[
                ("upload_attachment", {"entity_type": "purchase", "entity_id": i, "file_index": i})
                for i in range(1, 5)
            ], prefix="upload"),
            AIMessage(content="Kjøpene er registrert med kvitteringer."),
            calls(*[
                ("upload_attachment", {"entity_type": "purchase", "entity_id": i, "file_index": i + 4})
                for i in range(1, 5)
            ], prefix="reupload"),
        ]},
    )

    first = await app.coordinator.handle_turn(app.new_session(), "Registrer kvitteringene, inkl. mva", files=FILES)
    second = await app.coordinator.handle_turn(first.session, "ja")
    third = await app.coordinator.handle_turn(second.session, "Her er kvitteringene igjen", files=FILES)

    assert third.delegations == ["purchase_agent"]
    assert len(third.session.relay) == 8
    assert ledger.count("create_purchase") == 4
    assert ledger.count("add_attachment") == 4


# ========== VAT question ==========

@pytest.mark.asyncio
async def test_amount_without_vat_treatment_gets_one_question(make_app):
    ledger = InMemoryLedger()
    app = make_app(
        ledger,
        coordinator=[
            calls(("delegate_to_purchase_agent", {"task": "Registrer kjøp av kontorrekvisita for 500 kr i dag"})),
            calls(("delegate_to_purchase_agent", {"task": "Registrer kjøp av kontorrekvisita for 500 kr inkl. mva i dag"})),
        ],
        workers={PURCHASE_MARKER: [
            calls(("create_purchase", RECEIPTS[0])),
        ]},
    )

    first = await app.coordinator.handle_turn(app.new_session(), "Kjøpte kontorrekvisita for 500 kr")

    assert first.needs_input
    assert first.reply == "Er 500 kr inklusive eller eksklusive mva?"
    assert _purchase_model(app).seen == []

    second = await app.coordinator.handle_turn(first.session, "inkl. mva")

    assert "inklusive eller eksklusive" not in second.reply
    assert second.awaiting_confirmation
    assert "500,00 kr inkl. mva" in second.reply
    transcript_text = " ".join(str(m.content) for m in second.session.transcript.messages)
    assert transcript_text.count("inklusive eller eksklusive mva") == 1
    assert ledger.calls == []


@pytest.mark.asyncio
async def test_amount_with_vat_treatment_gets_no_question(make_app):
    ledger = InMemoryLedger()
    app = make_app(
        ledger,
        coordinator=[calls(("delegate_to_purchase_agent", {"task": "Registrer kjøp av kontorrekvisita for 500 kr inkl. mva"}))],
        workers={PURCHASE_MARKER: [calls(("create_purchase", RECEIPTS[0]))]},
    )

    result = await app.coordinator.handle_turn(app.new_session(), "Kjøpte kontorrekvisita for 500 kr inkl. mva")

    assert not result.needs_input
    assert "inklusive eller eksklusive" not in result.reply
    assert result.awaiting_confirmation
    assert len(_purchase_model(app).seen) == 1


# ========== Bank matching ==========

BANK_TASK = "Kjøpet hos Clas Ohlson 2026-10-10 på 500 kr inkl. mva: finn ut om det er betalt"


@pytest.mark.asyncio
async def test_no_bank_candidate_asks_paid_or_unpaid(make_app):
    ledger = InMemoryLedger(journal_entries=[])
    app = make_app(
        ledger,
        coordinator=[calls(("delegate_to_purchase_agent", {"task": BANK_TASK}))],
        workers={PURCHASE_MARKER: [calls(("find_bank_matches", {"amount": 500, "date": "2026-10-10"}))]},
    )

    result = await app.coordinator.handle_turn(app.new_session(), "Er kjøpet på 500 kr inkl. mva fra 10. oktober betalt?")

    assert result.needs_input
    assert "betalt, eller er den ubetalt?" in result.reply
    assert ledger.calls == []


@pytest.mark.asyncio
async def test_single_bank_candidate_is_named_for_confirmation(make_app):
    ledger = InMemoryLedger(journal_entries=[
        {"journal_entry_id": 1, "date": "2026-10-09", "description": "Clas Ohlson", "lines": [
            {"account": "1920:10001", "amount": -50150}, {"account": "6800", "amount": 50150},
        ]},
        {"journal_entry_id": 2, "date": "2026-10-30", "description": "Clas Ohlson", "lines": [
            {"account": "1920:10001", "amount": -50000},
        ]},
    ])
    app = make_app(
        ledger,
        coordinator=[calls(("delegate_to_purchase_agent", {"task": BANK_TASK}))],
        workers={PURCHASE_MARKER: [calls(("find_bank_matches", {"amount": 500, "date": "2026-10-10"}))]},
    )

    result = await app.coordinator.handle_turn(app.new_session(), "Er kjøpet på 500 kr inkl. mva fra 10. oktober betalt?")

    assert result.needs_input
    assert "2026-10-09" in result.reply
    assert "501,50 kr" in result.reply
    assert "Clas Ohlson" in result.reply
    assert "2026-10-30" not in result.reply
