"""Tests for the accounting rules: amounts, VAT and bank matching."""

import pytest

from ledgerAgent.accounting.rules import (
    account_type,
    bank_match_question,
    date_window,
    find_amounts,
    format_amount,
    gross_to_net,
    match_bank_lines,
    net_to_gross,
    reconcile_statement,
    reconciliation_summary,
    same_bank_account,
    states_vat_treatment,
    suggest_accounts,
    vat_clarification,
    vat_question_answered,
)


@pytest.mark.parametrize("text,expected", [
    ("Kjøpte papir for 500 kr", [500.0]),
    ("kr 1 250,50 og 99,90 kr", [1250.5, 99.9]),
    ("NOK 10.000", [10000.0]),
    ("Faktura nr 12345", []),
    ("200,- i kontanter", [200.0]),
])
def test_find_amounts(text, expected):
    assert find_amounts(text) == expected


def test_vat_split_and_format():
    assert gross_to_net(12500, "HIGH") == (10000, 2500)
    assert net_to_gross(10000, "MEDIUM") == 11500
    assert gross_to_net(10000, "NONE") == (10000, 0)
    assert format_amount(12500050) == "125 000,50 kr"


@pytest.mark.parametrize("text", [
    "500 kr inkl. mva",
    "500 kr eks mva",
    "500 kr + mva",
    "500 kr, mva-fritt",
    "500 kr med 25 % mva",
    "brutto 500 kr",
])
def test_states_vat_treatment(text):
    assert states_vat_treatment(text)


def test_vat_question_for_bare_amount():
    question = vat_clarification(["Kjøpte kontorrekvisita for 500 kr"])
    assert question == "Er 500 kr inklusive eller eksklusive mva?"


def test_no_vat_question_when_treatment_is_stated():
    assert vat_clarification(["Kjøpte kontorrekvisita for 500 kr inkl. mva"]) is None
    assert vat_clarification(["500 kr"], ["alle beløp er inkl. mva"]) is None
    assert vat_clarification(["500 kr"], context={"vat_type": "HIGH"}) is None
    assert vat_clarification(["Registrer kvitteringen"]) is None


def test_one_question_covers_several_amounts():
    question = vat_clarification(["Papir 500 kr og toner 1 200 kr", "500 kr"])
    assert question.count("?") == 1
    assert "500 kr, 1200 kr" in question


def test_short_answer_settles_the_question():
    turns = [("user", "500 kr papir"), ("assistant", "Er 500 kr inklusive eller eksklusive mva?"), ("user", "inkludert")]
    assert vat_question_answered(turns)
    assert not vat_question_answered([("user", "inkludert")])


def test_account_suggestions_and_types():
    codes = [s["code"] for s in suggest_accounts("Kontorrekvisita fra Clas Ohlson")]
    assert codes[0] == "6800"
    assert suggest_accounts("hotell i Bergen", chart=[{"code": "6800", "name": "Kontor"}]) == []
    assert account_type("1920:10001") == "asset"
    assert account_type(3000) == "income"


ENTRIES = [
    {"journal_entry_id": 1, "date": "2026-10-10", "description": "Clas Ohlson", "lines": [{"account": "1920:10001", "amount": -50150}]},
    {"journal_entry_id": 2, "date": "2026-10-11", "description": "Rema", "lines": [{"account": "1920:10001", "amount": -60000}]},
    {"journal_entry_id": 3, "date": "2026-10-11", "description": "Kostnad", "lines": [{"account": "6800", "amount": 50000}]},
]


def test_bank_matching_tolerance():
    assert [c["journal_entry_id"] for c in match_bank_lines(ENTRIES, 500, 2.0)] == [1]
    assert match_bank_lines(ENTRIES, 495, 2.0) == []
    assert date_window("2026-10-10", 5) == ("2026-10-05", "2026-10-15")


def test_bank_match_questions():
    none = bank_match_question([], 500, "2026-10-10")
    assert "betalt" in none and "ubetalt" in none

    one = bank_match_question(match_bank_lines(ENTRIES, 500, 2.0), 500, "2026-10-10")
    assert "2026-10-10" in one
    assert "501,50 kr" in one
    assert "Clas Ohlson" in one

    many = bank_match_question(match_bank_lines(ENTRIES, 550, 60.0), 550, "2026-10-10")
    assert "1)" in many and "2)" in many


def test_transaction_with_two_bank_lines_is_one_candidate():
    transfer = {"journal_entry_id": 8, "transaction_id": 80, "date": "2026-10-12", "description": "Overføring", "lines": [
        {"account": "1920:10001", "amount": -50000},
        {"account": "1920:10002", "amount": 50000},
    ]}
    candidates = match_bank_lines([transfer], 500, 2.0)
    assert [(c["journal_entry_id"], c["bank_account"]) for c in candidates] == [(8, "1920:10001")]


def test_same_transaction_listed_twice_is_one_candidate():
    first = {"journal_entry_id": 8, "transaction_id": 80, "date": "2026-10-12", "description": "Husleie", "lines": [{"account": "1920:10001", "amount": -50000}]}
    second = {**first, "journal_entry_id": 9}
    assert len(match_bank_lines([first, second], 500, 2.0)) == 1


# ========== Statement reconciliation ==========

BOOKED = [
    {"journal_entry_id": 1, "date": "2026-10-03", "description": "Rema 1000", "amount": -25000},
    {"journal_entry_id": 2, "date": "2026-10-09", "description": "Rema 1000", "amount": -25200},
    {"journal_entry_id": 3, "date": "2026-10-20", "description": "Kunde betaler", "amount": 500000},
]


def test_statement_lines_take_the_closest_booked_line():
    statement = [
        {"date": "2026-10-08", "amount": -250, "description": "REMA 1000 OSLO"},
        {"date": "2026-10-04", "amount": -251, "description": "REMA 1000 OSLO"},
        {"date": "2026-10-21", "amount": 5000, "description": "Innbetaling"},
        {"date": "2026-10-25", "amount": -89, "description": "Kaffe"},
    ]

    matched, unmatched = reconcile_statement(statement, BOOKED, 5.0, 5)

    assert [(m["index"], m["journal_entry_id"]) for m in matched] == [(1, 2), (2, 1), (3, 3)]
    assert matched[0]["journal_amount"] == -252.0
    assert unmatched == [{"index": 4, "date": "2026-10-25", "amount": -89, "description": "Kaffe"}]


def test_booked_line_is_used_once():
    statement = [{"date": "2026-10-03", "amount": -250, "description": "a"}, {"date": "2026-10-03", "amount": -250, "description": "b"}]
    matched, unmatched = reconcile_statement(statement, BOOKED[:1], 5.0, 5)
    assert [m["index"] for m in matched] == [1]
    assert [u["index"] for u in unmatched] == [2]


def test_reconciliation_summary_lists_what_needs_booking():
    summary = reconciliation_summary("1920:10001", "2026-10-01", "2026-10-31", 2, [{"index": 1}], [
        {"index": 2, "date": "2026-10-25", "amount": -89, "description": "Kaffe"},
    ])
    assert "Allerede bokført (matchet): 1" in summary
    assert "Trenger bokføring: 1" in summary
    assert "2. 2026-10-25 — Kaffe — 89,00 kr (ut)" in summary


def test_bank_account_codes_match_on_base_account():
    assert same_bank_account("1920:10001", "1920")
    assert same_bank_account("1920", "1920:10001")
    assert not same_bank_account("1500", "1920")
