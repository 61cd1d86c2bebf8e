"""Norwegian accounting rules kept as data.

VAT tables, account ranges (NS 4102), amount parsing and formatting, and the
deterministic question builders used by the workers before they act.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

# ========== VAT ==========

# Rate per VAT type. Types missing here carry no VAT.
VAT_RATES: Dict[str, float] = {
    "HIGH": 0.25,
    "MEDIUM": 0.15,
    "LOW": 0.12,
    "RAW_FISH": 0.1111,
    "NONE": 0.0,
    "EXEMPT": 0.0,
    "HIGH_DIRECT": 0.25,
    "HIGH_BASIS": 0.25,
    "MEDIUM_DIRECT": 0.15,
    "MEDIUM_BASIS": 0.15,
}

SALES_VAT_TYPES: Tuple[str, ...] = (
    "HIGH",
    "MEDIUM",
    "LOW",
    "RAW_FISH",
    "NONE",
    "EXEMPT",
    "EXEMPT_IMPORT_EXPORT",
    "EXEMPT_REVERSE",
    "OUTSIDE",
)

PURCHASE_VAT_TYPES: Tuple[str, ...] = (
    "HIGH",
    "MEDIUM",
    "LOW",
    "RAW_FISH",
    "NONE",
    "HIGH_DIRECT",
    "HIGH_BASIS",
    "MEDIUM_DIRECT",
    "MEDIUM_BASIS",
    "NONE_IMPORT_BASIS",
    "HIGH_FOREIGN_SERVICE_DEDUCTIBLE",
    "HIGH_FOREIGN_SERVICE_NONDEDUCTIBLE",
    "LOW_FOREIGN_SERVICE_DEDUCTIBLE",
    "LOW_FOREIGN_SERVICE_NONDEDUCTIBLE",
    "HIGH_PURCHASE_OF_EMISSIONSTRADING_OR_GOLD_DEDUCTIBLE",
    "HIGH_PURCHASE_OF_EMISSIONSTRADING_OR_GOLD_NONDEDUCTIBLE",
)

PURCHASE_KINDS: Tuple[str, ...] = ("cash_purchase", "supplier")


def is_valid_sales_vat_type(vat_type: str) -> bool:
    return vat_type in SALES_VAT_TYPES


def is_valid_purchase_vat_type(vat_type: str) -> bool:
    return vat_type in PURCHASE_VAT_TYPES


# ========== Accounts (NS 4102) ==========

ACCOUNT_RANGES: Dict[str, Tuple[int, int]] = {
    "assets": (1000, 1999),
    "equity_liability": (2000, 2999),
    "income": (3000, 3999),
    "cost_of_goods": (4000, 4999),
    "personnel": (5000, 5999),
    "depreciation": (6000, 6099),
    "other_operating": (6100, 7999),
    "financial": (8000, 8999),
}


def account_number(code: Any) -> int:
    """'1920:10001' -> 1920"""
    return int(str(code).split(":")[0])


def account_type(code: Any) -> str:
    number = account_number(code)
    if 1000 <= number <= 1999:
        return "asset"
    if 2000 <= number <= 2999:
        return "liability"
    if 3000 <= number <= 3999:
        return "income"
    if 4000 <= number <= 7999:
        return "expense"
    if 8000 <= number <= 8999:
        return "financial"
    return "unknown"


def is_bank_account(code: Any) -> bool:
    return str(code).startswith("19")


@dataclass(frozen=True)
class AccountHint:
    code: str
    name: str
    keywords: Tuple[str, ...]
    vat_type: str = "HIGH"
    vat_deductible: bool = True
    note: str = ""


# Keyword table for expense account suggestions. First match wins per code.
EXPENSE_ACCOUNT_HINTS: Tuple[AccountHint, ...] = (
    AccountHint("4000", "Innkjøp av varer", ("varekjøp", "varer for videresalg", "innkjøp")),
    AccountHint("6300", "Leie lokaler", ("husleie", "leie lokale", "kontorleie")),
    AccountHint("6540", "Inventar", ("inventar", "møbler", "stol", "pult", "skrivebord")),
    AccountHint("6551", "Datautstyr (hardware)", ("pc", "laptop", "skjerm", "mac", "datautstyr", "tastatur", "mus")),
    AccountHint("6553", "Programvare", ("programvare", "lisens", "abonnement", "software", "saas")),
    AccountHint("6800", "Kontorrekvisita", ("kontorrekvisita", "papir", "penner", "rekvisita", "clas ohlson")),
    AccountHint("6900", "Telefon", ("telefon", "mobil", "mobilabonnement")),
    AccountHint("6907", "Internett", ("internett", "bredbånd", "fiber")),
    AccountHint("7100", "Bilgodtgjørelse", ("kjøregodtgjørelse", "bilgodtgjørelse", "km-godtgjørelse")),
    AccountHint(
        "7140", "Reisekostnad, ikke oppgavepliktig",
        ("fly", "tog", "hotell", "taxi", "drosje", "buss", "reise", "parkering", "bompenger"),
        vat_type="LOW", note="Spør om reisen var innenlands eller utenlands",
    ),
    AccountHint(
        "7350", "Representasjon, fradragsberettiget",
        ("representasjon", "kundemiddag", "kundelunsj", "forretningslunsj"),
        vat_type="NONE", vat_deductible=False, note="Representasjon gir ikke MVA-fradrag",
    ),
    AccountHint(
        "5910", "Kantinekostnader",
        ("lunsj", "mat", "middag", "bevertning", "kaffe", "kantine"),
        vat_type="MEDIUM", note="Spør om dette var internt eller med eksterne",
    ),
    AccountHint("7320", "Reklamekostnad", ("reklame", "annonse", "markedsføring", "facebook", "google ads")),
    AccountHint("7770", "Bank- og kortgebyrer", ("gebyr", "bankgebyr", "kortgebyr"), vat_type="NONE", vat_deductible=False),
    AccountHint("6700", "Revisjons- og regnskapshonorar", ("regnskapsfører", "revisor", "revisjon")),
    AccountHint("7500", "Forsikringspremie", ("forsikring",), vat_type="NONE", vat_deductible=False),
)

INCOME_ACCOUNT_HINTS: Tuple[AccountHint, ...] = (
    AccountHint("3000", "Salgsinntekt, avgiftspliktig", ("salg", "konsulent", "tjeneste", "timer", "honorar")),
    AccountHint("3100", "Salgsinntekt, avgiftsfri", ("avgiftsfri", "fritatt", "eksport"), vat_type="EXEMPT"),
)


def suggest_accounts(
    description: str,
    account_kind: str = "expense",
    chart: Optional[Iterable[Mapping[str, Any]]] = None,
    limit: int = 3,
) -> List[Dict[str, Any]]:
    """Suggest up to ``limit`` accounts for a free-text description.

    When ``chart`` (the company's accounts) is given, suggestions are limited
    to codes that exist in it and use the company's own account names.
    """
    hints = EXPENSE_ACCOUNT_HINTS if account_kind == "expense" else INCOME_ACCOUNT_HINTS
    text = description.lower()
    known: Optional[Dict[str, str]] = None
    if chart is not None:
        known = {str(account_number(a.get("code"))): str(a.get("name", "")) for a in chart if a.get("code")}

    scored: List[Tuple[int, AccountHint]] = []
    for hint in hints:
        hits = sum(1 for word in hint.keywords if word in text)
        if hits:
            scored.append((hits, hint))
    scored.sort(key=lambda item: -item[0])

    suggestions: List[Dict[str, Any]] = []
    for _, hint in scored:
        if known is not None and hint.code not in known:
            continue
        suggestions.append({
            "code": hint.code,
            "name": (known or {}).get(hint.code) or hint.name,
            "vat_type": hint.vat_type,
            "vat_deductible": hint.vat_deductible,
            "note": hint.note,
        })
        if len(suggestions) >= limit:
            break
    return suggestions


# ========== Amounts ==========

def kroner_to_oere(kroner: float) -> int:
    return int(round(kroner * 100))


def oere_to_kroner(oere: int) -> float:
    return oere / 100


def format_amount(oere: int) -> str:
    """12500050 -> '125 000,50 kr'"""
    text = f"{oere_to_kroner(oere):,.2f}".replace(",", " ").replace(".", ",")
    return f"{text} kr"


def gross_to_net(gross_oere: int, vat_type: str) -> Tuple[int, int]:
    """Split a gross amount (incl. VAT) into (net, vat), both in øre."""
    rate = VAT_RATES.get(vat_type, 0.0)
    net = int(round(gross_oere / (1 + rate)))
    return net, gross_oere - net


def net_to_gross(net_oere: int, vat_type: str) -> int:
    return int(round(net_oere * (1 + VAT_RATES.get(vat_type, 0.0))))


_NUMBER = r"\d{1,3}(?:[ .]\d{3})+(?:,\d{1,2})?|\d+(?:[,.]\d{1,2})?"
_AMOUNT_PATTERN = re.compile(
    rf"(?:\b(?:kr|nok)\.?\s*(?P<pre>{_NUMBER}))|(?:(?<![\d,.])(?P<post>{_NUMBER})\s*(?:kr\b|kroner\b|nok\b|,-))",
    re.IGNORECASE,
)


def _to_float(raw: str) -> float:
    cleaned = raw.replace(" ", "")
    if "," in cleaned:
        cleaned = cleaned.replace(".", "").replace(",", ".")
    elif re.fullmatch(r"\d{1,3}(?:\.\d{3})+", cleaned):
        cleaned = cleaned.replace(".", "")
    return float(cleaned)


def find_amounts(text: str) -> List[float]:
    """Extract kroner amounts written with a currency marker.

    >>> find_amounts("Kjøpte papir for 500 kr og penner for kr 1 250,50")
    [500.0, 1250.5]
    """
    amounts: List[float] = []
    for match in _AMOUNT_PATTERN.finditer(text or ""):
        raw = match.group("pre") or match.group("post")
        try:
            amounts.append(_to_float(raw))
        except ValueError:
            continue
    return amounts


def format_kroner(kroner: float) -> str:
    if float(kroner).is_integer():
        return f"{int(kroner)} kr"
    return format_amount(kroner_to_oere(kroner))


# ========== VAT treatment detection ==========

_VAT_WORD = r"(?:mva|moms|vat|merverdiavgift)"
_VAT_TREATMENT_PATTERNS = (
    re.compile(rf"\b(?:inkl\w*|ekskl\w*|eks|uten|med|incl\w*|excl\w*|pluss?)\.?\s*{_VAT_WORD}\b", re.IGNORECASE),
    re.compile(rf"\+\s*{_VAT_WORD}\b", re.IGNORECASE),
    re.compile(rf"\b{_VAT_WORD}[- ]?(?:fri|fritt|fritatt|pliktig|inkludert|ekskludert)\b", re.IGNORECASE),
    re.compile(rf"\b\d{{1,2}}(?:[,.]\d+)?\s*%\s*{_VAT_WORD}\b", re.IGNORECASE),
    re.compile(rf"\b{_VAT_WORD}\s*\d{{1,2}}(?:[,.]\d+)?\s*%", re.IGNORECASE),
    re.compile(r"\b(?:brutto|netto|avgiftsfri|fritatt for mva)\b", re.IGNORECASE),
    re.compile(r"\bvat_?type\b", re.IGNORECASE),
)

# Context keys that settle VAT treatment when present
VAT_CONTEXT_KEYS = ("vat_type", "vat_treatment", "vat_included", "includes_vat")


def states_vat_treatment(text: str) -> bool:
    return any(p.search(text or "") for p in _VAT_TREATMENT_PATTERNS)


def vat_clarification(
    amount_texts: Sequence[str],
    settling_texts: Sequence[str] = (),
    context: Optional[Mapping[str, Any]] = None,
) -> Optional[str]:
    """Return a single VAT question, or None when nothing is ambiguous.

    Args:
        amount_texts: texts describing what to register (task, latest user turn)
        settling_texts: earlier user turns and document readings in the task
        context: structured delegation context

    Returns:
        One clarifying question covering every amount, or None
    """
    amounts: List[float] = []
    for text in amount_texts:
        amounts.extend(find_amounts(text))
    if not amounts:
        return None

    if context and any(context.get(key) not in (None, "") for key in VAT_CONTEXT_KEYS):
        return None
    if any(states_vat_treatment(text) for text in list(amount_texts) + list(settling_texts)):
        return None

    unique: List[float] = []
    for amount in amounts:
        if amount not in unique:
            unique.append(amount)
    listed = ", ".join(format_kroner(a) for a in unique)
    if len(unique) == 1:
        return f"Er {listed} inklusive eller eksklusive mva?"
    return f"Er beløpene ({listed}) inklusive eller eksklusive mva?"


_VAT_QUESTION = re.compile(r"inklusive eller eksklusive mva", re.IGNORECASE)
_SHORT_VAT_ANSWER = re.compile(r"^\W*(?:inkl\w*|ekskl\w*|eks|brutto|netto|med mva|uten mva)\b", re.IGNORECASE)


def vat_question_answered(turns: Sequence[Tuple[str, str]]) -> bool:
    """True when a user turn answers an earlier VAT question with a short reply.

    Args:
        turns: ``(role, text)`` pairs in order, role being "user" or "assistant"

    >>> vat_question_answered([("assistant", "Er 500 kr inklusive eller eksklusive mva?"), ("user", "Inkludert")])
    True
    """
    asked = False
    for role, text in turns:
        if role == "assistant":
            asked = bool(_VAT_QUESTION.search(text or ""))
        elif role == "user" and asked and _SHORT_VAT_ANSWER.search(text or ""):
            return True
    return False


# ========== Bank matching ==========

def date_window(center: str, days: int) -> Tuple[str, str]:
    target = date.fromisoformat(center)
    return (target - timedelta(days=days)).isoformat(), (target + timedelta(days=days)).isoformat()


def _transaction_key(entry: Mapping[str, Any]) -> Any:
    if entry.get("transaction_id") is not None:
        return ("transaction", entry["transaction_id"])
    if entry.get("journal_entry_id") is not None:
        return ("journal_entry", entry["journal_entry_id"])
    return id(entry)


def match_bank_lines(
    journal_entries: Iterable[Mapping[str, Any]],
    amount_kr: float,
    tolerance_kr: float,
    default_date: str = "",
) -> List[Dict[str, Any]]:
    """Transactions with a bank-account line whose absolute amount is within the tolerance.

    A transaction touching several bank lines of the same amount is listed once.
    """
    target = kroner_to_oere(amount_kr)
    margin = kroner_to_oere(tolerance_kr)
    matches: List[Dict[str, Any]] = []
    seen = set()
    for entry in journal_entries:
        key = _transaction_key(entry)
        if key in seen:
            continue
        for line in entry.get("lines") or []:
            account = line.get("account") or line.get("debit_account") or line.get("credit_account")
            if not account or not is_bank_account(account):
                continue
            amount = int(line.get("amount") or 0)
            if abs(abs(amount) - target) <= margin:
                seen.add(key)
                matches.append({
                    "journal_entry_id": entry.get("journal_entry_id"),
                    "transaction_id": entry.get("transaction_id"),
                    "date": entry.get("date") or default_date,
                    "amount": amount,
                    "description": entry.get("description") or "Ingen beskrivelse",
                    "bank_account": account,
                })
                break
    return matches


def bank_match_question(candidates: Sequence[Mapping[str, Any]], amount_kr: float, on_date: str) -> str:
    """The question to ask after a bank match search.

    - no candidate: ask whether the expense is paid or unpaid
    - one candidate: ask to confirm it, naming date, amount and description
    - several: list them and ask which one
    """
    if not candidates:
        return (
            f"Jeg fant ingen banktransaksjon på {format_kroner(amount_kr)} rundt {on_date}. "
            "Er utgiften allerede betalt, eller er den ubetalt?"
        )
    if len(candidates) == 1:
        c = candidates[0]
        return (
            f"Jeg fant en banktransaksjon {c['date']} på {format_amount(abs(int(c['amount'])))} "
            f"med beskrivelse «{c['description']}». Er dette samme kjøp?"
        )
    lines = [f"Jeg fant {len(candidates)} mulige banktransaksjoner:"]
    for i, c in enumerate(candidates, 1):
        lines.append(f"{i}) {c['date']}, {format_amount(abs(int(c['amount'])))}, «{c['description']}»")
    lines.append("Hvilken av dem gjelder dette kjøpet?")
    return "\n".join(lines)


# ========== Dates ==========

def today_iso() -> str:
    return date.today().isoformat()


def is_valid_iso_date(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


# ========== Statement reconciliation ==========

def same_bank_account(account: Any, account_code: str) -> bool:
    """Exact code, or the same base account ("1920" covers "1920:10001")."""
    account = str(account)
    return account == account_code or account.split(":")[0] == account_code.split(":")[0]


def reconcile_statement(
    statement: Sequence[Mapping[str, Any]],
    booked: Sequence[Mapping[str, Any]],
    tolerance_kr: float,
    days: int,
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Pair statement lines with booked bank lines.

    Each statement line (amount in kroner, negative = out) takes the unused
    booked line (amount in øre) within the amount tolerance and day margin
    whose date is closest. Signs are ignored on both sides.

    Returns:
        (matched, unmatched); both keep the statement line's 1-based index
    """
    margin = kroner_to_oere(tolerance_kr)
    used = set()
    matched: List[Dict[str, Any]] = []
    unmatched: List[Dict[str, Any]] = []
    for index, line in enumerate(statement, 1):
        amount = kroner_to_oere(float(line["amount"]))
        on_date = date.fromisoformat(str(line["date"]))
        best, best_gap = None, None
        for position, candidate in enumerate(booked):
            if position in used:
                continue
            if abs(abs(amount) - abs(int(candidate.get("amount") or 0))) > margin:
                continue
            gap = abs((date.fromisoformat(str(candidate["date"])) - on_date).days)
            if gap > days:
                continue
            if best_gap is None or gap < best_gap:
                best, best_gap = position, gap
        if best is None:
            unmatched.append({"index": index, "date": line["date"], "amount": line["amount"], "description": line.get("description") or ""})
            continue
        used.add(best)
        hit = booked[best]
        matched.append({
            "index": index,
            "statement_date": line["date"],
            "statement_amount": line["amount"],
            "statement_description": line.get("description") or "",
            "journal_entry_id": hit.get("journal_entry_id"),
            "journal_date": hit.get("date"),
            "journal_amount": oere_to_kroner(int(hit.get("amount") or 0)),
            "journal_description": hit.get("description") or "Ingen beskrivelse",
        })
    return matched, unmatched


def reconciliation_summary(
    account_code: str,
    period_from: str,
    period_to: str,
    total: int,
    matched: Sequence[Mapping[str, Any]],
    unmatched: Sequence[Mapping[str, Any]],
) -> str:
    lines = [
        f"Periode: {period_from} til {period_to}",
        f"Bankkonto: {account_code}",
        f"Totalt i kontoutskriften: {total} transaksjoner",
        f"Allerede bokført (matchet): {len(matched)}",
        f"Trenger bokføring: {len(unmatched)}",
    ]
    if unmatched:
        lines += ["", "Transaksjoner som trenger bokføring:"]
        for u in unmatched:
            direction = "ut" if float(u["amount"]) < 0 else "inn"
            lines.append(f"  {u['index']}. {u['date']} — {u['description']} — {format_amount(abs(kroner_to_oere(float(u['amount']))))} ({direction})")
    return "\n".join(lines)
