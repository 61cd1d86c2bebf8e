"""Action journal: action records written as each call completes.

The journal is filled while a run progresses and can be read at any
point, so a run cut off by a time budget still reports what it did in the
ledger. A read returns only answered calls: every tool call in the
records is followed by its result.

Journals nest: a delegation opens a child journal for the receiving
worker, and the child's records come before the parent's own records,
matching the order in which they are appended to the transcript.
"""

from __future__ import annotations

from typing import List, Sequence, Union

from langchain_core.messages import AIMessage, BaseMessage, ToolMessage


class _Decision:
    """One decision message and the results answered so far."""

    def __init__(self, message: AIMessage):
        self.message = message
        self.results: List[ToolMessage] = []

    def messages(self) -> List[BaseMessage]:
        if not self.results:
            return []
        answered = {r.tool_call_id for r in self.results}
        calls = [c for c in self.message.tool_calls if c.get("id") in answered]
        message = self.message
        if len(calls) != len(self.message.tool_calls):
            message = self.message.model_copy(update={"tool_calls": calls})
        return [message, *self.results]


class ActionJournal:
    """Append-only record of one party's action calls, readable mid-run."""

    def __init__(self):
        self._nested: List[Union["ActionJournal", BaseMessage]] = []
        self._decisions: List[_Decision] = []

    def child(self) -> "ActionJournal":
        """Open a journal for a delegated run; its records precede this journal's own."""
        journal = ActionJournal()
        self._nested.append(journal)
        return journal

    def extend(self, records: Sequence[BaseMessage]) -> None:
        """Add records that are already complete (e.g. a response produced without a run)."""
        self._nested.extend(records)

    def begin(self, decision: AIMessage) -> None:
        self._decisions.append(_Decision(decision))

    def record(self, result: ToolMessage) -> None:
        if not self._decisions:
            raise RuntimeError("record() called before begin()")
        self._decisions[-1].results.append(result)

    def messages(self) -> List[BaseMessage]:
        out: List[BaseMessage] = []
        for item in self._nested:
            if isinstance(item, ActionJournal):
                out.extend(item.messages())
            else:
                out.append(item)
        for decision in self._decisions:
            out.extend(decision.messages())
        return out

    def __len__(self) -> int:
        return len(self.messages())
