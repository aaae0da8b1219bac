"""In-memory stand-ins for the two remote systems."""

from typing import Any, Dict, Iterable, List, Optional, Tuple

from boardsync.connectors.base import BaseConnector
from boardsync.exceptions import NotFoundError
from boardsync.schemas.common import Platform
from boardsync.schemas.ticket import ExternalTicket, IssueItem, TaskItem, TicketDraft


def task(task_id: str, title: str, column: Optional[str] = "Backlog", tags: Iterable[str] = (), **kwargs) -> TaskItem:
    return TaskItem(id=task_id, title=title, status=column, tags=list(tags), **kwargs)


def issue(issue_id: str, title: str, state: Optional[str] = "Backlog", subsystem: Optional[str] = None, **kwargs) -> IssueItem:
    return IssueItem(id=issue_id, title=title, status=state, subsystem=subsystem, **kwargs)


class FakeConnector(BaseConnector):
    """Keeps tickets in a dict; `fail_on[(method, ticket_id or None)]` raises on that call."""

    def __init__(self, platform: Platform, project_id: str, tickets: Iterable[ExternalTicket] = (), next_id: int = 42):
        self.platform = platform
        super().__init__("https://fake.invalid", "token", project_id)
        self.tickets: Dict[str, ExternalTicket] = {t.id: t for t in tickets}
        self.fail_on: Dict[Tuple[str, Optional[str]], Exception] = {}
        self.calls: List[Tuple[str, Optional[str]]] = []
        self.updates: List[Tuple[str, Dict[str, Any]]] = []
        self.next_id = next_id

    def add(self, *tickets: ExternalTicket) -> None:
        for ticket in tickets:
            self.tickets[ticket.id] = ticket

    def _check(self, method: str, ticket_id: Optional[str] = None) -> None:
        self.calls.append((method, ticket_id))
        for key in ((method, ticket_id), (method, None)):
            if key in self.fail_on:
                raise self.fail_on[key]

    def _get(self, ticket_id: str) -> ExternalTicket:
        if ticket_id not in self.tickets:
            raise NotFoundError(self.platform.label, f"Not found: {ticket_id}", 404)
        return self.tickets[ticket_id]

    def _new_id(self) -> str:
        new_id = f"I-{self.next_id}" if self.platform == Platform.YOUTRACK else str(9000 + self.next_id)
        self.next_id += 1
        return new_id

    async def fetch_tickets(self) -> List[ExternalTicket]:
        self._check("fetch")
        return sorted(self.tickets.values(), key=lambda t: t.id)

    async def get_ticket(self, ticket_id: str) -> ExternalTicket:
        self._check("get", ticket_id)
        return self._get(ticket_id)

    async def create_ticket(self, draft: TicketDraft) -> ExternalTicket:
        self._check("create")
        if self.platform == Platform.YOUTRACK:
            ticket = IssueItem(
                id=self._new_id(), title=draft.title, description=draft.description,
                status=draft.status, subsystem=draft.subsystem,
            )
        else:
            ticket = TaskItem(
                id=self._new_id(), title=draft.title, description=draft.description,
                status=draft.status, tags=draft.tags,
            )
        self.tickets[ticket.id] = ticket
        return ticket

    async def update_ticket(self, ticket_id: str, changes: Dict[str, Any]) -> None:
        self._check("update", ticket_id)
        current = self._get(ticket_id)
        self.updates.append((ticket_id, dict(changes)))
        self.tickets[ticket_id] = current.model_copy(update=dict(changes))

    async def delete_ticket(self, ticket_id: str) -> None:
        self._check("delete", ticket_id)
        self._get(ticket_id)
        del self.tickets[ticket_id]

    async def validate_connection(self) -> bool:
        self._check("validate")
        return True
