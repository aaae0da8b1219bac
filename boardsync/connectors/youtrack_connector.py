import logging
from typing import Any, Dict, List, Optional

from boardsync.connectors.base import BaseConnector
from boardsync.schemas.common import Platform
from boardsync.schemas.ticket import IssueItem, TicketDraft, custom_field_from_raw
from boardsync.utils.timeutils import from_epoch_ms

log = logging.getLogger(__name__)

ISSUE_FIELDS = (
    "id,idReadable,summary,description,created,updated,reporter(login,fullName),"
    "tags(name),customFields(name,value(name,login,text,presentation))"
)
PAGE_SIZE = 100


def _custom_field_raw(value: Any) -> Any:
    """Flatten a YouTrack custom field value into a scalar or list of names."""
    if isinstance(value, list):
        return [_custom_field_raw(v) for v in value]
    if isinstance(value, dict):
        for key in ("name", "login", "text", "presentation"):
            if value.get(key) is not None:
                return value[key]
        return None
    return value


class YouTrackConnector(BaseConnector):
    """
    Connector for the YouTrack issue tracker.
    State and Subsystem are project custom fields; the readable id (e.g. 'ARD-123')
    is used as the ticket id everywhere.
    """

    platform = Platform.YOUTRACK

    def _parse_issue(self, data: Dict[str, Any]) -> IssueItem:
        custom_fields = {
            field.get("name"): _custom_field_raw(field.get("value"))
            for field in data.get("customFields") or []
            if field.get("name")
        }
        state = custom_fields.get("State")
        subsystem = custom_fields.get("Subsystem")
        reporter = data.get("reporter") or {}
        return IssueItem(
            id=data.get("idReadable") or data.get("id"),
            title=data.get("summary") or "",
            description=data.get("description") or "",
            status=state if isinstance(state, str) else None,
            subsystem=subsystem if isinstance(subsystem, str) else None,
            tags=[t.get("name") for t in data.get("tags") or [] if t.get("name")],
            creator=reporter.get("login"),
            created_at=from_epoch_ms(data.get("created")),
            updated_at=from_epoch_ms(data.get("updated")),
            custom_fields={name: custom_field_from_raw(raw) for name, raw in custom_fields.items()},
        )

    @staticmethod
    def _custom_field(name: str, value: Optional[str]) -> Dict[str, Any]:
        """Custom field payload; a None value clears the field."""
        if name == "State":
            field_type, element_type = "StateIssueCustomField", "StateBundleElement"
        else:
            field_type, element_type = "SingleOwnedIssueCustomField", "OwnedBundleElement"
        return {
            "$type": field_type,
            "name": name,
            "value": {"$type": element_type, "name": value} if value else None,
        }

    def _custom_fields_payload(self, values: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Only the keys present in `values` are sent, so an explicit None is kept."""
        fields = []
        for key, name in (("status", "State"), ("subsystem", "Subsystem")):
            if key in values:
                fields.append(self._custom_field(name, values[key]))
        return fields

    async def fetch_tickets(self) -> List[IssueItem]:
        issues: List[IssueItem] = []
        skip = 0
        while True:
            page = await self._request("GET", "/api/issues", params={
                "query": f"project: {self.project_id}",
                "fields": ISSUE_FIELDS,
                "$top": PAGE_SIZE,
                "$skip": skip,
            })
            issues.extend(self._parse_issue(item) for item in page)
            if len(page) < PAGE_SIZE:
                break
            skip += PAGE_SIZE
        log.info(f"Fetched {len(issues)} YouTrack issues from project {self.project_id}")
        return issues

    async def get_ticket(self, ticket_id: str) -> IssueItem:
        data = await self._request("GET", f"/api/issues/{ticket_id}", params={"fields": ISSUE_FIELDS})
        return self._parse_issue(data)

    async def create_ticket(self, draft: TicketDraft) -> IssueItem:
        payload: Dict[str, Any] = {
            "$type": "Issue",
            "summary": draft.title,
            "description": draft.description,
            "project": {"$type": "Project", "shortName": self.project_id},
        }
        # Unset draft fields keep the project defaults
        custom_fields = self._custom_fields_payload(
            {key: value for key, value in (("status", draft.status), ("subsystem", draft.subsystem)) if value}
        )
        if custom_fields:
            payload["customFields"] = custom_fields
        data = await self._request("POST", "/api/issues", params={"fields": ISSUE_FIELDS}, json=payload)
        issue = self._parse_issue(data)
        log.info(f"Created YouTrack issue {issue.id}")
        return issue

    async def update_ticket(self, ticket_id: str, changes: Dict[str, Any]) -> None:
        payload: Dict[str, Any] = {"$type": "Issue"}
        if "title" in changes:
            payload["summary"] = changes["title"]
        if "description" in changes:
            payload["description"] = changes["description"]
        custom_fields = self._custom_fields_payload(changes)
        if custom_fields:
            payload["customFields"] = custom_fields
        await self._request("POST", f"/api/issues/{ticket_id}", params={"fields": "idReadable"}, json=payload)
        log.debug(f"Updated YouTrack issue {ticket_id}: {sorted(changes)}")

    async def delete_ticket(self, ticket_id: str) -> None:
        await self._request("DELETE", f"/api/issues/{ticket_id}")
        log.info(f"Deleted YouTrack issue {ticket_id}")

    async def validate_connection(self) -> bool:
        await self._request("GET", "/api/users/me", params={"fields": "login"})
        return True
