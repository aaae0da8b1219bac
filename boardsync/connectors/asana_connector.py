import logging
from typing import Any, Dict, List, Optional

from boardsync.connectors.base import BaseConnector
from boardsync.exceptions import PartialCreateError, RemoteError
from boardsync.schemas.common import Platform
from boardsync.schemas.ticket import TaskItem, TicketDraft, custom_field_from_raw
from boardsync.utils.timeutils import parse_iso

log = logging.getLogger(__name__)

TASK_FIELDS = ",".join([
    "gid", "name", "notes", "created_at", "modified_at", "created_by.name", "created_by.email",
    "tags.name", "memberships.project.gid", "memberships.section.gid", "memberships.section.name",
    "custom_fields.name", "custom_fields.resource_subtype", "custom_fields.text_value",
    "custom_fields.number_value", "custom_fields.enum_value.name", "custom_fields.multi_enum_values.name",
    "custom_fields.display_value",
])
PAGE_LIMIT = 100


def _custom_field_raw(field: Dict[str, Any]) -> Any:
    subtype = field.get("resource_subtype")
    if subtype == "number":
        return field.get("number_value")
    if subtype == "text":
        return field.get("text_value")
    if subtype == "enum":
        return (field.get("enum_value") or {}).get("name")
    if subtype == "multi_enum":
        return [v.get("name") for v in field.get("multi_enum_values") or []]
    return field.get("display_value")


class AsanaConnector(BaseConnector):
    """
    Connector for the Asana task board.
    The column of a task is the section it belongs to within the configured project.
    """

    platform = Platform.ASANA

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._sections: Optional[Dict[str, str]] = None  # lowercased name -> gid
        self._tags: Optional[Dict[str, str]] = None  # lowercased name -> gid

    async def _data(self, method: str, path: str, **kwargs) -> Any:
        payload = await self._request(method, path, **kwargs)
        return payload.get("data", payload) if isinstance(payload, dict) else payload

    def _parse_task(self, data: Dict[str, Any]) -> TaskItem:
        section_name, section_gid = None, None
        for membership in data.get("memberships") or []:
            project = membership.get("project") or {}
            section = membership.get("section") or {}
            if project.get("gid") in (None, self.project_id) and section:
                section_name, section_gid = section.get("name"), section.get("gid")
                break
        creator = data.get("created_by") or {}
        return TaskItem(
            id=data["gid"],
            title=data.get("name") or "",
            description=data.get("notes") or "",
            status=section_name,
            section_id=section_gid,
            tags=[t.get("name") for t in data.get("tags") or [] if t.get("name")],
            creator=creator.get("email") or creator.get("name"),
            created_at=parse_iso(data.get("created_at")),
            updated_at=parse_iso(data.get("modified_at")),
            custom_fields={
                f["name"]: custom_field_from_raw(_custom_field_raw(f))
                for f in data.get("custom_fields") or [] if f.get("name")
            },
        )

    async def fetch_tickets(self) -> List[TaskItem]:
        tasks: List[TaskItem] = []
        params: Dict[str, Any] = {"opt_fields": TASK_FIELDS, "limit": PAGE_LIMIT}
        while True:
            payload = await self._request("GET", f"/projects/{self.project_id}/tasks", params=params)
            tasks.extend(self._parse_task(item) for item in payload.get("data", []))
            next_page = payload.get("next_page") or {}
            if not next_page.get("offset"):
                break
            params["offset"] = next_page["offset"]
        log.info(f"Fetched {len(tasks)} Asana tasks from project {self.project_id}")
        return tasks

    async def get_ticket(self, ticket_id: str) -> TaskItem:
        data = await self._data("GET", f"/tasks/{ticket_id}", params={"opt_fields": TASK_FIELDS})
        return self._parse_task(data)

    async def _section_gid(self, name: str) -> Optional[str]:
        if self._sections is None:
            sections = await self._data("GET", f"/projects/{self.project_id}/sections")
            self._sections = {s["name"].strip().lower(): s["gid"] for s in sections if s.get("name")}
        return self._sections.get(name.strip().lower())

    async def _tag_gid(self, name: str) -> Optional[str]:
        if self._tags is None:
            project = await self._data("GET", f"/projects/{self.project_id}", params={"opt_fields": "workspace.gid"})
            workspace = (project.get("workspace") or {}).get("gid")
            tags = await self._data("GET", f"/workspaces/{workspace}/tags") if workspace else []
            self._tags = {t["name"].strip().lower(): t["gid"] for t in tags if t.get("name")}
        return self._tags.get(name.strip().lower())

    async def _move_to_section(self, task_gid: str, column: str) -> None:
        section_gid = await self._section_gid(column)
        if not section_gid:
            raise RemoteError(self.platform.label, f"Section '{column}' does not exist in project {self.project_id}")
        await self._request("POST", f"/sections/{section_gid}/addTask", json={"data": {"task": task_gid}})

    async def _set_tags(self, task_gid: str, current: List[str], desired: List[str]) -> None:
        current_keys = {t.lower() for t in current}
        desired_keys = {t.lower() for t in desired}
        for tag in desired:
            if tag.lower() in current_keys:
                continue
            tag_gid = await self._tag_gid(tag)
            if not tag_gid:
                log.warning(f"Asana tag '{tag}' not found in workspace; skipping")
                continue
            await self._request("POST", f"/tasks/{task_gid}/addTag", json={"data": {"tag": tag_gid}})
        for tag in current:
            if tag.lower() in desired_keys:
                continue
            tag_gid = await self._tag_gid(tag)
            if tag_gid:
                await self._request("POST", f"/tasks/{task_gid}/removeTag", json={"data": {"tag": tag_gid}})

    async def create_ticket(self, draft: TicketDraft) -> TaskItem:
        data = await self._data("POST", "/tasks", params={"opt_fields": TASK_FIELDS}, json={"data": {
            "name": draft.title,
            "notes": draft.description,
            "projects": [self.project_id],
        }})
        task = self._parse_task(data)
        log.info(f"Created Asana task {task.id}")
        try:
            if draft.status:
                await self._move_to_section(task.id, draft.status)
                task = task.model_copy(update={"status": draft.status})
            if draft.tags:
                await self._set_tags(task.id, [], draft.tags)
                task = task.model_copy(update={"tags": list(draft.tags)})
        except RemoteError as e:
            log.error(f"Asana task {task.id} created but could not be placed: {e}")
            raise PartialCreateError(task, e) from e
        return task

    async def update_ticket(self, ticket_id: str, changes: Dict[str, Any]) -> None:
        if "status" in changes and not changes["status"]:
            raise RemoteError(self.platform.label, f"Task {ticket_id} cannot be removed from its section")
        fields = {}
        if "title" in changes:
            fields["name"] = changes["title"]
        if "description" in changes:
            fields["notes"] = changes["description"]
        if fields:
            await self._request("PUT", f"/tasks/{ticket_id}", json={"data": fields})
        if "status" in changes:
            await self._move_to_section(ticket_id, changes["status"])
        if "tags" in changes:
            current = await self.get_ticket(ticket_id)
            await self._set_tags(ticket_id, current.tags, list(changes["tags"] or []))
        log.debug(f"Updated Asana task {ticket_id}: {sorted(changes)}")

    async def delete_ticket(self, ticket_id: str) -> None:
        await self._request("DELETE", f"/tasks/{ticket_id}")
        log.info(f"Deleted Asana task {ticket_id}")

    async def validate_connection(self) -> bool:
        await self._request("GET", "/users/me")
        return True
