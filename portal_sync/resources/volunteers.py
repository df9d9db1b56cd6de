"""Volunteer tasks and applications."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from portal_common.logging import get_logger
from portal_common.utils import coerce_float
from portal_sync.authz import Permission
from portal_sync.backend import Query, QueryResult, Record
from portal_sync.errors import ValidationError
from portal_sync.fallback import FallbackTier, Resolution, left_join
from portal_sync.orchestrator import (
    LocalPatch,
    Mutation,
    clean_text,
    require_fields,
    require_identifier,
    require_positive,
)
from portal_sync.reconciler import active_value, rate_percent
from portal_sync.result import Err, Ok, Result
from portal_sync.store import ResourceStore

logger = get_logger(__name__)

TASK_FIELDS = (
    "title",
    "description",
    "category",
    "priority",
    "status",
    "required_skills",
    "estimated_hours",
    "max_volunteers",
    "location",
    "deadline",
    "start_date",
    "end_date",
    "tags",
    "notes",
)


@dataclass(frozen=True)
class VolunteerStats:
    total_tasks: int = 0
    open_tasks: int = 0
    in_progress_tasks: int = 0
    completed_tasks: int = 0
    total_applications: int = 0
    pending_applications: int = 0
    approved_applications: int = 0
    approval_rate: int = 0
    total_hours: float = 0.0


class VolunteersStore(ResourceStore[VolunteerStats]):
    resource = "volunteers"
    collection_names = ("tasks", "applications")

    def __init__(
        self,
        *args: Any,
        category: str | None = None,
        status: str | None = None,
        priority: str | None = None,
        **kwargs: Any,
    ) -> None:
        self.category = category
        self.status = status
        self.priority = priority
        self._profile_id: str | None = None
        super().__init__(*args, **kwargs)

    async def load(self) -> dict[str, Resolution]:
        eq = {
            key: value
            for key, value in (
                ("category", active_value(self.category)),
                ("status", active_value(self.status)),
                ("priority", active_value(self.priority)),
            )
            if value is not None
        }
        task_query = Query(eq=eq, order_by="created_at", descending=True)
        tasks = await self.resolver(
            "tasks", [self.table_tier("volunteer_tasks", task_query)], seed_query=task_query
        ).resolve()
        return {"tasks": tasks, "applications": await self._load_applications()}

    async def _load_applications(self) -> Resolution:
        if not self.authorizer.is_authenticated:
            return Resolution.skipped()

        volunteer_id: str | None = None
        if not self.authorizer.is_admin:
            volunteer_id = await self.own_profile_id()
            if volunteer_id is None:
                return Resolution.skipped()

        query = Query(order_by="created_at", descending=True)
        if volunteer_id is not None:
            query.eq["volunteer_id"] = volunteer_id
        return await self.resolver(
            "applications",
            [
                FallbackTier(
                    "rpc",
                    lambda: self.accessor.call_records(
                        "get_volunteer_applications", {"p_volunteer_id": volunteer_id}
                    ),
                ),
                FallbackTier("join", lambda: self._applications_join(query)),
            ],
            seed_query=query,
        ).resolve()

    async def own_profile_id(self) -> str | None:
        """Profile id of the caller (volunteer ids reference profiles, not users)."""
        user = self.authorizer.user
        if user is None:
            return None
        if self._profile_id is None:
            outcome = await self.accessor.fetch("profiles", Query(eq={"user_id": user.id}, limit=1))
            if isinstance(outcome, Ok) and outcome.value.records:
                self._profile_id = outcome.value.records[0]["id"]
            elif isinstance(outcome, Err):
                logger.warning("volunteer_profile_lookup_failed", error=outcome.error.message)
        return self._profile_id

    async def _applications_join(self, query: Query) -> Result[QueryResult]:
        applications = await self.accessor.fetch("volunteer_applications", query)
        if isinstance(applications, Err):
            return applications
        rows = applications.value.records

        tasks: list[Record] = []
        profiles: list[Record] = []
        task_ids = sorted({r["task_id"] for r in rows if r.get("task_id")})
        volunteer_ids = sorted({r["volunteer_id"] for r in rows if r.get("volunteer_id")})
        if task_ids:
            outcome = await self.accessor.fetch("volunteer_tasks", Query(in_={"id": task_ids}))
            if isinstance(outcome, Ok):
                tasks = outcome.value.records
        if volunteer_ids:
            outcome = await self.accessor.fetch("profiles", Query(in_={"id": volunteer_ids}))
            if isinstance(outcome, Ok):
                profiles = outcome.value.records

        joined = left_join(rows, tasks, "task_id", "id", attach_as="task")
        joined = left_join(
            joined, profiles, "volunteer_id", "id",
            attach_as="volunteer_name", value_field="full_name", placeholder="Unknown",
        )
        return Ok(QueryResult(joined, applications.value.total))

    def derive(self, collections: Mapping[str, list[Record]], now: datetime) -> VolunteerStats:
        tasks = collections["tasks"]
        applications = collections["applications"]
        approved = sum(1 for a in applications if a.get("status") == "approved")
        return VolunteerStats(
            total_tasks=len(tasks),
            open_tasks=sum(1 for t in tasks if t.get("status") == "open"),
            in_progress_tasks=sum(1 for t in tasks if t.get("status") == "in_progress"),
            completed_tasks=sum(1 for t in tasks if t.get("status") == "completed"),
            total_applications=len(applications),
            pending_applications=sum(1 for a in applications if a.get("status") == "pending"),
            approved_applications=approved,
            approval_rate=rate_percent(approved, len(applications)),
            total_hours=round(sum(coerce_float(a.get("hours_logged")) for a in applications), 2),
        )

    @property
    def applications(self) -> list[Record]:
        return self._reconciler.get("applications")

    # -- mutations ------------------------------------------------------

    @staticmethod
    def _task_changes(data: Mapping[str, Any]) -> dict[str, Any]:
        changes = {key: data[key] for key in TASK_FIELDS if key in data}
        for key in ("title", "description", "category", "location", "notes"):
            if key in changes:
                changes[key] = clean_text(changes[key])
        if "estimated_hours" in changes:
            changes["estimated_hours"] = require_positive(changes["estimated_hours"], "Estimated hours")
        if "max_volunteers" in changes:
            changes["max_volunteers"] = int(require_positive(changes["max_volunteers"], "Max volunteers"))
        return changes

    async def create_task(self, data: Mapping[str, Any]) -> Record:
        def prepare() -> dict[str, Any]:
            require_fields(data, "title", "category")
            record = {
                "priority": "medium",
                "status": "open",
                "estimated_hours": 1,
                "max_volunteers": 1,
                "required_skills": [],
                "tags": [],
                "assigned_to": [],
                "description": "",
                "location": "",
            }
            record.update({k: v for k, v in self._task_changes(data).items() if v is not None})
            user = self.authorizer.user
            record["created_by"] = user.id if user else None
            return record

        return await self.execute(
            Mutation(
                action="create_task",
                permission=Permission.ADMIN,
                prepare=prepare,
                perform=lambda record: self.backend.insert("volunteer_tasks", record),
                success_message="Volunteer task created successfully",
                failure_message="Failed to create volunteer task",
                local_patch=lambda _, created: [LocalPatch("tasks", upsert=created)],
            )
        )

    async def update_task(self, task_id: str, data: Mapping[str, Any]) -> Record:
        def prepare() -> dict[str, Any]:
            require_identifier(task_id, "task id")
            changes = self._task_changes(data)
            if not changes:
                raise ValidationError("Nothing to update")
            if "title" in changes and changes["title"] is None:
                raise ValidationError("Title cannot be empty")
            return changes

        return await self.execute(
            Mutation(
                action="update_task",
                permission=Permission.ADMIN,
                prepare=prepare,
                perform=lambda changes: self.backend.update("volunteer_tasks", task_id, changes),
                success_message="Task updated successfully",
                failure_message="Failed to update task",
                local_patch=lambda _, updated: [LocalPatch("tasks", upsert=updated)],
            )
        )

    async def delete_task(self, task_id: str) -> None:
        await self.execute(
            Mutation(
                action="delete_task",
                permission=Permission.ADMIN,
                prepare=lambda: require_identifier(task_id, "task id"),
                perform=lambda record_id: self.backend.delete("volunteer_tasks", record_id),
                success_message="Task deleted successfully",
                failure_message="Failed to delete task",
                local_patch=lambda record_id, _: [LocalPatch("tasks", remove_id=record_id)],
            )
        )

    async def apply(self, task_id: str, message: str | None = None) -> Record:
        async def perform(payload: dict[str, Any]) -> Record:
            volunteer_id = await self.own_profile_id()
            if volunteer_id is None:
                raise ValidationError("Complete your member profile before applying for tasks")
            return await self.backend.insert(
                "volunteer_applications",
                {**payload, "volunteer_id": volunteer_id, "status": "pending", "hours_logged": 0},
            )

        return await self.execute(
            Mutation(
                action="apply",
                permission=Permission.AUTHENTICATED,
                prepare=lambda: {
                    "task_id": require_identifier(task_id, "task id"),
                    "application_message": clean_text(message),
                },
                perform=perform,
                success_message="Application submitted successfully",
                failure_message="Failed to submit application",
                duplicate_message="You have already applied for this task",
                local_patch=lambda _, created: [LocalPatch("applications", upsert=created)],
            )
        )

    async def approve(self, application_id: str) -> Any:
        return await self.execute(
            Mutation(
                action="approve",
                permission=Permission.ADMIN,
                prepare=lambda: {"p_application_id": require_identifier(application_id, "application id")},
                perform=lambda payload: self.backend.call("approve_volunteer_application", payload),
                success_message="Application approved",
                failure_message="Failed to approve application",
                local_patch=lambda payload, _: [
                    LocalPatch(
                        "applications",
                        upsert={"id": payload["p_application_id"], "status": "approved"},
                    )
                ],
            )
        )

    async def reject(self, application_id: str, reason: str | None = None) -> Any:
        return await self.execute(
            Mutation(
                action="reject",
                permission=Permission.ADMIN,
                prepare=lambda: {
                    "p_application_id": require_identifier(application_id, "application id"),
                    "p_reason": clean_text(reason),
                },
                perform=lambda payload: self.backend.call("reject_volunteer_application", payload),
                success_message="Application rejected",
                failure_message="Failed to reject application",
                local_patch=lambda payload, _: [
                    LocalPatch(
                        "applications",
                        upsert={
                            "id": payload["p_application_id"],
                            "status": "rejected",
                            "admin_notes": payload["p_reason"],
                        },
                    )
                ],
            )
        )

    async def log_hours(self, application_id: str, hours: float) -> Any:
        return await self.execute(
            Mutation(
                action="log_hours",
                permission=Permission.AUTHENTICATED,
                prepare=lambda: {
                    "p_application_id": require_identifier(application_id, "application id"),
                    "p_hours": require_positive(hours, "Hours"),
                },
                perform=lambda payload: self.backend.call("log_volunteer_hours", payload),
                success_message=f"Logged {hours} hours successfully",
                failure_message="Failed to log hours",
            )
        )
