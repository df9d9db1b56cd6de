"""
Built-in sample datasets served when no live source is reachable.

Seeds are providers (zero-argument callables) rather than module-level
lists, so each store can be handed its own deterministic fixtures.
"""

from __future__ import annotations

import copy
from datetime import timedelta
from typing import Any, Callable, Mapping, Sequence

from portal_common.utils import utcnow
from portal_sync.backend import Record
from portal_sync.fallback import SeedProvider


def static_seed(records: Sequence[Mapping[str, Any]]) -> SeedProvider:
    """Provider that always yields (copies of) the given records."""
    frozen = [dict(record) for record in records]

    def provide() -> list[Record]:
        return copy.deepcopy(frozen)

    return provide


def _ago(**delta: float) -> str:
    return (utcnow() - timedelta(**delta)).isoformat()


def _ahead(**delta: float) -> str:
    return (utcnow() + timedelta(**delta)).isoformat()


def sample_members() -> list[Record]:
    return [
        {
            "id": "seed-member-1",
            "user_id": "seed-user-1",
            "full_name": "Abdullahi Mohammed",
            "email": "abdullahi@example.org",
            "college": "College of Computing and Informatics",
            "department": "Software Engineering",
            "year": 3,
            "status": "active",
            "role": "it_head",
            "created_at": _ago(days=120),
            "updated_at": _ago(days=2),
        },
        {
            "id": "seed-member-2",
            "user_id": "seed-user-2",
            "full_name": "Fatima Yusuf",
            "email": "fatima@example.org",
            "college": "College of Health and Medical Sciences",
            "department": "Nursing",
            "year": 2,
            "status": "active",
            "role": "member",
            "created_at": _ago(days=3),
            "updated_at": _ago(days=3),
        },
        {
            "id": "seed-member-3",
            "user_id": "seed-user-3",
            "full_name": "Ibrahim Ali",
            "email": "ibrahim@example.org",
            "college": "College of Agriculture",
            "department": "Agricultural Economics",
            "year": 4,
            "status": "alumni",
            "role": "member",
            "created_at": _ago(days=400),
            "updated_at": _ago(days=30),
        },
    ]


def sample_invitations() -> list[Record]:
    return [
        {
            "id": "seed-invitation-1",
            "full_name": "Hawa Ahmed",
            "email": "hawa@example.org",
            "college": "College of Business and Economics",
            "department": "Accounting",
            "year": 1,
            "status": "pending",
            "invitation_type": "member_request",
            "intended_role": "member",
            "created_at": _ago(days=1),
            "updated_at": _ago(days=1),
        },
        {
            "id": "seed-invitation-2",
            "full_name": "Musa Abdi",
            "email": "musa@example.org",
            "college": "College of Computing and Informatics",
            "department": "Computer Science",
            "year": 2,
            "status": "invited",
            "invitation_type": "admin_invite",
            "intended_role": "member",
            "created_at": _ago(days=5),
            "updated_at": _ago(days=5),
        },
    ]


def sample_tasks() -> list[Record]:
    return [
        {
            "id": "seed-task-1",
            "title": "Iftar program setup",
            "description": "Arrange the hall and serve food for the community iftar.",
            "category": "events",
            "priority": "high",
            "status": "open",
            "required_skills": ["organization"],
            "estimated_hours": 4,
            "max_volunteers": 6,
            "location": "Main campus mosque",
            "assigned_to": [],
            "tags": ["ramadan"],
            "created_at": _ago(days=2),
            "updated_at": _ago(days=2),
        },
        {
            "id": "seed-task-2",
            "title": "Library digitisation",
            "description": "Catalogue donated books into the library system.",
            "category": "education",
            "priority": "medium",
            "status": "in_progress",
            "required_skills": ["data entry"],
            "estimated_hours": 10,
            "max_volunteers": 3,
            "location": "Jama'a library",
            "assigned_to": ["seed-member-2"],
            "tags": [],
            "created_at": _ago(days=10),
            "updated_at": _ago(days=1),
        },
    ]


def sample_applications() -> list[Record]:
    return [
        {
            "id": "seed-application-1",
            "task_id": "seed-task-2",
            "volunteer_id": "seed-member-2",
            "status": "approved",
            "application_message": "I can help on weekends.",
            "hours_logged": 6,
            "volunteer_name": "Fatima Yusuf",
            "created_at": _ago(days=9),
            "updated_at": _ago(days=1),
        },
        {
            "id": "seed-application-2",
            "task_id": "seed-task-1",
            "volunteer_id": "seed-member-1",
            "status": "pending",
            "application_message": "Available all evening.",
            "hours_logged": 0,
            "volunteer_name": "Abdullahi Mohammed",
            "created_at": _ago(hours=5),
            "updated_at": _ago(hours=5),
        },
    ]


def sample_logs() -> list[Record]:
    return [
        {
            "id": "seed-log-1",
            "level": "info",
            "message": "User login successful",
            "category": "authentication",
            "metadata": {"method": "email"},
            "service_name": "webapp",
            "environment": "production",
            "created_at": _ago(minutes=5),
        },
        {
            "id": "seed-log-2",
            "level": "warning",
            "message": "High memory usage detected",
            "category": "performance",
            "metadata": {"memory_usage": "85%", "threshold": "80%"},
            "service_name": "webapp",
            "environment": "production",
            "created_at": _ago(minutes=10),
        },
        {
            "id": "seed-log-3",
            "level": "error",
            "message": "Database connection timeout",
            "category": "database",
            "metadata": {"timeout_duration": "30s"},
            "service_name": "database",
            "environment": "production",
            "created_at": _ago(minutes=15),
        },
        {
            "id": "seed-log-4",
            "level": "critical",
            "message": "Payment gateway service unavailable",
            "category": "external_service",
            "metadata": {"error_code": "503"},
            "service_name": "payment",
            "environment": "production",
            "created_at": _ago(minutes=20),
        },
    ]


def sample_metrics() -> list[Record]:
    return [
        {
            "id": "seed-metric-1",
            "service_name": "webapp",
            "metric_name": "response_time",
            "metric_value": 250,
            "metric_unit": "ms",
            "status": "operational",
            "created_at": _ago(minutes=1),
        },
        {
            "id": "seed-metric-2",
            "service_name": "database",
            "metric_name": "cpu_usage",
            "metric_value": 45,
            "metric_unit": "%",
            "status": "operational",
            "created_at": _ago(minutes=1),
        },
        {
            "id": "seed-metric-3",
            "service_name": "webapp",
            "metric_name": "memory_usage",
            "metric_value": 85,
            "metric_unit": "%",
            "status": "degraded",
            "created_at": _ago(minutes=1),
        },
        {
            "id": "seed-metric-4",
            "service_name": "payment",
            "metric_name": "availability",
            "metric_value": 0,
            "metric_unit": "%",
            "status": "outage",
            "created_at": _ago(minutes=1),
        },
    ]


def sample_messages() -> list[Record]:
    return [
        {
            "id": "seed-message-1",
            "type": "announcement",
            "title": "Welcome to the new semester",
            "content": "Assalamu alaikum, the Jama'a welcomes all new students.",
            "recipients": "all",
            "status": "sent",
            "priority": "normal",
            "delivery_count": 120,
            "open_count": 84,
            "click_count": 12,
            "sent_at": _ago(days=4),
            "created_at": _ago(days=5),
            "updated_at": _ago(days=4),
        },
        {
            "id": "seed-message-2",
            "type": "reminder",
            "title": "Friday khutbah venue change",
            "content": "This week's khutbah moves to the main hall.",
            "recipients": "members",
            "status": "draft",
            "priority": "high",
            "delivery_count": 0,
            "open_count": 0,
            "click_count": 0,
            "created_at": _ago(hours=6),
            "updated_at": _ago(hours=6),
        },
    ]


def sample_events() -> list[Record]:
    today = utcnow().date()
    return [
        {
            "id": "seed-event-1",
            "title": "Weekly Friday Khutbah",
            "description": "Congregational prayer and khutbah for students and staff.",
            "type": "friday",
            "category": "worship",
            "date": (today + timedelta(days=3)).isoformat(),
            "start_time": "12:30",
            "end_time": "13:30",
            "location": "Main campus mosque",
            "max_attendees": None,
            "current_attendees": 0,
            "status": "published",
            "is_featured": True,
            "tags": ["weekly"],
            "created_at": _ago(days=7),
            "updated_at": _ago(days=7),
        },
        {
            "id": "seed-event-2",
            "title": "Web Development Workshop",
            "description": "Hands-on introduction to building web applications.",
            "type": "workshop",
            "category": "education",
            "date": (today + timedelta(days=10)).isoformat(),
            "start_time": "14:00",
            "end_time": "17:00",
            "location": "ICT lab 2",
            "max_attendees": 40,
            "current_attendees": 25,
            "registration_required": True,
            "registration_deadline": _ahead(days=8),
            "status": "published",
            "is_featured": False,
            "tags": ["it"],
            "created_at": _ago(days=3),
            "updated_at": _ago(days=1),
        },
        {
            "id": "seed-event-3",
            "title": "Seerah Dars",
            "description": "Study circle on the life of the Prophet.",
            "type": "dars",
            "category": "education",
            "date": (today - timedelta(days=6)).isoformat(),
            "start_time": "18:00",
            "end_time": "19:30",
            "location": "Jama'a hall",
            "max_attendees": 60,
            "current_attendees": 48,
            "status": "completed",
            "is_featured": False,
            "tags": [],
            "created_at": _ago(days=20),
            "updated_at": _ago(days=6),
        },
    ]


def default_seeds() -> dict[str, SeedProvider]:
    """Collection name → built-in sample provider."""
    providers: dict[str, Callable[[], list[Record]]] = {
        "members": sample_members,
        "invitations": sample_invitations,
        "tasks": sample_tasks,
        "applications": sample_applications,
        "logs": sample_logs,
        "metrics": sample_metrics,
        "messages": sample_messages,
        "events": sample_events,
    }
    return dict(providers)
