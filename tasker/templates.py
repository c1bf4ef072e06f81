from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass
from typing import Any

from tasker.errors import NotFoundError
from tasker.models.task import Priority, Task, utcnow


@dataclass(frozen=True, slots=True)
class TemplateTask:
    title: str
    description: str
    priority: Priority
    estimated_time: int
    tags: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class Template:
    id: str
    name: str
    description: str
    tasks: tuple[TemplateTask, ...]

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "tasks": [
                {
                    "title": t.title,
                    "description": t.description,
                    "priority": t.priority,
                    "estimatedTime": t.estimated_time,
                    "tags": list(t.tags),
                }
                for t in self.tasks
            ],
        }


def _t(title: str, description: str, priority: Priority, minutes: int, *tags: str) -> TemplateTask:
    return TemplateTask(title, description, priority, minutes, tags)


TEMPLATES: tuple[Template, ...] = (
    Template(
        "work-project",
        "Work Project",
        "Set up a new work project with essential tasks",
        (
            _t("Define project scope and objectives", "Outline the main goals and deliverables",
               "high", 60, "planning", "work"),
            _t("Create project timeline", "Set milestones and deadlines",
               "high", 45, "planning", "work"),
            _t("Gather requirements", "Collect all necessary information and resources",
               "medium", 90, "research", "work"),
            _t("Design solution", "Create the initial design or plan",
               "medium", 120, "design", "work"),
            _t("Implement and test", "Build and verify the solution",
               "medium", 180, "development", "work"),
        ),
    ),
    Template(
        "learning-path",
        "Learning Path",
        "Create a structured learning plan",
        (
            _t("Research learning resources", "Find books, courses, and tutorials",
               "medium", 30, "research", "learning"),
            _t("Set learning goals", "Define what you want to achieve",
               "high", 15, "planning", "learning"),
            _t("Create study schedule", "Plan daily/weekly study sessions",
               "medium", 20, "planning", "learning"),
            _t("Complete first module", "Start with the basics",
               "medium", 120, "practice", "learning"),
            _t("Review and practice", "Reinforce what you learned",
               "low", 60, "practice", "learning"),
        ),
    ),
    Template(
        "home-maintenance",
        "Home Maintenance",
        "Keep your home in top condition",
        (
            _t("Check smoke detectors", "Test and replace batteries if needed",
               "high", 15, "safety", "home"),
            _t("Clean gutters", "Remove leaves and debris",
               "medium", 45, "maintenance", "home"),
            _t("Test water pressure", "Check faucets and shower heads",
               "low", 10, "maintenance", "home"),
            _t("Inspect for leaks", "Check pipes and fixtures",
               "medium", 30, "maintenance", "home"),
        ),
    ),
    Template(
        "health-routine",
        "Health Routine",
        "Maintain a healthy lifestyle",
        (
            _t("Morning exercise", "30-minute workout or walk",
               "high", 30, "fitness", "health"),
            _t("Prepare healthy meals", "Plan and prep nutritious food",
               "medium", 45, "nutrition", "health"),
            _t("Meditation session", "10-minute mindfulness practice",
               "low", 10, "mental-health", "health"),
            _t("Doctor checkup", "Schedule annual physical",
               "medium", 60, "medical", "health"),
        ),
    ),
    Template(
        "shopping-list",
        "Shopping List",
        "Organize your grocery shopping",
        (
            _t("Plan weekly meals", "Decide what to cook this week",
               "medium", 20, "planning", "shopping"),
            _t("Make shopping list", "List all needed groceries",
               "low", 15, "organization", "shopping"),
            _t("Check pantry inventory", "See what you already have",
               "low", 10, "inventory", "shopping"),
            _t("Go shopping", "Purchase groceries from list",
               "medium", 60, "errands", "shopping"),
        ),
    ),
    Template(
        "travel-planning",
        "Travel Planning",
        "Plan your next trip efficiently",
        (
            _t("Choose destination", "Research and select travel location",
               "high", 30, "research", "travel"),
            _t("Book flights", "Find and reserve airline tickets",
               "high", 20, "booking", "travel"),
            _t("Reserve accommodation", "Book hotel or rental property",
               "high", 25, "booking", "travel"),
            _t("Create itinerary", "Plan daily activities and sights",
               "medium", 45, "planning", "travel"),
            _t("Pack luggage", "Prepare clothes and essentials",
               "low", 30, "preparation", "travel"),
        ),
    ),
    Template(
        "home-repair",
        "Home Repair",
        "Fix common household issues",
        (
            _t("Assess the problem", "Identify what needs to be fixed",
               "high", 15, "assessment", "repair"),
            _t("Gather tools and materials", "Get everything needed for the repair",
               "medium", 20, "preparation", "repair"),
            _t("Research solution", "Find tutorials or guides online",
               "medium", 30, "research", "repair"),
            _t("Perform the repair", "Execute the fix carefully",
               "high", 90, "execution", "repair"),
            _t("Test and verify", "Ensure the repair works properly",
               "medium", 10, "testing", "repair"),
        ),
    ),
)

_BY_ID = {template.id: template for template in TEMPLATES}


def list_templates() -> list[Template]:
    return list(TEMPLATES)


def get_template(template_id: str) -> Template:
    try:
        return _BY_ID[template_id]
    except KeyError:
        raise NotFoundError("template", template_id) from None


def instantiate(template: Template, now: _dt.datetime | None = None) -> list[Task]:
    """Fresh ``todo`` tasks for every entry in the template, with no due date."""
    moment = now or utcnow()
    return [
        Task(
            title=entry.title,
            description=entry.description,
            priority=entry.priority,
            estimated_time=entry.estimated_time,
            tags=list(entry.tags),
            created_at=moment,
            updated_at=moment,
        )
        for entry in template.tasks
    ]


__all__ = [
    "TemplateTask",
    "Template",
    "TEMPLATES",
    "list_templates",
    "get_template",
    "instantiate",
]
