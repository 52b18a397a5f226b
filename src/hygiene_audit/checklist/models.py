"""Checklist (audit structure) models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from hygiene_audit.errors import ChecklistError


def _ensure_list(v: Any) -> list:
    """Convert None to empty list, pass through lists."""
    if v is None:
        return []
    return v


class ChecklistItem(BaseModel):
    id: str
    title: str = ""
    description: str = ""
    active: bool = True
    icon: str | None = None


class ChecklistSection(BaseModel):
    id: str
    title: str = ""
    active: bool = True
    items: list[ChecklistItem] = Field(default_factory=list)

    @field_validator("items", mode="before")
    @classmethod
    def _validate_items(cls, v: Any) -> list:
        return _ensure_list(v)


class Checklist(BaseModel):
    audit_title: str = ""
    header_data: dict[str, Any] = Field(default_factory=dict)
    audit_sections: list[ChecklistSection] = Field(default_factory=list)

    @field_validator("audit_sections", mode="before")
    @classmethod
    def _validate_sections(cls, v: Any) -> list:
        return _ensure_list(v)

    @field_validator("header_data", mode="before")
    @classmethod
    def _validate_header_data(cls, v: Any) -> dict:
        if v is None:
            return {}
        return v

    @model_validator(mode="after")
    def _check_unique_item_ids(self) -> "Checklist":
        seen: set[str] = set()
        for section in self.audit_sections:
            for item in section.items:
                if item.id in seen:
                    raise ChecklistError(f"Duplicate checklist item id: {item.id}")
                seen.add(item.id)
        return self

    def active_item_ids(self) -> frozenset[str]:
        """Ids of items that must be answered before an audit can be completed."""
        return frozenset(
            item.id
            for section in self.audit_sections
            if section.active
            for item in section.items
            if item.active
        )

    def item(self, item_id: str) -> ChecklistItem | None:
        for section in self.audit_sections:
            for item in section.items:
                if item.id == item_id:
                    return item
        return None

    @classmethod
    def from_yaml(cls, data: dict[str, object]) -> "Checklist":
        return cls.model_validate(data)
