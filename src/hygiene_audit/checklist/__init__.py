"""Checklist structure loading."""

from hygiene_audit.checklist.loader import load_checklist
from hygiene_audit.checklist.models import Checklist, ChecklistItem, ChecklistSection

__all__ = ["Checklist", "ChecklistItem", "ChecklistSection", "load_checklist"]
