"""Checklist loader for checklist.yaml."""

from __future__ import annotations

from pathlib import Path

import yaml

from hygiene_audit.checklist.models import Checklist


def load_checklist(path: str) -> Checklist:
    checklist_path = Path(path)
    if not checklist_path.exists():
        raise FileNotFoundError(f"Checklist file not found: {checklist_path}")
    with checklist_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return Checklist.from_yaml(data)
