"""
Schema comparison.

Diffs a newly detected schema against the dataset's current one and
classifies each difference as breaking or not.
"""

from dataclasses import dataclass, field
from typing import Any

from importer.schema.builder import SchemaChange


@dataclass
class SchemaComparison:
    changes: list[SchemaChange] = field(default_factory=list)
    is_breaking: bool = False
    requires_approval: bool = False
    can_auto_approve: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "changes": [c.to_dict() for c in self.changes],
            "is_breaking": self.is_breaking,
            "requires_approval": self.requires_approval,
            "can_auto_approve": self.can_auto_approve,
        }


def field_type(prop: Any) -> str:
    """Comparable type label of a schema property, ignoring nullability."""
    if not isinstance(prop, dict):
        return "unknown"
    prop_type = prop.get("type")
    if isinstance(prop_type, list):
        return " | ".join(t for t in prop_type if t != "null")
    if isinstance(prop_type, str):
        return prop_type
    if "oneOf" in prop or "anyOf" in prop:
        return "union"
    if "enum" in prop:
        return "enum"
    return "unknown"


def compare_schemas(old_schema: dict[str, Any], new_schema: dict[str, Any]) -> SchemaComparison:
    """
    Compare two top-level schemas.

    Removed fields, type changes, new required fields, removed enum values
    and fields that became required are breaking; everything else can be
    approved automatically.

    Args:
        old_schema: The dataset's current schema
        new_schema: The schema detected for the incoming import

    Returns:
        SchemaComparison with the list of changes and the verdicts
    """
    old_props = (old_schema or {}).get("properties") or {}
    new_props = (new_schema or {}).get("properties") or {}
    old_required = set((old_schema or {}).get("required") or [])
    new_required = set((new_schema or {}).get("required") or [])

    changes: list[SchemaChange] = []
    breaking = False

    for name in old_props:
        if name not in new_props:
            changes.append(
                SchemaChange(
                    type="removed_field",
                    path=name,
                    details={"description": f"Field '{name}' was removed"},
                    severity="error",
                    auto_approvable=False,
                )
            )
            breaking = True

    for name in new_props:
        if name in old_props:
            continue
        required = name in new_required
        changes.append(
            SchemaChange(
                type="new_field",
                path=name,
                details={
                    "description": f"Field '{name}' was added{' (required)' if required else ''}",
                    "required": required,
                },
                severity="error" if required else "info",
                auto_approvable=not required,
            )
        )
        breaking = breaking or required

    for name, old_prop in old_props.items():
        new_prop = new_props.get(name)
        if new_prop is None:
            continue

        old_type = field_type(old_prop)
        new_type = field_type(new_prop)
        if old_type != new_type:
            changes.append(
                SchemaChange(
                    type="type_change",
                    path=name,
                    details={
                        "description": f"Field '{name}' type changed from {old_type} to {new_type}",
                        "old_type": old_type,
                        "new_type": new_type,
                    },
                    severity="error",
                    auto_approvable=False,
                )
            )
            breaking = True
        elif old_prop.get("enum") and new_prop.get("enum"):
            added = [v for v in new_prop["enum"] if v not in old_prop["enum"]]
            removed = [v for v in old_prop["enum"] if v not in new_prop["enum"]]
            if added or removed:
                changes.append(
                    SchemaChange(
                        type="enum_change",
                        path=name,
                        details={
                            "description": f"Enum values changed for '{name}'",
                            "added": added,
                            "removed": removed,
                        },
                        severity="warning" if removed else "info",
                        auto_approvable=not removed,
                    )
                )
                breaking = breaking or bool(removed)

    for name in sorted(new_required - old_required):
        if name in old_props:
            changes.append(
                SchemaChange(
                    type="format_change",
                    path=name,
                    details={"description": f"Field '{name}' became required"},
                    severity="error",
                    auto_approvable=False,
                )
            )
            breaking = True

    for name in sorted(old_required - new_required):
        if name in new_props:
            changes.append(
                SchemaChange(
                    type="format_change",
                    path=name,
                    details={"description": f"Field '{name}' became optional"},
                    severity="info",
                    auto_approvable=True,
                )
            )

    return SchemaComparison(
        changes=changes,
        is_breaking=breaking,
        requires_approval=any(c.severity in ("error", "warning") for c in changes),
        can_auto_approve=all(c.auto_approvable for c in changes),
    )


def generate_change_summary(comparison: SchemaComparison) -> str:
    """Human-readable summary of a comparison."""
    if not comparison.changes:
        return "No schema changes detected"

    lines = [
        "Schema Changes Summary:",
        f"- Total changes: {len(comparison.changes)}",
        f"- Breaking changes: {'Yes' if comparison.is_breaking else 'No'}",
        f"- Requires approval: {'Yes' if comparison.requires_approval else 'No'}",
        f"- Can auto-approve: {'Yes' if comparison.can_auto_approve else 'No'}",
        "",
        "Details:",
    ]
    for change in comparison.changes:
        lines.append(f"- [{change.severity.upper()}] {change.details.get('description', change.type)}")
    return "\n".join(lines)
