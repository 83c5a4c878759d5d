# ============================================================================
# NODE TYPE MODEL
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core model - Catalog entry for a class of nodes
# PURPOSE: Declared resource requirements and configurable properties
# CREATED: 29 SEP 2026
# EXPORTS: NodeType, NodeProperty, ResourceRequirement
# DEPENDENCIES: pydantic
# ============================================================================
"""
Node Type Model

A NodeType is the TEMPLATE a node is created from (loaded from YAML or
the store). It declares:
- ordered properties the tenant may set (with typed defaults)
- ordered resource requirements the scheduler reserves on a host

Immutable once referenced by a live node - changes require a new type_id.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, ClassVar
from pydantic import BaseModel, Field

from core.contracts import PropertyFieldType


class NodeProperty(BaseModel):
    """A configurable property of a node type."""
    key: str = Field(..., max_length=64)
    default: Optional[Any] = None
    field_type: PropertyFieldType = Field(default=PropertyFieldType.TEXT)
    required: bool = False
    disabled: bool = Field(
        default=False,
        description="Shown but not settable by tenants; default always applies"
    )
    description: Optional[str] = None

    def accepts(self, value: Any) -> bool:
        """Check the value's Python type against the field type."""
        if value is None:
            return not self.required
        if self.field_type == PropertyFieldType.SWITCH:
            return isinstance(value, bool)
        return isinstance(value, str)


class ResourceRequirement(BaseModel):
    """Quantity of one resource a node of this type needs."""
    key: str = Field(..., max_length=32)
    quantity: int = Field(..., ge=0)


class NodeType(BaseModel):
    """
    Catalog entry defining requirements and properties for a class of nodes.

    Maps to: fleet.node_types table (properties and requirements as
    ordered JSONB arrays)
    """

    __sql_table__: ClassVar[str] = "node_types"
    __sql_schema__: ClassVar[str] = "fleet"

    type_id: str = Field(..., max_length=64)
    name: str = Field(..., max_length=128)
    blockchain: Optional[str] = Field(default=None, max_length=64)
    description: Optional[str] = None
    validator_capable: bool = Field(
        default=False,
        description="Nodes of this type carry a validator attribute set"
    )

    properties: List[NodeProperty] = Field(default_factory=list)
    requirements: List[ResourceRequirement] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=datetime.utcnow)

    def requirement_vector(self) -> Dict[str, int]:
        """Requirements as a resource-key -> quantity mapping."""
        vector: Dict[str, int] = {}
        for req in self.requirements:
            vector[req.key] = vector.get(req.key, 0) + req.quantity
        return vector

    def get_property(self, key: str) -> NodeProperty:
        for prop in self.properties:
            if prop.key == key:
                return prop
        raise KeyError(f"Property '{key}' not declared by node type '{self.type_id}'")

    def validate_structure(self) -> List[str]:
        """
        Validate node type structure.

        Returns list of validation errors (empty if valid).
        """
        errors = []

        prop_keys = [p.key for p in self.properties]
        dupes = sorted({k for k in prop_keys if prop_keys.count(k) > 1})
        if dupes:
            errors.append(f"Duplicate property keys: {dupes}")

        req_keys = [r.key for r in self.requirements]
        dupes = sorted({k for k in req_keys if req_keys.count(k) > 1})
        if dupes:
            errors.append(f"Duplicate requirement keys: {dupes}")

        for prop in self.properties:
            if prop.default is not None and not prop.accepts(prop.default):
                errors.append(
                    f"Property '{prop.key}' default {prop.default!r} "
                    f"does not match field type {prop.field_type.value}"
                )
            if prop.disabled and prop.required and prop.default is None:
                errors.append(f"Property '{prop.key}' is disabled and required but has no default")

        return errors


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["NodeType", "NodeProperty", "ResourceRequirement"]
