# ============================================================================
# NODE TYPE SERVICE
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Service - Node type registry
# PURPOSE: Load, cache and guard node type definitions
# CREATED: 06 OCT 2026
# ============================================================================
"""
Node Type Service

Read-mostly catalog of node types. Types come from YAML files in the
node_types/ directory and/or from the fleet store, and are cached.

A type referenced by at least one node is frozen: update() refuses with
NodeTypeInUse and the caller registers a new type_id instead.

Usage:
    registry = NodeTypeService(store=store)
    registry.load_all()
    await registry.sync_to_store()

    node_type = registry.get("eth-validator")
    props = registry.validate_properties(node_type, {"network": "mainnet"})
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
import yaml

from core.errors import NotFound, NodeTypeInUse
from core.models import NodeType
from repositories.base import FleetStore

logger = logging.getLogger(__name__)


class NodeTypeService:
    """Registry of node type definitions."""

    def __init__(self, node_types_dir: Optional[str] = None, store: Optional[FleetStore] = None):
        """
        Initialize node type registry.

        Args:
            node_types_dir: Directory containing node type YAML files.
                            Defaults to ./node_types/
            store: Optional fleet store for persistence and reference checks
        """
        if node_types_dir:
            self.node_types_dir = Path(node_types_dir)
        else:
            self.node_types_dir = Path(__file__).parent.parent / "node_types"

        self.store = store
        self._cache: Dict[str, NodeType] = {}

    # =========================================================================
    # LOADING
    # =========================================================================

    def load_all(self) -> int:
        """
        Load all node types from the catalog directory.

        Invalid files are logged and skipped.

        Returns:
            Number of node types loaded
        """
        if not self.node_types_dir.exists():
            logger.warning(f"Node types directory not found: {self.node_types_dir}")
            return 0

        count = 0
        files = sorted(self.node_types_dir.glob("*.yaml")) + sorted(self.node_types_dir.glob("*.yml"))
        for yaml_file in files:
            try:
                node_type = self._load_yaml(yaml_file)
            except Exception as e:
                logger.error(f"Failed to load {yaml_file}: {e}")
                continue
            self._cache[node_type.type_id] = node_type
            count += 1
            logger.info(f"Loaded node type: {node_type.type_id}")

        logger.info(f"Loaded {count} node types from {self.node_types_dir}")
        return count

    async def load_from_store(self) -> int:
        """Cache every node type the store knows about."""
        if self.store is None:
            return 0
        node_types = await self.store.list_node_types()
        for node_type in node_types:
            self._cache[node_type.type_id] = node_type
        logger.info(f"Loaded {len(node_types)} node types from store")
        return len(node_types)

    async def sync_to_store(self) -> int:
        """Persist cached types the store does not have yet."""
        if self.store is None:
            return 0
        added = 0
        for node_type in self._cache.values():
            if await self.store.get_node_type(node_type.type_id) is None:
                await self.store.add_node_type(node_type)
                added += 1
        if added:
            logger.info(f"Persisted {added} catalog node types to store")
        return added

    def _load_yaml(self, path: Path) -> NodeType:
        with open(path) as f:
            data = yaml.safe_load(f)

        if not isinstance(data, dict):
            raise ValueError(f"Expected a mapping in {path}")

        node_type = NodeType(**data)
        errors = node_type.validate_structure()
        if errors:
            raise ValueError(f"Invalid node type in {path}: {errors}")
        return node_type

    # =========================================================================
    # LOOKUP
    # =========================================================================

    def get(self, type_id: str) -> NodeType:
        """
        Get a node type by ID.

        Raises:
            NotFound: unknown type
        """
        node_type = self._cache.get(type_id)
        if node_type is None:
            raise NotFound("node type", type_id)
        return node_type

    def list_all(self) -> List[NodeType]:
        return [self._cache[k] for k in sorted(self._cache)]

    def requirement_vector(self, type_id: str) -> Dict[str, int]:
        return self.get(type_id).requirement_vector()

    # =========================================================================
    # MUTATION
    # =========================================================================

    async def register(self, node_type: NodeType) -> NodeType:
        """
        Register a new node type.

        Raises:
            ValueError: invalid structure or type_id already registered
        """
        errors = node_type.validate_structure()
        if errors:
            raise ValueError(f"Invalid node type: {errors}")
        if node_type.type_id in self._cache:
            raise ValueError(f"Node type already registered: {node_type.type_id}")

        if self.store is not None:
            await self.store.add_node_type(node_type)
        self._cache[node_type.type_id] = node_type
        logger.info(f"Registered node type: {node_type.type_id}")
        return node_type

    async def update(self, node_type: NodeType) -> NodeType:
        """
        Replace a node type definition.

        Raises:
            NotFound: unknown type
            NodeTypeInUse: live nodes reference the type
            ValueError: invalid structure
        """
        self.get(node_type.type_id)

        errors = node_type.validate_structure()
        if errors:
            raise ValueError(f"Invalid node type: {errors}")

        if self.store is not None:
            in_use = await self.store.count_nodes_of_type(node_type.type_id)
            if in_use:
                raise NodeTypeInUse(node_type.type_id, in_use)
            await self.store.update_node_type(node_type)

        self._cache[node_type.type_id] = node_type
        logger.info(f"Updated node type: {node_type.type_id}")
        return node_type

    # =========================================================================
    # PROPERTY VALIDATION
    # =========================================================================

    @staticmethod
    def validate_properties(node_type: NodeType, values: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Check tenant-supplied property values and fill defaults.

        Raises:
            ValueError: unknown key, disabled key, wrong type or missing
                        required value
        """
        values = dict(values or {})
        declared = {p.key: p for p in node_type.properties}

        unknown = sorted(set(values) - set(declared))
        if unknown:
            raise ValueError(f"Unknown properties for node type {node_type.type_id}: {unknown}")

        resolved: Dict[str, Any] = {}
        for prop in node_type.properties:
            if prop.key in values:
                if prop.disabled:
                    raise ValueError(f"Property '{prop.key}' is disabled and cannot be set")
                value = values[prop.key]
                if not prop.accepts(value):
                    raise ValueError(
                        f"Property '{prop.key}' expects {prop.field_type.value}, got {value!r}"
                    )
            else:
                value = prop.default

            if value is None:
                if prop.required:
                    raise ValueError(f"Property '{prop.key}' is required")
                continue
            resolved[prop.key] = value

        return resolved


__all__ = ["NodeTypeService"]
