"""Product-group hierarchy resolution.

Bork product groups form a forest: each group may reference a parent by
name and/or by id, and a group without a parent at level 1 is a main
category (e.g. "Beverages"). Line items carry only the leaf group name, so
the resolver walks the parent chain to find the main category.

The resolver is built once per aggregation pass and never mutated, so it
can be shared between passes and passed into pure functions.

Examples:
    >>> resolver = build_resolver([
    ...     {"groupName": "Beverages", "groupLevel": 1},
    ...     {"groupName": "Soft Drinks", "parentGroupName": "Beverages", "groupLevel": 2},
    ... ])
    >>> resolver.find_main_category("Soft Drinks")
    CategoryMatch(main_category='Beverages', category='Soft Drinks')

"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Optional

from ops_core.normalize import strip_invisibles, to_int, to_key

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 10


@dataclass(frozen=True)
class ProductGroup:
    """One node of the product-group forest."""

    group_id: Optional[str]
    group_name: Optional[str]
    parent_group_id: Optional[str] = None
    parent_group_name: Optional[str] = None
    group_level: Optional[int] = None

    @property
    def has_parent(self) -> bool:
        return bool(self.parent_group_id) or bool(self.parent_group_name)

    @classmethod
    def from_doc(cls, doc: Mapping[str, Any]) -> ProductGroup:
        """Build a group from a stored document; ids are compared as strings."""
        return cls(
            group_id=to_key(doc.get("groupId")),
            group_name=strip_invisibles(doc.get("groupName")) or None,
            parent_group_id=to_key(doc.get("parentGroupId")),
            parent_group_name=strip_invisibles(doc.get("parentGroupName")) or None,
            group_level=to_int(doc.get("groupLevel")),
        )


@dataclass(frozen=True)
class CategoryMatch:
    main_category: Optional[str]
    category: str


@dataclass(frozen=True)
class CategoryResolver:
    """Immutable lookup over product groups keyed by name and by id."""

    by_name: Mapping[str, ProductGroup] = field(default_factory=dict)
    by_id: Mapping[str, ProductGroup] = field(default_factory=dict)
    max_depth: int = DEFAULT_MAX_DEPTH

    def __len__(self) -> int:
        return len(self.by_name)

    def _parent_of(self, group: ProductGroup) -> Optional[ProductGroup]:
        parent = None
        if group.parent_group_name:
            parent = self.by_name.get(group.parent_group_name)
        if parent is None and group.parent_group_id:
            parent = self.by_id.get(group.parent_group_id)
        return parent

    def find_main_category(self, leaf_name: Any) -> CategoryMatch:
        """Resolve a leaf group name to its main category.

        Never raises: unknown names, missing parents and cycles all degrade
        to a best-effort answer.

        Args:
            leaf_name: Group name as it appears on the line item.

        Returns:
            CategoryMatch with ``category`` set to the leaf name and
            ``main_category`` set to the root of its chain (or None).

        Examples:
            >>> build_resolver([]).find_main_category("Snacks")
            CategoryMatch(main_category=None, category='Snacks')

        """
        name = strip_invisibles(leaf_name) or ""
        group = self.by_name.get(name)
        if group is None:
            return CategoryMatch(None, name)

        if not group.has_parent:
            if group.group_level == 1:
                return CategoryMatch(name, name)
            return CategoryMatch(None, name)

        current = group
        root_candidate: Optional[str] = None
        for _ in range(self.max_depth):
            parent = self._parent_of(current)
            if parent is None:
                # dangling parent reference
                if root_candidate:
                    return CategoryMatch(root_candidate, name)
                return CategoryMatch(current.parent_group_name, name)
            root_candidate = parent.group_name or current.parent_group_name
            if not parent.has_parent:
                return CategoryMatch(root_candidate, name)
            current = parent

        logger.debug("Category hierarchy depth exceeded for %r, using %r", name, root_candidate)
        return CategoryMatch(root_candidate, name)


def build_resolver(
    groups: Iterable[Mapping[str, Any] | ProductGroup],
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> CategoryResolver:
    """Build a CategoryResolver from product-group documents.

    When several groups share a name or id, the first one wins.

    Args:
        groups: Product-group documents (``groupId``, ``groupName``,
            ``parentGroupId``, ``parentGroupName``, ``groupLevel``) or
            ProductGroup instances.
        max_depth: Maximum number of parent hops.

    Returns:
        CategoryResolver ready for lookups.

    """
    by_name: dict[str, ProductGroup] = {}
    by_id: dict[str, ProductGroup] = {}
    for raw in groups:
        group = raw if isinstance(raw, ProductGroup) else ProductGroup.from_doc(raw)
        if group.group_name and group.group_name not in by_name:
            by_name[group.group_name] = group
        if group.group_id and group.group_id not in by_id:
            by_id[group.group_id] = group
    logger.debug("Built category resolver with %d groups", len(by_name))
    return CategoryResolver(
        by_name=MappingProxyType(by_name),
        by_id=MappingProxyType(by_id),
        max_depth=max_depth,
    )
