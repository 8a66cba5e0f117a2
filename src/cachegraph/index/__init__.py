"""Index records built on top of the store: tags, hierarchy, dependencies, versions, metadata."""

from cachegraph.index.dependencies import DependencyGraph
from cachegraph.index.hierarchy import HierarchyIndex
from cachegraph.index.metadata import KeyMetadata, MetadataStore
from cachegraph.index.records import MemberSet
from cachegraph.index.tags import TagIndex
from cachegraph.index.versions import VersionRegistry

__all__ = [
    "DependencyGraph",
    "HierarchyIndex",
    "KeyMetadata",
    "MemberSet",
    "MetadataStore",
    "TagIndex",
    "VersionRegistry",
]
