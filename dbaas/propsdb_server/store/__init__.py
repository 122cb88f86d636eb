"""
Relational property store.

Modules:
    schema: Tables for the application and user scopes
    database: Engines, transactions and error translation
    versioning: Document lock and guarded version update
    reader / writer / deleter: Read, upsert and delete paths
    reaper: Orphan reclamation
    property_store: PropertyStore facade used by the HTTP boundary
"""

from .database import Database
from .inputs import CollectionInput, DeleteCollectionInput
from .property_store import PropertyStore
from .schema import Scope
from .tree import CollectionNode, DocumentNode, PropertyTree
from .versioning import MutationResult

__all__ = [
    "CollectionInput",
    "CollectionNode",
    "Database",
    "DeleteCollectionInput",
    "DocumentNode",
    "MutationResult",
    "PropertyStore",
    "PropertyTree",
    "Scope",
]
