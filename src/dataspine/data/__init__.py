"""
dataspine.data - the detached, change-tracked copy of persistent rows.

Modules
-------
fields      FieldDef / FieldType: field definitions and value coercion
record      Record: one schema-checked row
predicate   Predicate / Condition / Op / where(): typed query predicates
container   ChangeTrackedContainer / RowState: rows plus before-images
dataset     Dataset / Relation: containers synchronized as one unit
binding     DataSourceBinding: container → table, key, skip list
"""

from dataspine.data.binding import DataSourceBinding
from dataspine.data.container import ChangeTrackedContainer, RowState
from dataspine.data.dataset import Dataset, Relation
from dataspine.data.fields import FieldDef, FieldType
from dataspine.data.predicate import Condition, Op, Predicate, where
from dataspine.data.record import Record

__all__ = [
    "ChangeTrackedContainer",
    "Condition",
    "DataSourceBinding",
    "Dataset",
    "FieldDef",
    "FieldType",
    "Op",
    "Predicate",
    "Record",
    "Relation",
    "RowState",
    "where",
]
