"""Record models shared by the merge store, aggregators and behaviors."""

from pyagg.models._base import AggBaseModel
from pyagg.models.atom import CompoundKey, DataAtom
from pyagg.models.delta import AtomOperation, OperationKind, UpdateDelta

__all__ = [
    "AggBaseModel",
    "AtomOperation",
    "CompoundKey",
    "DataAtom",
    "OperationKind",
    "UpdateDelta",
]
