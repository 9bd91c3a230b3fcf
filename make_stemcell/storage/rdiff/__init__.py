"""rdiff delta decoding and application.

Main Functions:
    - apply_patch(): Apply a delta stream to a basis stream
    - patch_file(): Apply a delta file to a basis file, creating the target
"""

from .patch import OPERATION_QUEUE_SIZE, PatchResult, apply_patch, patch_file
from .proto import (
    HASH_SIZE,
    TYPE_DELTA,
    TYPE_SIGNATURE,
    DeltaReader,
    Operation,
    OpType,
)

__all__ = [
    "apply_patch",
    "patch_file",
    "PatchResult",
    "OPERATION_QUEUE_SIZE",
    "DeltaReader",
    "Operation",
    "OpType",
    "HASH_SIZE",
    "TYPE_DELTA",
    "TYPE_SIGNATURE",
]
