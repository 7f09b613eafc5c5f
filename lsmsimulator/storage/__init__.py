"""Storage-engine state: write buffers, levels, files and the disk/CPU budget."""

from lsmsimulator.storage.lsm_tree import CompactionJob, LSMTree, LSMTreeStats, split_into_files
from lsmsimulator.storage.memtable import Memtable, MemtableStats
from lsmsimulator.storage.resources import OperationCost, ResourceBudget, ResourceModel
from lsmsimulator.storage.sstable import Level, LevelState, SSTFile

__all__ = [
    "CompactionJob",
    "LSMTree",
    "LSMTreeStats",
    "Level",
    "LevelState",
    "Memtable",
    "MemtableStats",
    "OperationCost",
    "ResourceBudget",
    "ResourceModel",
    "SSTFile",
    "split_into_files",
]
