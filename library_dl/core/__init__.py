"""
Core download engine.

The `DownloadOrchestrator` acts as the run coordinator: it pages through a
library, checkpoints progress and delegates rebuilding each individual
document to the `ChunkReconstructor`.
"""

from .orchestrator import DownloadOrchestrator
from .reconstructor import ChunkReconstructor, ReconstructionResult

__all__ = ["ChunkReconstructor", "DownloadOrchestrator", "ReconstructionResult"]
