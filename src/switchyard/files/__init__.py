"""Bulk file reading: discovery, optional model-assisted narrowing, budgeted reads."""

from .chooser import ModelChooser, ProviderChooser, parse_selection
from .discovery import DEFAULT_EXCLUDES, FileDiscovery
from .pipeline import (
    FileSelectionPipeline,
    ReadManyFilesParams,
    ReadManyFilesResult,
    SelectionBudget,
    SkipRecord,
)

__all__ = [
    "DEFAULT_EXCLUDES",
    "FileDiscovery",
    "FileSelectionPipeline",
    "ModelChooser",
    "ProviderChooser",
    "ReadManyFilesParams",
    "ReadManyFilesResult",
    "SelectionBudget",
    "SkipRecord",
    "parse_selection",
]
