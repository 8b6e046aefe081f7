"""Context window assembly: relevance-ranked primary path and legacy fallback."""

from contextengine.selection.budget import fit_to_budget
from contextengine.selection.legacy_assembler import LegacyAssembler
from contextengine.selection.relevance_selector import RelevanceSelector, SelectionResult

__all__ = [
    'LegacyAssembler',
    'RelevanceSelector',
    'SelectionResult',
    'fit_to_budget',
]
