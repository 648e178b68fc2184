"""
Feature detection for Governor.

Decides which weighted complexity features a task exhibits. The keyword
detector is a fixed heuristic; another FeatureDetector can replace it
without touching the scorer.
"""

from typing import Iterable, Mapping, Optional, Protocol

from governor.schemas import Task


# Signed weight added to the base score when a feature is present.
DEFAULT_WEIGHTS: dict[str, int] = {
    # Factors that increase complexity
    "requiresArchitecture": 5,
    "criticalDecision": 4,
    "securityCritical": 4,
    "complianceRequired": 4,
    "multiSystemIntegration": 3,
    "complexAlgorithm": 3,
    "largeRefactoring": 3,
    "novelProblem": 3,
    "requiresDeepReasoning": 3,
    "crossDomainKnowledge": 2,
    "performanceCritical": 2,
    "dataIntensive": 2,

    # Factors that decrease complexity
    "hasTemplate": -2,
    "wellDocumented": -2,
    "routineTask": -3,
    "simpleQuery": -4,
    "formattingOnly": -5,
    "statusCheck": -4,
}

# Case-insensitive substrings that imply a feature in a task description.
FEATURE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "requiresArchitecture": ("architecture", "system design", "design system", "structure"),
    "criticalDecision": ("critical", "important decision", "crucial"),
    "securityCritical": ("security", "authentication", "authorization", "encrypt", "secure"),
    "complianceRequired": ("compliance", "gdpr", "hipaa", "pci-dss", "regulatory"),
    "multiSystemIntegration": ("integration", "multiple systems", "api integration"),
    "complexAlgorithm": ("algorithm", "optimization", "complex logic"),
    "largeRefactoring": ("refactor", "restructure", "rewrite"),
    "novelProblem": ("novel", "new approach", "innovative", "never done"),
    "requiresDeepReasoning": ("analyze", "reason", "deduce", "infer"),
    "hasTemplate": ("template", "example", "boilerplate"),
    "wellDocumented": ("documented", "documented code", "clear docs"),
    "routineTask": ("routine", "standard", "typical", "normal"),
    "simpleQuery": ("simple", "quick", "basic"),
    "formattingOnly": ("format", "formatting", "prettify"),
    "statusCheck": ("status", "check status", "get status"),
}


class FeatureDetector(Protocol):
    """Interface for deciding which features a task exhibits."""

    def detect(self, task: Task, feature_names: Iterable[str]) -> frozenset[str]:
        """Return the subset of ``feature_names`` present in ``task``."""
        ...


class KeywordFeatureDetector:
    """
    Rule-based detector.

    A feature is present if the task lists it in ``characteristics`` or
    its description contains any of the feature's keywords.
    """

    def __init__(self, keywords: Optional[Mapping[str, Iterable[str]]] = None):
        source = FEATURE_KEYWORDS if keywords is None else keywords
        self.keywords: dict[str, tuple[str, ...]] = {
            name: tuple(k.lower() for k in words) for name, words in source.items()
        }

    def has_feature(self, task: Task, feature: str) -> bool:
        if feature in task.characteristics:
            return True
        description = task.description.lower()
        return any(keyword in description for keyword in self.keywords.get(feature, ()))

    def detect(self, task: Task, feature_names: Iterable[str]) -> frozenset[str]:
        return frozenset(name for name in feature_names if self.has_feature(task, name))
