"""
Priority scoring and SLA deadlines.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from ..models.ticket import PriorityLevel, SLAData
from .intent import IntentClassifier, KeywordIntentClassifier

logger = logging.getLogger(__name__)

# Minimum score per level, highest first
LEVEL_THRESHOLDS: List[Tuple[PriorityLevel, float]] = [
    (PriorityLevel.EMERGENCY, 0.6),
    (PriorityLevel.HIGH, 0.3),
    (PriorityLevel.MEDIUM, 0.12),
]

DEFAULT_RESPONSE_MINUTES = {"emergency": 2, "high": 5, "medium": 15, "low": 30}
DEFAULT_RESOLUTION_MINUTES = {"emergency": 15, "high": 60, "medium": 240, "low": 480}

DEFAULT_SEVERITY = 3


@dataclass
class PriorityAssessment:
    """Score, level and the inputs that produced them."""
    score: float
    level: PriorityLevel
    emergency_keywords: List[str] = field(default_factory=list)
    components: Dict[str, float] = field(default_factory=dict)


class PriorityEngine:
    """
    Weighted priority score and per-level SLA deadlines.

    score = w_emergency * keyword_hit + w_severity * (severity - 1) / 4
          + w_department * department_urgency + w_wait * min(wait / horizon, 1)
    """

    def __init__(
        self,
        classifier: Optional[IntentClassifier] = None,
        weight_emergency: float = 0.6,
        weight_severity: float = 0.2,
        weight_department: float = 0.1,
        weight_wait: float = 0.1,
        department_urgency: Optional[Dict[str, float]] = None,
        default_department_urgency: float = 0.3,
        wait_horizon_seconds: int = 1800,
        response_minutes: Optional[Dict[str, int]] = None,
        resolution_minutes: Optional[Dict[str, int]] = None
    ):
        self.classifier = classifier or KeywordIntentClassifier()
        self.weight_emergency = weight_emergency
        self.weight_severity = weight_severity
        self.weight_department = weight_department
        self.weight_wait = weight_wait
        self.department_urgency = {
            name.lower(): value for name, value in (department_urgency or {}).items()
        }
        self.default_department_urgency = default_department_urgency
        self.wait_horizon_seconds = wait_horizon_seconds
        self.response_minutes = response_minutes or dict(DEFAULT_RESPONSE_MINUTES)
        self.resolution_minutes = resolution_minutes or dict(DEFAULT_RESOLUTION_MINUTES)

    @classmethod
    def from_settings(cls, settings, classifier: Optional[IntentClassifier] = None) -> 'PriorityEngine':
        return cls(
            classifier=classifier,
            weight_emergency=settings.priority_weight_emergency,
            weight_severity=settings.priority_weight_severity,
            weight_department=settings.priority_weight_department,
            weight_wait=settings.priority_weight_wait,
            department_urgency=settings.department_urgency,
            default_department_urgency=settings.default_department_urgency,
            wait_horizon_seconds=settings.priority_wait_horizon_seconds,
            response_minutes=settings.sla_response_minutes,
            resolution_minutes=settings.sla_resolution_minutes,
        )

    @staticmethod
    def level_for(score: float) -> PriorityLevel:
        for level, minimum in LEVEL_THRESHOLDS:
            if score >= minimum:
                return level
        return PriorityLevel.LOW

    def assess(
        self,
        text: str,
        department: Optional[str] = None,
        severity: Optional[int] = None,
        wait_seconds: float = 0.0
    ) -> PriorityAssessment:
        """
        Score a handoff request.

        Args:
            text: Reason and recent customer text scanned for emergency keywords
            department: Target department, if known
            severity: Stated severity 1..5 (defaults to 3)
            wait_seconds: How long the customer has already waited
        """
        keywords = self.classifier.emergency_matches(text or "")
        severity_value = DEFAULT_SEVERITY if severity is None else min(max(severity, 1), 5)

        components = {
            "emergency": 1.0 if keywords else 0.0,
            "severity": (severity_value - 1) / 4,
            "department": self.department_urgency.get(
                (department or "").lower(), self.default_department_urgency
            ),
            "wait": min(max(wait_seconds, 0.0) / self.wait_horizon_seconds, 1.0),
        }

        score = (
            self.weight_emergency * components["emergency"]
            + self.weight_severity * components["severity"]
            + self.weight_department * components["department"]
            + self.weight_wait * components["wait"]
        )
        score = round(min(max(score, 0.0), 1.0), 6)
        level = self.level_for(score)

        logger.debug(f"Priority assessed: score={score}, level={level.value}, keywords={keywords}")
        return PriorityAssessment(score=score, level=level, emergency_keywords=keywords, components=components)

    def deadlines(self, level: PriorityLevel, created_at: datetime) -> Tuple[datetime, datetime]:
        """(response_deadline, resolution_deadline) for a ticket created at ``created_at``."""
        return (
            created_at + timedelta(minutes=self.response_minutes[level.value]),
            created_at + timedelta(minutes=self.resolution_minutes[level.value]),
        )

    def build_sla(self, level: PriorityLevel, created_at: datetime) -> SLAData:
        response_deadline, resolution_deadline = self.deadlines(level, created_at)
        return SLAData(response_deadline=response_deadline, resolution_deadline=resolution_deadline)

    @staticmethod
    def escalated_level(current: PriorityLevel, escalation_level: int) -> PriorityLevel:
        """Level after reaching ``escalation_level``: at least High, Emergency from level 2."""
        if escalation_level >= 2:
            return PriorityLevel.EMERGENCY
        return max(current, PriorityLevel.HIGH, key=lambda level: level.rank)


__all__ = ['PriorityEngine', 'PriorityAssessment', 'LEVEL_THRESHOLDS']
