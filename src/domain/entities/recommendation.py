from dataclasses import dataclass, field
from typing import Dict, Optional, Any
from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4


class RecommendationType(Enum):
    CONTENT_BASED = "content_based"
    COLD_START_GEO = "cold_start_geo"
    TRENDING = "trending"


@dataclass
class Recommendation:
    """A ranked listing for one user. Timestamps are naive UTC, matching the table defaults."""
    id: UUID
    user_id: UUID
    property_id: UUID
    recommendation_type: RecommendationType
    confidence_score: float
    similarity_score: float
    matching_features: Dict[str, Any]
    explanation: str
    created_at: datetime
    is_clicked: bool = False
    clicked_at: Optional[datetime] = None
    is_dismissed: bool = False

    @classmethod
    def create(cls, user_id: UUID, property_id: UUID, recommendation_type: RecommendationType,
               score: float, explanation: str, matching_features: Dict[str, Any] = None,
               similarity_score: float = None):
        score = _clamp(score)
        return cls(
            id=uuid4(),
            user_id=user_id,
            property_id=property_id,
            recommendation_type=recommendation_type,
            confidence_score=score,
            similarity_score=_clamp(similarity_score) if similarity_score is not None else score,
            matching_features=matching_features or {},
            explanation=explanation,
            created_at=datetime.utcnow()
        )

    @property
    def dedup_key(self):
        return (self.user_id, self.property_id, self.recommendation_type)

    def mark_clicked(self):
        self.is_clicked = True
        self.clicked_at = datetime.utcnow()

    def dismiss(self):
        self.is_dismissed = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "property_id": str(self.property_id),
            "recommendation_type": self.recommendation_type.value,
            "confidence_score": self.confidence_score,
            "similarity_score": self.similarity_score,
            "matching_features": self.matching_features,
            "explanation": self.explanation,
            "created_at": self.created_at.isoformat(),
            "is_clicked": self.is_clicked,
            "clicked_at": self.clicked_at.isoformat() if self.clicked_at else None,
            "is_dismissed": self.is_dismissed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Recommendation":
        clicked_at = data.get("clicked_at")
        return cls(
            id=UUID(data["id"]),
            user_id=UUID(data["user_id"]),
            property_id=UUID(data["property_id"]),
            recommendation_type=RecommendationType(data["recommendation_type"]),
            confidence_score=data["confidence_score"],
            similarity_score=data["similarity_score"],
            matching_features=data.get("matching_features") or {},
            explanation=data["explanation"],
            created_at=datetime.fromisoformat(data["created_at"]),
            is_clicked=data.get("is_clicked", False),
            clicked_at=datetime.fromisoformat(clicked_at) if clicked_at else None,
            is_dismissed=data.get("is_dismissed", False)
        )


def _clamp(score: float) -> float:
    return max(0.0, min(1.0, float(score)))
