from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any, Tuple
from datetime import datetime
from uuid import UUID, uuid4


@dataclass
class Property:
    id: UUID
    title: Optional[str] = None
    description: Optional[str] = None
    city: Optional[str] = None
    property_type: Optional[str] = None
    furnished: Optional[str] = None
    college_name: Optional[str] = None
    rent_amount: Optional[float] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    amenities: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    is_active: bool = True

    @classmethod
    def create(cls, title: str, description: str, city: str, rent_amount: float,
               bedrooms: int = None, bathrooms: float = None, property_type: str = None,
               furnished: str = None, college_name: str = None,
               latitude: float = None, longitude: float = None,
               amenities: List[str] = None):
        return cls(
            id=uuid4(),
            title=title,
            description=description,
            city=city,
            property_type=property_type,
            furnished=furnished,
            college_name=college_name,
            rent_amount=rent_amount,
            bedrooms=bedrooms,
            bathrooms=bathrooms,
            latitude=latitude,
            longitude=longitude,
            amenities=amenities or [],
            created_at=datetime.now()
        )

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Property":
        """Build a property from a listings row or any mapping with listing columns."""
        return cls(
            id=record["id"],
            title=record.get("title"),
            description=record.get("description"),
            city=record.get("city"),
            property_type=record.get("property_type", record.get("type")),
            furnished=record.get("furnished"),
            college_name=record.get("college_name"),
            rent_amount=as_float(record.get("rent_amount")),
            bedrooms=as_int(record.get("bedrooms")),
            bathrooms=as_float(record.get("bathrooms")),
            latitude=as_float(record.get("latitude")),
            longitude=as_float(record.get("longitude")),
            amenities=as_list(record.get("amenities")),
            created_at=record.get("created_at"),
            is_active=record.get("status", "active") == "active"
        )


@dataclass(frozen=True)
class CorpusSnapshot:
    """Point-in-time set of active properties shared by every model fitted in one pass."""
    properties: Tuple[Property, ...]
    captured_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def capture(cls, properties: List[Property]) -> "CorpusSnapshot":
        return cls(properties=tuple(properties))

    def __len__(self) -> int:
        return len(self.properties)

    def by_id(self) -> Dict[UUID, Property]:
        return {p.id: p for p in self.properties}

    def property_ids(self) -> List[UUID]:
        return [p.id for p in self.properties]


def as_float(value: Any) -> Optional[float]:
    """Numeric field from a database row or query string; None when unusable"""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def as_int(value: Any) -> Optional[int]:
    number = as_float(value)
    return int(number) if number is not None else None


def as_list(value: Any) -> List[str]:
    """Amenity-style list; comma-separated strings are split"""
    if not value:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item) for item in value]


# Weights of a listing's recent activity in its trend score
TREND_VIEW_WEIGHT = 0.5
TREND_FAVORITE_WEIGHT = 1.5
TREND_INQUIRY_WEIGHT = 2.0
TREND_SCALE = 10.0


def trend_score(views: int, favorites: int, inquiries: int) -> float:
    return (
        views * TREND_VIEW_WEIGHT
        + favorites * TREND_FAVORITE_WEIGHT
        + inquiries * TREND_INQUIRY_WEIGHT
    ) / TREND_SCALE
