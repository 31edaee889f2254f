from dataclasses import dataclass, field
from typing import List, Dict, Any, Tuple
from uuid import UUID


@dataclass
class GeoCluster:
    """A K-Means group of listings in normalized (latitude, longitude, rent) space."""
    cluster_id: int
    centroid: Tuple[float, float, float]
    centroid_latitude: float
    centroid_longitude: float
    centroid_rent: float
    property_count: int
    avg_rent: int
    min_rent: int
    max_rent: int
    primary_city: str
    property_ids: List[UUID] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cluster_id": self.cluster_id,
            "centroid": list(self.centroid),
            "centroid_latitude": self.centroid_latitude,
            "centroid_longitude": self.centroid_longitude,
            "centroid_rent": self.centroid_rent,
            "property_count": self.property_count,
            "avg_rent": self.avg_rent,
            "min_rent": self.min_rent,
            "max_rent": self.max_rent,
            "primary_city": self.primary_city,
            "property_ids": [str(pid) for pid in self.property_ids],
        }
