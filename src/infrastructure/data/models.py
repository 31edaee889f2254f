"""
SQLAlchemy table models.

The listings, interaction and message tables are owned by the marketplace and
only read here; the trending, feature vector, cluster, preference and
recommendation tables are written by the recommendation core.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Column, String, Float, Integer, Boolean, DateTime, Text, JSON,
    Index, UniqueConstraint, CheckConstraint
)
from sqlalchemy.dialects.postgresql import UUID as PostgresUUID, ARRAY
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class ListingModel(Base):
    __tablename__ = "listings"

    id = Column(PostgresUUID(as_uuid=True), primary_key=True, default=uuid4)
    title = Column(String(255))
    description = Column(Text)
    city = Column(String(100), index=True)
    type = Column(String(50))
    furnished = Column(String(50))
    college_name = Column(String(255))
    rent_amount = Column(Float)
    bedrooms = Column(Integer)
    bathrooms = Column(Float)
    latitude = Column(Float)
    longitude = Column(Float)
    amenities = Column(ARRAY(String))
    status = Column(String(20), default="active", index=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class SearchHistoryModel(Base):
    __tablename__ = "search_history"

    id = Column(PostgresUUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(PostgresUUID(as_uuid=True), nullable=False, index=True)
    search_query = Column(Text)
    filters = Column(JSON, default=dict)
    results_count = Column(Integer, default=0)
    search_type = Column(String(50), default="listing")
    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class ListingViewModel(Base):
    __tablename__ = "listing_views"

    id = Column(PostgresUUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(PostgresUUID(as_uuid=True), nullable=False, index=True)
    listing_id = Column(PostgresUUID(as_uuid=True), nullable=False, index=True)
    view_duration_seconds = Column(Integer, default=0)
    interaction_type = Column(String(50), default="view")
    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class FavoriteModel(Base):
    __tablename__ = "favorites"

    id = Column(PostgresUUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(PostgresUUID(as_uuid=True), nullable=False, index=True)
    listing_id = Column(PostgresUUID(as_uuid=True), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class MessageModel(Base):
    """Renter inquiries about a listing; only counted for trend scores"""
    __tablename__ = "messages"

    id = Column(PostgresUUID(as_uuid=True), primary_key=True, default=uuid4)
    listing_id = Column(PostgresUUID(as_uuid=True), index=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class TrendingListingModel(Base):
    __tablename__ = "trending_listings"

    id = Column(PostgresUUID(as_uuid=True), primary_key=True, default=uuid4)
    listing_id = Column(PostgresUUID(as_uuid=True), nullable=False, unique=True)
    trend_score = Column(Float, default=0.0)
    views_last_7_days = Column(Integer, default=0)
    favorites_last_7_days = Column(Integer, default=0)
    inquiries_last_7_days = Column(Integer, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow)


class PropertyFeatureVectorModel(Base):
    __tablename__ = "property_feature_vectors"

    listing_id = Column(PostgresUUID(as_uuid=True), primary_key=True)
    tfidf_vector = Column(JSON, nullable=False)
    vocabulary_version = Column(String(32))
    normalized_rent = Column(Float)
    normalized_bedrooms = Column(Float)
    normalized_bathrooms = Column(Float)
    latitude = Column(Float)
    longitude = Column(Float)
    geo_cluster_id = Column(Integer, index=True)
    last_computed = Column(DateTime, default=datetime.utcnow)


class GeoClusterModel(Base):
    __tablename__ = "geo_clusters"

    cluster_id = Column(Integer, primary_key=True)
    centroid = Column(JSON)
    centroid_latitude = Column(Float)
    centroid_longitude = Column(Float)
    centroid_rent = Column(Float)
    property_count = Column(Integer, default=0)
    avg_rent = Column(Integer)
    min_rent = Column(Integer)
    max_rent = Column(Integer)
    primary_city = Column(String(100))
    property_ids = Column(JSON, default=list)
    last_computed = Column(DateTime, default=datetime.utcnow)


class UserMLPreferenceModel(Base):
    __tablename__ = "user_ml_preferences"

    user_id = Column(PostgresUUID(as_uuid=True), primary_key=True)
    city_counts = Column(JSON, default=dict)
    type_counts = Column(JSON, default=dict)
    amenity_counts = Column(JSON, default=dict)
    preferred_cities = Column(JSON, default=list)
    preferred_property_types = Column(JSON, default=list)
    preferred_amenities = Column(JSON, default=list)
    preferred_min_rent = Column(Float)
    preferred_max_rent = Column(Float)
    average_rent = Column(Float)
    preferred_bedrooms = Column(Integer)
    tfidf_vector = Column(JSON)
    vector_version = Column(String(32))
    total_searches = Column(Integer, default=0)
    total_views = Column(Integer, default=0)
    total_favorites = Column(Integer, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow)


class MLRecommendationModel(Base):
    __tablename__ = "ml_recommendations"

    id = Column(PostgresUUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(PostgresUUID(as_uuid=True), nullable=False)
    listing_id = Column(PostgresUUID(as_uuid=True), nullable=False)
    recommendation_type = Column(String(50), nullable=False)
    confidence_score = Column(Float, nullable=False)
    similarity_score = Column(Float)
    matching_features = Column(JSON, default=dict)
    explanation = Column(Text)
    is_clicked = Column(Boolean, default=False)
    clicked_at = Column(DateTime)
    is_dismissed = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    __table_args__ = (
        UniqueConstraint("user_id", "listing_id", "recommendation_type", name="uq_ml_rec_user_listing_type"),
        Index("idx_ml_rec_user_score", "user_id", "confidence_score"),
        CheckConstraint("confidence_score >= 0 AND confidence_score <= 1", name="check_confidence_range"),
    )
