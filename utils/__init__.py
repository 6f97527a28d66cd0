"""Utility helpers shared across the search services and API."""

from utils.catalog import ConfigurationError, EquipmentCatalog, default_catalog
from utils.flags import FLAG_DEFINITIONS, build_flag_insights
from utils.io import clean_resource_frame, read_resource_profile
from utils.regions import Region, get_ratio_constraints, recommend_biomass_routes

__all__ = [
    "ConfigurationError",
    "EquipmentCatalog",
    "default_catalog",
    "FLAG_DEFINITIONS",
    "build_flag_insights",
    "clean_resource_frame",
    "read_resource_profile",
    "Region",
    "get_ratio_constraints",
    "recommend_biomass_routes",
]
