"""Pydantic schemas for cached documents and API responses."""
from typing import List, Optional
from pydantic import BaseModel, Field


class BusinessInfo(BaseModel):
    """Business base info as cached."""
    biz_id: int = Field(alias="bk_biz_id")
    biz_name: str = Field(alias="bk_biz_name")

    class Config:
        """Pydantic config."""
        populate_by_name = True


class SetInfo(BaseModel):
    """Set base info; parent is the business or a custom level instance."""
    set_id: int = Field(alias="bk_set_id")
    set_name: str = Field(alias="bk_set_name")
    parent_id: int = Field(alias="bk_parent_id")

    class Config:
        """Pydantic config."""
        populate_by_name = True


class ModuleInfo(BaseModel):
    """Module base info; parent is always a set."""
    module_id: int = Field(alias="bk_module_id")
    module_name: str = Field(alias="bk_module_name")
    set_id: int = Field(alias="bk_set_id")

    class Config:
        """Pydantic config."""
        populate_by_name = True


class CustomInstance(BaseModel):
    """Instance of a custom mainline level."""
    obj_id: str = Field(alias="bk_obj_id")
    inst_id: int = Field(alias="bk_inst_id")
    inst_name: str = Field(alias="bk_inst_name")
    parent_id: int = Field(alias="bk_parent_id")

    class Config:
        """Pydantic config."""
        populate_by_name = True


class MainlineAssociation(BaseModel):
    """Mainline edge: obj_id sits directly below associate_to."""
    obj_id: str = Field(alias="bk_obj_id")
    associate_to: str = Field(alias="bk_asst_obj_id")

    class Config:
        """Pydantic config."""
        populate_by_name = True


class BusinessTopologySnapshot(BaseModel):
    """Denormalized business topology served from cache."""
    biz_id: int = Field(alias="bk_biz_id")
    biz_name: str = Field(alias="bk_biz_name")
    sets: List[SetInfo] = []
    modules: List[ModuleInfo] = []
    custom_instances: List[CustomInstance] = []
    mainline: List[MainlineAssociation] = []
    # Custom object ids ordered from just below the business downwards
    custom_levels: List[str] = []

    class Config:
        """Pydantic config."""
        populate_by_name = True


class ChangeEvent(BaseModel):
    """A change reported by the system of record's event stream."""
    cursor: str
    event_type: str
    obj_id: str = Field(alias="bk_obj_id")
    biz_id: Optional[int] = Field(default=None, alias="bk_biz_id")

    class Config:
        """Pydantic config."""
        populate_by_name = True


class InvalidateResponse(BaseModel):
    """Result of an invalidation request."""
    biz_id: int
    levels: List[str]


class WatchListResponse(BaseModel):
    """Currently watched objects."""
    objects: List[str]


class WatchChangeResponse(BaseModel):
    """Result of starting or stopping a watch."""
    obj_id: str
    changed: bool


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    redis_connected: bool
    uptime_seconds: float
    watched_objects: int = 0
