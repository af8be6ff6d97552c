"""
Request models for the Content Service routes.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ResolveReferencesRequest(BaseModel):
    """Body of the resolve-by-ids routes."""
    model_config = ConfigDict(populate_by_name=True)

    ids: List[str] = Field(default_factory=list, description="Content ids to resolve")
    resolve_asset_urls: bool = Field(True, alias="resolveAssetUrls", description="Ask the CMS to resolve asset URLs")
    flatten: bool = Field(True, description="Ask the CMS for flattened field values")

    @field_validator("ids", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class PublicLeadRequest(BaseModel):
    """Lead captured from a public form."""
    model_config = ConfigDict(populate_by_name=True)

    franchise_id: int = Field(..., alias="franchiseId", description="Franchise receiving the lead")
    name: str = Field(..., min_length=1)
    cell_phone: str = Field(..., alias="cellPhone", min_length=1)
    email: Optional[str] = None
    rating: Optional[int] = None
    observation: Optional[str] = None
    origin: Optional[str] = None
    campaign_slug: Optional[str] = Field(None, alias="campaignSlug")
    ad_campaign_name: Optional[str] = Field(None, alias="adCampaignName")
    ad_set_name: Optional[str] = Field(None, alias="adSetName")
    ad_name: Optional[str] = Field(None, alias="adName")
    facebook_source_id: Optional[str] = Field(None, alias="facebookSourceId")
    facebook_wacl_id: Optional[str] = Field(None, alias="facebookWaclId")
    recent_check_days: Optional[int] = Field(None, alias="recentCheckDays")
    bot: Optional[bool] = None

    @field_validator(
        "email",
        "observation",
        "origin",
        "campaign_slug",
        "ad_campaign_name",
        "ad_set_name",
        "ad_name",
        "facebook_source_id",
        "facebook_wacl_id",
    )
    @classmethod
    def _blank_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value

    def to_upstream(self) -> Dict[str, Any]:
        """camelCase payload without unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ScheduleCreateRequest(BaseModel):
    """Appointment booking request."""
    model_config = ConfigDict(populate_by_name=True)

    date: str = Field(..., min_length=1, description="Appointment date, dd/MM/yyyy")
    hour: str = Field(..., min_length=1, description="Appointment time, HH:mm")
    name: str
    cell_phone: str = Field(..., alias="cellPhone")
    room_id: int = Field(..., alias="roomId")
    franchise_identifier: Optional[int] = Field(None, alias="franchiseIdentifier")
    email: Optional[str] = None
    deal_activity_id: Optional[int] = Field(None, alias="dealActivityId")

    def to_upstream(self, franchise_identifier: int) -> Dict[str, Any]:
        """Payload accepted by the booking upstream; the identifier is always ours."""
        return {
            "date": self.date,
            "franchiseIdentifier": franchise_identifier,
            "hour": self.hour,
            "name": self.name,
            "cellPhone": self.cell_phone,
            "roomId": self.room_id,
        }
