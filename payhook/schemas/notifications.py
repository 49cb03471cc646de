"""
Pydantic models for inbound Microsoft Graph change notifications.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ResourceData(BaseModel):
    """Identifies the changed resource inside a notification."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = Field(None, description="Graph id of the changed message.")
    odata_type: Optional[str] = Field(None, alias="@odata.type")
    odata_id: Optional[str] = Field(None, alias="@odata.id")


class ChangeNotification(BaseModel):
    """One item of the ``value`` array posted to the webhook."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    subscription_id: Optional[str] = Field(None, alias="subscriptionId")
    client_state: Optional[str] = Field(None, alias="clientState")
    change_type: Optional[str] = Field(None, alias="changeType")
    resource: Optional[str] = None
    tenant_id: Optional[str] = Field(None, alias="tenantId")
    resource_data: Optional[ResourceData] = Field(None, alias="resourceData")

    @property
    def message_id(self) -> Optional[str]:
        if self.resource_data is None:
            return None
        return self.resource_data.id or None


class NotificationBatch(BaseModel):
    """Envelope Graph posts for each delivery."""

    model_config = ConfigDict(extra="ignore")

    value: list[ChangeNotification] = Field(default_factory=list)


__all__ = ["ChangeNotification", "NotificationBatch", "ResourceData"]
