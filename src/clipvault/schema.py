from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class DeviceInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    hostname: Optional[str] = None
    platform: Optional[str] = None
    deviceId: Optional[str] = None
    macAddresses: Optional[List[str]] = None


class _Upload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    userId: str
    username: str
    deviceId: Optional[str] = None
    hostname: Optional[str] = None
    platform: Optional[str] = None
    macAddresses: Optional[List[str]] = None
    accessType: Optional[str] = None
    timestamp: Optional[Union[int, float, str]] = None
    sessionInfo: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("userId", "username")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("userId")
    @classmethod
    def _no_separator(cls, value: str) -> str:
        if "/" in value:
            raise ValueError("must not contain '/'")
        return value

    def device_info(self) -> Dict[str, Any]:
        info = DeviceInfo(hostname=self.hostname, platform=self.platform,
                          deviceId=self.deviceId, macAddresses=self.macAddresses)
        return info.model_dump(exclude_none=True)


class ScreenshotUpload(_Upload):
    imageData: str  # base64
    extractText: Optional[bool] = None

    @field_validator("imageData")
    @classmethod
    def _has_image(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value


class OcrUpload(_Upload):
    extractedText: str = Field(validation_alias=AliasChoices("extractedText", "text"))
    confidence: float = 0.0
    method: str = "unknown"

    @field_validator("confidence")
    @classmethod
    def _unit_interval(cls, value: float) -> float:
        # some engines report percentages
        if 1 < value <= 100:
            value = value / 100
        if value < 0 or value > 1:
            raise ValueError("must be between 0 and 1 (or a percentage)")
        return value
