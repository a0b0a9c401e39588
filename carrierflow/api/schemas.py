from typing import Any, Dict, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

Operation = Literal["subscribe", "charge"]


class InitiateRequest(BaseModel):
    # operator-specific extras (trial, service_name, access_url, ...) pass through
    model_config = ConfigDict(extra="allow")

    operation: Operation = "subscribe"
    msisdn: Optional[str] = None
    campaign: Optional[str] = None
    service: Optional[str] = None
    merchant: Optional[str] = None
    redirect_url: Optional[str] = None
    language: Optional[str] = None
    amount: Optional[Union[float, str]] = None
    currency: Optional[str] = None
    price: Optional[Union[float, str]] = None
    fraud_token: Optional[str] = None
    useCheckout: Optional[bool] = None

    def context(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True, exclude={"operation"})


class VerifyRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    msisdn: str
    pin: str
    amount: Optional[Union[float, str]] = None
    currency: Optional[str] = None
    language: Optional[str] = None

    def context(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True, exclude={"msisdn", "pin"})


class CompleteRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    token: str
    sessionId: str

    def context(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True, exclude={"token", "sessionId"})


class DeleteRequest(BaseModel):
    msisdn: Optional[str] = None


class ResumeRequest(BaseModel):
    # epoch ms or ISO-8601
    removedAt: Union[int, float, str]
    msisdn: Optional[str] = None


class TrialRequest(BaseModel):
    trialDays: int = Field(gt=0)
