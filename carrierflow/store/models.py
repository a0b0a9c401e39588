from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional

from carrierflow.core.state_machine import CODE_ISSUED, SESSION_CREATED


@dataclass
class PendingCode:
    operator: str = ""
    subject: str = ""
    operation: str = "subscribe"  # subscribe / charge
    issuedAt: float = 0.0
    expiresAt: float = 0.0
    attempts: int = 0
    state: str = CODE_ISSUED

    # caller context captured at issuance, reused as defaults at verification
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PendingCode":
        return cls(**{k: v for k, v in (data or {}).items() if k in cls.__dataclass_fields__})


@dataclass
class CheckoutSession:
    sessionId: str = ""
    operator: str = ""
    createdAt: float = 0.0
    expiresAt: float = 0.0
    state: str = SESSION_CREATED
    correlator: Optional[str] = None
    transactionId: Optional[str] = None

    # merchant, campaign, redirect_url, price, language and any extras
    params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "CheckoutSession":
        return cls(**{k: v for k, v in (data or {}).items() if k in cls.__dataclass_fields__})


@dataclass
class FlowReference:
    operator: str = ""
    key: str = ""
    kind: str = ""
    createdAt: float = 0.0
    expiresAt: float = 0.0
    sessionId: Optional[str] = None
    resolved: bool = False
    result: Optional[Dict[str, Any]] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "FlowReference":
        return cls(**{k: v for k, v in (data or {}).items() if k in cls.__dataclass_fields__})
