# oneshot_webhook/api/models/x402.py
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class TokenExtra(BaseModel):
    """
    EIP-712 domain details of the payment token, passed back to the payer
    so it can sign a transferWithAuthorization for the right contract.
    """
    name: str
    version: str

    class Config:
        frozen = True


class PaymentRequirement(BaseModel):
    """
    Terms a payer must meet for one network. Serialized verbatim into the
    "accepts" list of the 402 challenge.
    """
    scheme: str
    network: str
    maxAmountRequired: str = Field(..., description="Minimum amount in the token's smallest unit.")
    resource: str = Field(..., description="The webhook URL being paid for.")
    description: str
    mimeType: str
    outputSchema: Optional[Dict[str, Any]] = None
    payTo: str
    maxTimeoutSeconds: int
    asset: str = Field(..., description="Token contract address.")
    extra: TokenExtra

    class Config:
        frozen = True

    def to_wire(self) -> Dict[str, Any]:
        """JSON form used on the wire; absent optional fields are omitted."""
        return self.model_dump(exclude_none=True)


class SupportedToken(BaseModel):
    contractAddress: str
    name: str
    version: str

    class Config:
        extra = "ignore"


class SupportedKind(BaseModel):
    """All tokens the 1Shot API accepts on one network."""
    scheme: str
    network: str
    tokens: List[SupportedToken] = []

    class Config:
        extra = "ignore"

    def find_token(self, contract_address: str) -> Optional[SupportedToken]:
        for token in self.tokens:
            if token.contractAddress == contract_address:
                return token
        return None


class SupportedResponse(BaseModel):
    """Response of GET /x402/supported."""
    kinds: List[SupportedKind] = []

    class Config:
        extra = "ignore"

    def find_kind(self, network: str) -> Optional[SupportedKind]:
        for kind in self.kinds:
            if kind.network == network:
                return kind
        return None


class VerifyResponse(BaseModel):
    """Response of POST /x402/verify."""
    isValid: bool
    invalidReason: Optional[str] = None
    payer: Optional[str] = None

    class Config:
        extra = "ignore"


class SettleResponse(BaseModel):
    """Response of POST /x402/settle."""
    success: bool
    txHash: Optional[str] = None
    error: Optional[str] = None
    networkId: Optional[str] = None

    class Config:
        extra = "ignore"


class X402ErrorResponse(BaseModel):
    """Body of an HTTP 402 Payment Required response."""
    x402Version: int
    error: str
    accepts: List[PaymentRequirement]
