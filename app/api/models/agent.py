# app/api/models/agent.py
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class CreateAgentRequest(BaseModel):
    userId: str
    password: str = Field(..., description="Encrypts the agent's private key; never stored.")


class AgentResponse(BaseModel):
    """
    Public view of an agent wallet. The encrypted private key is never returned.
    """
    id: str
    agentAddress: str
    userId: str
    createdAt: str
    balance: int
    totalSpent: int
    totalPurchases: int


class CreateAgentResponse(BaseModel):
    success: bool = True
    agent: AgentResponse


class FundAgentRequest(BaseModel):
    agentId: str
    fromWallet: str
    signature: str = Field(..., description="Funding transaction signed client-side.")


class FundAgentResponse(BaseModel):
    success: bool = True
    balance: int
    agent: AgentResponse


class PayAgentRequest(BaseModel):
    agentId: str
    password: str
    assetId: str
    paymentChallenge: Dict[str, Any] = Field(..., description="Challenge body from the asset's 402 response.")
    paymentRequestToken: str


class PayAgentResponse(BaseModel):
    success: bool = True
    signature: str
    accessToken: str
    assetId: str
    explorerUrl: Optional[str] = None
    message: str = "Payment successful"
    agent: AgentResponse


class AgentListResponse(BaseModel):
    agents: List[AgentResponse]
    count: int
