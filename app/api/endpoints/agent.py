# app/api/endpoints/agent.py
from fastapi import APIRouter, Depends, Query
from typing import Any
import logging

from app.api.deps import get_agent_service
from app.api.models.agent import (
    AgentListResponse,
    AgentResponse,
    CreateAgentRequest,
    CreateAgentResponse,
    FundAgentRequest,
    FundAgentResponse,
    PayAgentRequest,
    PayAgentResponse,
)
from app.storage.records import AgentWallet
from app.wallet.agent import AgentWalletService

logger = logging.getLogger(__name__)

router = APIRouter()


def _agent_response(agent: AgentWallet) -> AgentResponse:
    return AgentResponse(**agent.public_view())


@router.post("/create", response_model=CreateAgentResponse)
def create_agent(
    body: CreateAgentRequest,
    service: AgentWalletService = Depends(get_agent_service),
) -> Any:
    """
    Create an agent wallet whose key is encrypted with the given password.
    """
    agent = service.create(body.userId, body.password)
    return CreateAgentResponse(agent=_agent_response(agent))


@router.post("/fund", response_model=FundAgentResponse)
def fund_agent(
    body: FundAgentRequest,
    service: AgentWalletService = Depends(get_agent_service),
) -> Any:
    """
    Refresh an agent's balance after the user sent it tokens.
    """
    agent = service.fund(body.agentId, body.fromWallet, body.signature)
    return FundAgentResponse(balance=agent.balance, agent=_agent_response(agent))


@router.post("/pay", response_model=PayAgentResponse)
def agent_pay(
    body: PayAgentRequest,
    service: AgentWalletService = Depends(get_agent_service),
) -> Any:
    """
    Pay for an asset from an agent wallet and return the access token.

    Raises:
        PaymentError: unauthorized (401), agent_not_found (404),
            insufficient_balance or verification_failed (400)
    """
    result = service.pay(
        body.agentId,
        body.password,
        body.assetId,
        body.paymentChallenge,
        body.paymentRequestToken,
    )
    return PayAgentResponse(
        signature=result.signature,
        accessToken=result.access_token,
        assetId=result.asset_id,
        explorerUrl=result.explorer_url,
        agent=_agent_response(result.agent),
    )


@router.get("/list", response_model=AgentListResponse)
def list_agents(
    userId: str = Query(..., description="Owner of the agent wallets"),
    service: AgentWalletService = Depends(get_agent_service),
) -> Any:
    agents = [_agent_response(a) for a in service.list_for_user(userId)]
    return AgentListResponse(agents=agents, count=len(agents))
