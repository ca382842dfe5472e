from fastapi import APIRouter, Query

from rideway.schemas.user import NavigationDecisionResponse
from rideway.utils.auth import CurrentClient
from rideway.utils.route_gate import classify, evaluate

router = APIRouter(prefix="/navigation", tags=["Navigation"])


@router.get("/decision", response_model=NavigationDecisionResponse)
async def navigation_decision(
    client: CurrentClient,
    path: str = Query(..., min_length=1),
) -> NavigationDecisionResponse:
    await client.session.ensure_fresh()
    decision = evaluate(path, client.session.session_present, client.session.session_error)
    return NavigationDecisionResponse(
        path=path,
        route_class=classify(path),
        allowed=decision.allowed,
        redirect_to=decision.redirect_to,
    )
