"""
Ingestion Adapter

FastAPI dependency that gates a route behind the risk engine:

    @app.post("/payments", dependencies=[Depends(fraud_guard(ActivityType.PAYMENT))])

Builds an ActivityInput from the request context, evaluates it and
enforces the decision:
- shouldBlock: 403 {error, code: FRAUD_DETECTION_BLOCK, riskScore}
- risky: X-Risk-Level / X-Risk-Score response headers, request proceeds
- otherwise: request proceeds silently

Requests without a resolved user are not evaluated.
"""

import json
import logging
from typing import Any, Optional, Union

from fastapi import Depends, Request, Response
from pydantic import ValidationError

from ..engine import RiskEngine
from ..metrics import metrics
from ..schemas import ActivityInput, ActivityType, Location, RiskDecision
from .auth import resolve_user_id
from .dependencies import get_engine

logger = logging.getLogger("riskgate.api")

DEVICE_FINGERPRINT_HEADER = "X-Device-Fingerprint"
LOCATION_HEADER = "X-User-Location"
SESSION_ID_HEADER = "X-Session-Id"


class FraudBlockedError(Exception):
    """The engine decided to block the guarded action."""

    def __init__(self, risk_score: int):
        self.risk_score = risk_score
        super().__init__(f"Activity blocked (risk score {risk_score})")

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": "Activity blocked due to security concerns",
            "code": "FRAUD_DETECTION_BLOCK",
            "riskScore": self.risk_score,
        }


class FraudCheckUnavailableError(Exception):
    """Evaluation failed and the engine is configured fail-closed."""

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": "Security check unavailable, please retry later",
            "code": "FRAUD_CHECK_UNAVAILABLE",
        }


def parse_location_header(raw: Optional[str]) -> Optional[Location]:
    """Parse the JSON location header. Malformed values are ignored."""
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    try:
        return Location.model_validate(data)
    except ValidationError:
        return None


def build_activity_input(
    request: Request,
    user_id: str,
    activity_type: Union[ActivityType, str],
) -> ActivityInput:
    """Collect request context into an ActivityInput."""
    headers = request.headers
    return ActivityInput(
        user_id=user_id,
        activity_type=activity_type,
        ip_address=request.client.host if request.client else None,
        user_agent=headers.get("user-agent"),
        device_fingerprint=headers.get(DEVICE_FINGERPRINT_HEADER),
        location=parse_location_header(headers.get(LOCATION_HEADER)),
        session_id=headers.get(SESSION_ID_HEADER),
        # Body is left out: it may carry credentials
        metadata={
            "endpoint": request.url.path,
            "method": request.method,
            "query": dict(request.query_params),
        },
    )


def fraud_guard(activity_type: Union[ActivityType, str]):
    """
    Create a dependency guarding a route with the given activity type.

    The Decision is exposed to the handler as request.state.fraud_check
    (None when evaluation was skipped or failed open).
    """

    async def dependency(
        request: Request,
        response: Response,
        engine: RiskEngine = Depends(get_engine),
    ) -> Optional[RiskDecision]:
        request.state.fraud_check = None

        user_id = resolve_user_id(request)
        if user_id is None:
            return None

        try:
            activity = build_activity_input(request, user_id, activity_type)
            decision = await engine.evaluate(activity)
        except Exception as e:
            if not engine.fail_open:
                logger.error("Fraud check failed for user %s, rejecting: %s", user_id, e)
                raise FraudCheckUnavailableError() from e
            metrics.fail_open_total.inc()
            logger.error("Fraud check failed for user %s, allowing request: %s", user_id, e)
            return None

        request.state.fraud_check = decision

        if decision.should_block:
            raise FraudBlockedError(decision.risk_score)

        if decision.is_risky:
            response.headers["X-Risk-Level"] = "HIGH"
            response.headers["X-Risk-Score"] = str(decision.risk_score)

        return decision

    return dependency
