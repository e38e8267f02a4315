"""
Digest delivery routes.

Usage:
    1. PUT /rules                        - Pin a domain to a category
    2. POST /phone/send-code             - Text a one-time code
    3. POST /phone/verify-code           - Confirm the code
    4. POST /digest/script               - Preview the current digest
    5. POST /digest/deliver              - Generate and deliver over a channel
    6. POST /notifications/provider-status - Telephony status callback
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from app.auth.verify import current_user_id
from app.config import settings
from app.features.digest_delivery.api.dependencies import DigestDeliveryServices, get_services
from app.features.digest_delivery.api.schemas import (
    CategoryRuleRequest,
    CategoryRuleResponse,
    DeliverDigestRequest,
    DeliverDigestResponse,
    DigestScriptResponse,
    NotificationRecordResponse,
    PhoneNumberRequest,
    VerificationResponse,
    VerifyCodeRequest,
    VoiceResponse,
    VoicesResponse,
)
from app.features.digest_delivery.domain import (
    AlreadyDeliveredToday,
    CodeAlreadyConsumed,
    CodeExpired,
    CodeMismatch,
    DigestDeliveryError,
    MalformedDestination,
    NotVerified,
    ProviderUnavailable,
    TooManyAttempts,
    VerificationNotStarted,
    VerificationState,
    validate_destination,
)
from app.features.digest_delivery.providers import validate_signature
from app.features.digest_delivery.providers.twilio_client import SIGNATURE_HEADER
from app.infrastructure.observability.logging import get_logger

router = APIRouter(tags=["digest-delivery"])
logger = get_logger(__name__)

ERROR_STATUS_CODES: list[tuple[type[DigestDeliveryError], int]] = [
    (MalformedDestination, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotVerified, status.HTTP_403_FORBIDDEN),
    (CodeMismatch, status.HTTP_400_BAD_REQUEST),
    (CodeExpired, status.HTTP_410_GONE),
    (TooManyAttempts, status.HTTP_429_TOO_MANY_REQUESTS),
    (VerificationNotStarted, status.HTTP_409_CONFLICT),
    (CodeAlreadyConsumed, status.HTTP_409_CONFLICT),
    (AlreadyDeliveredToday, status.HTTP_409_CONFLICT),
    (ProviderUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def to_http_error(error: DigestDeliveryError) -> HTTPException:
    """Translate a feature error into an HTTP error with a user-facing reason."""
    status_code = next(
        (code for error_type, code in ERROR_STATUS_CODES if isinstance(error, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    reason = str(error) if isinstance(error, CodeMismatch) else error.reason
    detail: dict = {"code": error.code, "reason": reason}
    headers = None

    if isinstance(error, ProviderUnavailable):
        headers = {"Retry-After": str(error.retry_after_seconds)}
        detail["retry_after_seconds"] = error.retry_after_seconds
        if error.record is not None:
            detail["record_id"] = error.record.id

    return HTTPException(status_code=status_code, detail=detail, headers=headers)


# ----------------------------------------------------------------------
# Digest
# ----------------------------------------------------------------------


@router.post("/digest/script", response_model=DigestScriptResponse)
async def generate_digest_script(
    user_id: str = Depends(current_user_id),
    services: DigestDeliveryServices = Depends(get_services),
):
    """Generate the current call-me digest without delivering it."""
    digest = await services.digest_generator.generate_digest(user_id)
    return DigestScriptResponse.from_domain(digest)


@router.post("/digest/deliver", response_model=DeliverDigestResponse)
async def deliver_digest(
    request: DeliverDigestRequest,
    user_id: str = Depends(current_user_id),
    services: DigestDeliveryServices = Depends(get_services),
):
    """
    Generate a fresh digest and deliver it over the requested channel.

    Raises:
        403: Number not verified
        409: once_per_day requested and a digest already went out today
        422: Number is not E.164
        503: Provider unavailable (see Retry-After)
    """
    try:
        validate_destination(request.phone_number)
        digest = await services.digest_generator.generate_digest(user_id)
        dispatch = (
            services.dispatcher.dispatch_once_per_day
            if request.once_per_day
            else services.dispatcher.dispatch
        )
        record = await dispatch(
            user_id,
            request.phone_number,
            request.channel,
            digest,
            voice_id=request.voice_id,
        )
    except DigestDeliveryError as e:
        logger.warning(
            "Digest delivery rejected",
            user_id=user_id,
            channel=request.channel.value,
            error_code=e.code,
        )
        raise to_http_error(e) from e

    return DeliverDigestResponse(
        digest=DigestScriptResponse.from_domain(digest),
        record=NotificationRecordResponse.from_domain(record),
    )


@router.get("/digest/voices", response_model=VoicesResponse)
async def list_voices(
    user_id: str = Depends(current_user_id),
    services: DigestDeliveryServices = Depends(get_services),
):
    voices = await services.speech.list_voices()
    return VoicesResponse(
        voices=[VoiceResponse(voice_id=v.voice_id, name=v.name) for v in voices],
        default_voice_id=services.speech.default_voice_id,
        source="provider" if voices else "default",
    )


# ----------------------------------------------------------------------
# Phone verification
# ----------------------------------------------------------------------


@router.post("/phone/send-code", response_model=VerificationResponse)
async def send_verification_code(
    request: PhoneNumberRequest,
    user_id: str = Depends(current_user_id),
    services: DigestDeliveryServices = Depends(get_services),
):
    try:
        session = await services.verification.send_code(user_id, request.phone_number)
    except DigestDeliveryError as e:
        raise to_http_error(e) from e

    return VerificationResponse(
        success=True,
        state=session.state,
        reason="Verification code sent. Check your phone.",
        expires_at=session.expires_at,
    )


@router.post("/phone/verify-code", response_model=VerificationResponse)
async def verify_code(
    request: VerifyCodeRequest,
    user_id: str = Depends(current_user_id),
    services: DigestDeliveryServices = Depends(get_services),
):
    try:
        session = await services.verification.verify_code(
            user_id, request.phone_number, request.code
        )
    except DigestDeliveryError as e:
        raise to_http_error(e) from e

    return VerificationResponse(
        success=True,
        state=session.state,
        reason="Your phone has been verified.",
    )


@router.get("/phone/status", response_model=VerificationResponse)
async def verification_status(
    phone_number: str = Query(...),
    user_id: str = Depends(current_user_id),
    services: DigestDeliveryServices = Depends(get_services),
):
    try:
        validate_destination(phone_number)
        state = await services.verification.get_state(user_id, phone_number)
    except DigestDeliveryError as e:
        raise to_http_error(e) from e

    return VerificationResponse(
        success=state == VerificationState.VERIFIED,
        state=state,
        reason=f"Verification state: {state.value}",
    )


# ----------------------------------------------------------------------
# Category rules
# ----------------------------------------------------------------------


@router.get("/rules", response_model=list[CategoryRuleResponse])
async def list_rules(
    user_id: str = Depends(current_user_id),
    services: DigestDeliveryServices = Depends(get_services),
):
    rules = await services.rules.list_rules(user_id)
    return [CategoryRuleResponse.from_domain(rule) for rule in rules]


@router.put("/rules", response_model=CategoryRuleResponse)
async def upsert_rule(
    request: CategoryRuleRequest,
    user_id: str = Depends(current_user_id),
    services: DigestDeliveryServices = Depends(get_services),
):
    try:
        rule = await services.rules.upsert_rule(
            user_id, request.domain, request.category, request.reason
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return CategoryRuleResponse.from_domain(rule)


@router.delete("/rules/{domain}")
async def delete_rule(
    domain: str,
    user_id: str = Depends(current_user_id),
    services: DigestDeliveryServices = Depends(get_services),
):
    if not await services.rules.delete_rule(user_id, domain):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rule not found")
    return {"success": True, "domain": domain}


# ----------------------------------------------------------------------
# Notification history and provider status
# ----------------------------------------------------------------------


@router.get("/notifications", response_model=list[NotificationRecordResponse])
async def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(current_user_id),
    services: DigestDeliveryServices = Depends(get_services),
):
    records = await services.dispatcher.list_history(user_id, limit)
    return [NotificationRecordResponse.from_domain(record) for record in records]


@router.post("/notifications/{record_id}/refresh", response_model=NotificationRecordResponse)
async def refresh_notification(
    record_id: str,
    user_id: str = Depends(current_user_id),
    services: DigestDeliveryServices = Depends(get_services),
):
    try:
        record = await services.dispatcher.refresh_status(user_id, record_id)
    except DigestDeliveryError as e:
        raise to_http_error(e) from e

    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return NotificationRecordResponse.from_domain(record)


@router.post("/notifications/provider-status")
async def provider_status_callback(
    request: Request,
    services: DigestDeliveryServices = Depends(get_services),
):
    """Twilio status callback for calls and messages. Duplicates are harmless."""
    form = await request.form()
    params = {key: str(value) for key, value in form.items()}

    callback_url = settings.TWILIO_STATUS_CALLBACK_URL or str(request.url)
    signature = request.headers.get(SIGNATURE_HEADER)
    if not validate_signature(settings.TWILIO_AUTH_TOKEN, callback_url, params, signature):
        logger.warning("Rejected provider callback with bad signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    provider_ref = params.get("CallSid") or params.get("MessageSid")
    raw_status = params.get("CallStatus") or params.get("MessageStatus")
    if not provider_ref or not raw_status:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing status fields")

    duration = params.get("CallDuration")
    record = await services.dispatcher.apply_provider_status(
        provider_ref,
        raw_status,
        int(duration) if duration and duration.isdigit() else None,
    )

    return {"ok": True, "status": record.status.value if record else None}
