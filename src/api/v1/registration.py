"""
API v1 registration routes.

Progressive patient registration (personal-info -> medical-history ->
assessment -> credential setup) and contact verification.
"""

from fastapi import APIRouter, Depends, Response, status

from src.api.cookies import CookiePolicy
from src.api.dependencies import get_cookie_policy, get_registration_service
from src.api.models import (
    ApiResponse,
    AssessmentRequest,
    CompleteRegistrationRequest,
    MedicalHistoryRequest,
    PersonalInfoRequest,
    ResendCodeRequest,
    ResendData,
    SessionData,
    StageData,
    VerifyCodeRequest,
    constitution_view,
    session_data,
)
from src.api.normalization import normalize_medical_history
from src.domain.models import RegistrationStage, StageResult
from src.domain.registration import IdentityKey, RegistrationService

router = APIRouter(tags=["registration"])

_STAGE_ERRORS = {
    400: {"description": "Validation error or invalid registration step"},
    404: {"description": "Registration not found"},
}


def _stage_data(result: StageResult, **extra: object) -> StageData:
    return StageData(
        identity_id=result.record.id,
        current_stage=result.current_stage.value,
        next_stage=result.next_stage.value if result.next_stage else None,
        progress=result.progress,
        **extra,
    )


@router.post(
    "/register/personal-info",
    response_model=ApiResponse[StageData],
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Validation error"},
        409: {"description": "Email or phone already registered"},
    },
    summary="Start (or restart) a patient registration",
    description="Creates a registration, or overwrites an unfinished one matching the "
    "email or phone number.",
)
def submit_personal_info(
    request_data: PersonalInfoRequest,
    service: RegistrationService = Depends(get_registration_service),
) -> ApiResponse[StageData]:
    payload = request_data.model_dump(mode="json", exclude_none=True)
    result = service.submit_stage(
        RegistrationStage.PERSONAL_INFO,
        IdentityKey(email=request_data.email, phone=request_data.phone),
        payload,
    )
    return ApiResponse(
        success=True,
        message="Personal information saved successfully",
        data=_stage_data(result),
    )


@router.post(
    "/register/medical-history",
    response_model=ApiResponse[StageData],
    response_model_exclude_none=True,
    responses=_STAGE_ERRORS,
    summary="Submit medical history",
    description="Accepts legacy payload shapes and stores the canonical medical history.",
)
def submit_medical_history(
    request_data: MedicalHistoryRequest,
    service: RegistrationService = Depends(get_registration_service),
) -> ApiResponse[StageData]:
    raw = request_data.model_dump(mode="json")
    email = raw.pop("email")
    result = service.submit_stage(
        RegistrationStage.MEDICAL_HISTORY,
        IdentityKey(email=email),
        normalize_medical_history(raw),
        raw_payload=raw,
    )
    return ApiResponse(
        success=True,
        message="Medical history saved successfully",
        data=_stage_data(result),
    )


@router.post(
    "/register/assessment",
    response_model=ApiResponse[StageData],
    response_model_exclude_none=True,
    responses=_STAGE_ERRORS,
    summary="Submit the constitution questionnaire",
    description="Scores the questionnaire and stores the constitution profile.",
)
def submit_assessment(
    request_data: AssessmentRequest,
    service: RegistrationService = Depends(get_registration_service),
) -> ApiResponse[StageData]:
    questionnaire = [
        answer.model_dump(mode="json", exclude_none=True) for answer in request_data.questionnaire
    ]
    result = service.submit_assessment(request_data.email, questionnaire)
    return ApiResponse(
        success=True,
        message="Constitution assessment completed successfully",
        data=_stage_data(result, constitution=constitution_view(result.record)),
    )


@router.post(
    "/register/complete",
    response_model=ApiResponse[StageData],
    response_model_exclude_none=True,
    responses=_STAGE_ERRORS,
    summary="Set credentials and send the verification code",
    description="Stores the password and sends a 6-digit code to the registered phone. "
    "A failed send is reported as a warning; request a new code to recover.",
)
def complete_registration(
    request_data: CompleteRegistrationRequest,
    service: RegistrationService = Depends(get_registration_service),
) -> ApiResponse[StageData]:
    result = service.submit_credentials(request_data.email, request_data.password)
    if result.delivery_failed:
        message = "Registration completed but SMS failed. You can request a new code."
    else:
        message = "Registration completed. SMS verification code sent."
    return ApiResponse(
        success=True,
        message=message,
        data=_stage_data(
            result,
            masked_phone=result.record.masked_phone,
            delivery_failed=result.delivery_failed or None,
        ),
    )


@router.post(
    "/verification/verify",
    response_model=ApiResponse[SessionData],
    response_model_exclude_none=True,
    responses={
        400: {"description": "Invalid or expired code, or invalid registration step"},
        404: {"description": "Registration not found"},
    },
    summary="Verify the phone code and finish registration",
    description="On success the account becomes active and a session is opened "
    "(access and refresh cookies are set).",
)
def verify_code(
    request_data: VerifyCodeRequest,
    response: Response,
    service: RegistrationService = Depends(get_registration_service),
    cookies: CookiePolicy = Depends(get_cookie_policy),
) -> ApiResponse[SessionData]:
    session = service.verify_code(request_data.email, request_data.code)
    cookies.set_session(response, session.session)
    return ApiResponse(
        success=True,
        message="Phone number verified successfully. Registration completed!",
        data=session_data(session),
    )


@router.post(
    "/verification/resend",
    response_model=ApiResponse[ResendData],
    response_model_exclude_none=True,
    responses={
        400: {"description": "Invalid registration step"},
        404: {"description": "Registration not found"},
        429: {"description": "Resent too recently or send limit reached"},
    },
    summary="Send a new verification code",
)
def resend_code(
    request_data: ResendCodeRequest,
    service: RegistrationService = Depends(get_registration_service),
) -> ApiResponse[ResendData]:
    result = service.resend_code(request_data.email)
    return ApiResponse(
        success=True,
        message="Verification code sent successfully",
        data=ResendData(
            masked_phone=result.record.masked_phone,
            attempts_remaining=result.sends_remaining,
            expires_at=result.issued.expires_at,
            delivery_failed=None if result.issued.delivered else True,
        ),
    )
