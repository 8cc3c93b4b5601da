from typing import Any, Literal

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from fastapi.responses import Response
from pydantic import BaseModel, Field

from credential_pool import CredentialPool, PoolError
from credential_pool.providers import TranscriptionRequest, transaction_parse_request
from tracker_api.auth import get_pool, require_service_key
from tracker_api.errors import pool_error_to_http

router = APIRouter(
    prefix="/api/services",
    tags=["services"],
    dependencies=[Depends(require_service_key)],
)

MAX_AUDIO_BYTES = 25 * 1024 * 1024
MAX_SPEECH_CHARS = 5000


class CategoryItem(BaseModel):
    name: str
    type: Literal["expense", "income"] = "expense"


class ParseRequest(BaseModel):
    message: str = Field(min_length=1, max_length=2000)
    categories: list[CategoryItem] = []


class SpeechRequest(BaseModel):
    text: str = Field(min_length=1, max_length=MAX_SPEECH_CHARS)


@router.post("/transcribe")
async def transcribe(
    file: UploadFile = File(...),
    provider: Literal["assemblyai", "speechmatics"] = Form(default="assemblyai"),
    language: str | None = Form(default=None),
    pool: CredentialPool = Depends(get_pool),
) -> dict[str, Any]:
    audio = await file.read()
    if not audio:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Audio file is empty",
        )
    if len(audio) > MAX_AUDIO_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail="Audio file is too large",
        )

    payload = TranscriptionRequest(
        audio=audio, filename=file.filename or "audio", language=language
    )
    try:
        result = await pool.invoke(provider, payload)
    except PoolError as e:
        raise pool_error_to_http(e, during_call=True) from e
    return result.to_dict()


@router.post("/parse")
async def parse_transactions(
    payload: ParseRequest,
    pool: CredentialPool = Depends(get_pool),
) -> dict[str, Any]:
    request = transaction_parse_request(
        payload.message, [category.model_dump() for category in payload.categories]
    )
    try:
        result = await pool.invoke("clarifai", request)
    except PoolError as e:
        raise pool_error_to_http(e, during_call=True) from e
    return result.to_dict()


@router.post("/speech")
async def synthesize_speech(
    payload: SpeechRequest,
    pool: CredentialPool = Depends(get_pool),
) -> Response:
    try:
        result = await pool.invoke("elevenlabs", payload.text)
    except PoolError as e:
        raise pool_error_to_http(e, during_call=True) from e
    return Response(
        content=result.data,
        media_type="audio/mpeg",
        headers={"X-Account-Used": result.account_used or ""},
    )
