"""Practice session endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status

from mateai.core.errors import MateAIError
from mateai.web.dependencies import bearer_token, to_http_exception
from mateai.web.schemas import (
    AnswerRequest,
    HintSessionResponse,
    PracticeConfigRequest,
    PracticeCreateRequest,
    PracticeSessionResponse,
)
from mateai.web.sessions import ManagedSession, get_session_manager

router = APIRouter(prefix="/api/practice", tags=["practice"])


def _to_response(managed: ManagedSession) -> PracticeSessionResponse:
    return PracticeSessionResponse(session_id=managed.session_id, **managed.session.to_dict())


async def _get_managed(session_id: str) -> ManagedSession:
    """Look up a session and advance its countdown."""
    managed = await get_session_manager().get_session(session_id)
    if managed is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session '{session_id}' not found",
        )
    managed.session.tick()
    return managed


@router.post("", response_model=PracticeSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_practice(
    request: PracticeCreateRequest,
    token: str | None = Depends(bearer_token),
) -> PracticeSessionResponse:
    """Create a practice session (or open an assigned test)."""
    manager = get_session_manager()
    try:
        managed = await manager.create_session(
            token=token,
            assignment_id=request.assignment_id,
            topic=request.topic,
            difficulty=request.difficulty,
            count=request.count,
            grade=request.grade,
        )
    except MateAIError as e:
        raise to_http_exception(e) from e
    return _to_response(managed)


@router.get("/{session_id}", response_model=PracticeSessionResponse)
async def get_practice(session_id: str) -> PracticeSessionResponse:
    """Get the session snapshot."""
    return _to_response(await _get_managed(session_id))


@router.post("/{session_id}/start", response_model=PracticeSessionResponse)
async def start_practice(
    session_id: str, request: PracticeConfigRequest | None = None
) -> PracticeSessionResponse:
    """Apply optional configuration and generate exercises.

    Generation failures are reported in the snapshot's message, with the
    session back in CONFIGURING.
    """
    managed = await _get_managed(session_id)
    try:
        if request is not None:
            managed.session.configure(
                topic=request.topic,
                difficulty=request.difficulty,
                count=request.count,
                grade=request.grade,
            )
        managed.session.start()
    except MateAIError as e:
        raise to_http_exception(e) from e
    return _to_response(managed)


@router.post("/{session_id}/hint", response_model=HintSessionResponse)
async def request_hint(session_id: str) -> HintSessionResponse:
    """Get a hint for the current exercise."""
    managed = await _get_managed(session_id)
    try:
        hint = managed.session.request_hint()
    except MateAIError as e:
        raise to_http_exception(e) from e
    return HintSessionResponse(hint=hint, session=_to_response(managed))


@router.post("/{session_id}/answer", response_model=PracticeSessionResponse)
async def submit_answer(session_id: str, request: AnswerRequest) -> PracticeSessionResponse:
    """Submit an answer for the current exercise."""
    managed = await _get_managed(session_id)
    try:
        managed.session.submit_answer(request.answer)
    except MateAIError as e:
        raise to_http_exception(e) from e
    return _to_response(managed)


@router.post("/{session_id}/give-up", response_model=PracticeSessionResponse)
async def give_up(session_id: str) -> PracticeSessionResponse:
    """Skip the current question of an assigned test."""
    managed = await _get_managed(session_id)
    try:
        managed.session.give_up()
    except MateAIError as e:
        raise to_http_exception(e) from e
    return _to_response(managed)


@router.post("/{session_id}/advance", response_model=PracticeSessionResponse)
async def advance(session_id: str) -> PracticeSessionResponse:
    """Continue to the next exercise, or finish and generate the report."""
    managed = await _get_managed(session_id)
    try:
        managed.session.advance()
    except MateAIError as e:
        raise to_http_exception(e) from e
    return _to_response(managed)


@router.post("/{session_id}/restart", response_model=PracticeSessionResponse)
async def restart(session_id: str) -> PracticeSessionResponse:
    """Discard the session data and return to configuration."""
    managed = await _get_managed(session_id)
    managed.session.restart()
    return _to_response(managed)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def end_practice(session_id: str) -> None:
    """End a practice session."""
    if not await get_session_manager().end_session(session_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session '{session_id}' not found",
        )
