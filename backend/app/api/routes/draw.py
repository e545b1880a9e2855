from fastapi import APIRouter, Request, Response, status

from app.api.deps import CurrentUserIdDep, DrawManagerDep
from app.core.audit import AuditAction, audit_draw_action
from app.core.errors import AppError
from app.schemas.draw import (
    AssignmentPublic,
    DrawResultPublic,
    DrawStatusPublic,
    ExclusionCreate,
    ExclusionPublic,
)

router = APIRouter(tags=["draw"])


@router.post("/groups/{group_id}/draw", response_model=DrawResultPublic, status_code=status.HTTP_201_CREATED)
async def perform_draw(
    group_id: str,
    request: Request,
    user_id: CurrentUserIdDep,
    manager: DrawManagerDep,
) -> DrawResultPublic:
    try:
        outcome = await manager.perform_draw(group_id, user_id)
    except AppError as exc:
        audit_draw_action(
            AuditAction.DRAW_PERFORM, request, user_id, group_id, details={"code": exc.code}, success=False
        )
        raise
    audit_draw_action(
        AuditAction.DRAW_PERFORM, request, user_id, group_id, details={"members": len(outcome.member_ids)}
    )
    return DrawResultPublic(
        group_id=group_id,
        is_draw_active=outcome.is_draw_active,
        assignment_count=len(outcome.assignments),
    )


@router.delete("/groups/{group_id}/draw", response_model=DrawResultPublic)
async def end_draw(
    group_id: str,
    request: Request,
    user_id: CurrentUserIdDep,
    manager: DrawManagerDep,
) -> DrawResultPublic:
    try:
        outcome = await manager.end_draw(group_id, user_id)
    except AppError as exc:
        audit_draw_action(AuditAction.DRAW_END, request, user_id, group_id, details={"code": exc.code}, success=False)
        raise
    audit_draw_action(AuditAction.DRAW_END, request, user_id, group_id)
    return DrawResultPublic(group_id=group_id, is_draw_active=outcome.is_draw_active, assignment_count=0)


@router.get("/groups/{group_id}/draw", response_model=DrawStatusPublic)
async def get_draw_status(group_id: str, user_id: CurrentUserIdDep, manager: DrawManagerDep) -> DrawStatusPublic:
    return DrawStatusPublic.model_validate(await manager.draw_status(group_id, user_id))


@router.get("/groups/{group_id}/draw/me", response_model=AssignmentPublic | None)
async def get_my_assignment_in_group(
    group_id: str,
    user_id: CurrentUserIdDep,
    manager: DrawManagerDep,
) -> AssignmentPublic | None:
    view = await manager.get_my_assignment(user_id, group_id)
    if view is None:
        return None
    return AssignmentPublic.model_validate(view)


@router.get("/draws/me", response_model=list[AssignmentPublic])
async def get_my_assignments(user_id: CurrentUserIdDep, manager: DrawManagerDep) -> list[AssignmentPublic]:
    views = await manager.get_my_assignments(user_id)
    return [AssignmentPublic.model_validate(view) for view in views]


@router.post("/assignments/{assignment_id}/reveal", response_model=AssignmentPublic)
async def reveal_assignment(
    assignment_id: str,
    request: Request,
    user_id: CurrentUserIdDep,
    manager: DrawManagerDep,
) -> AssignmentPublic:
    view = await manager.mark_revealed(assignment_id, user_id)
    audit_draw_action(
        AuditAction.ASSIGNMENT_REVEAL, request, user_id, view.group_id, details={"assignment_id": assignment_id}
    )
    return AssignmentPublic.model_validate(view)


@router.get("/groups/{group_id}/exclusions", response_model=list[ExclusionPublic])
async def list_exclusions(group_id: str, user_id: CurrentUserIdDep, manager: DrawManagerDep) -> list[ExclusionPublic]:
    rows = await manager.list_exclusions(group_id, user_id)
    return [ExclusionPublic.model_validate(row) for row in rows]


@router.post(
    "/groups/{group_id}/exclusions",
    response_model=ExclusionPublic,
    status_code=status.HTTP_201_CREATED,
)
async def add_exclusion(
    group_id: str,
    payload: ExclusionCreate,
    request: Request,
    user_id: CurrentUserIdDep,
    manager: DrawManagerDep,
) -> ExclusionPublic:
    row = await manager.add_exclusion(group_id, payload.user_a_id, payload.user_b_id, user_id)
    audit_draw_action(AuditAction.EXCLUSION_ADD, request, user_id, group_id, details={"exclusion_id": row.id})
    return ExclusionPublic.model_validate(row)


@router.delete("/exclusions/{exclusion_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_exclusion(
    exclusion_id: str,
    request: Request,
    user_id: CurrentUserIdDep,
    manager: DrawManagerDep,
) -> Response:
    row = await manager.remove_exclusion(exclusion_id, user_id)
    audit_draw_action(
        AuditAction.EXCLUSION_REMOVE, request, user_id, row.group_id, details={"exclusion_id": exclusion_id}
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
