import logging
from typing import Optional
from fastapi import APIRouter, Depends

from ..deps import get_current_user, require_staff
from ..errors import raise_service_error
from ..schemas import AssignmentPayload, CommentPayload, ItemPayload, MilestonePayload, ProjectPayload
from ..services import projects

router = APIRouter(prefix="/projects", tags=["projects"])
logger = logging.getLogger(__name__)


@router.get("")
def list_projects(user: dict = Depends(get_current_user)):
    return projects.list_projects(user)


@router.post("")
def create_project(payload: ProjectPayload, user: dict = Depends(get_current_user)):
    try:
        return projects.create_project(user, payload.model_dump())
    except Exception as exc:
        raise_service_error(exc, "Create project")


@router.get("/{project_id}")
def get_project(project_id: int, user: dict = Depends(get_current_user)):
    try:
        return projects.get_project(user, project_id)
    except Exception as exc:
        raise_service_error(exc, "Get project")


@router.put("/{project_id}")
def update_project(project_id: int, payload: ProjectPayload, user: dict = Depends(get_current_user)):
    try:
        return projects.update_project(user, project_id, payload.model_dump(exclude_unset=True))
    except Exception as exc:
        raise_service_error(exc, "Update project")


@router.delete("/{project_id}")
def delete_project(project_id: int, user: dict = Depends(get_current_user)):
    try:
        projects.delete_project(user, project_id)
    except Exception as exc:
        raise_service_error(exc, "Delete project")
    return {"success": True}


@router.get("/{project_id}/users")
def list_assigned_users(project_id: int, user: dict = Depends(get_current_user)):
    try:
        return projects.list_assigned_users(user, project_id)
    except Exception as exc:
        raise_service_error(exc, "Project users")


@router.put("/{project_id}/users")
def set_assigned_users(project_id: int, payload: AssignmentPayload, user: dict = Depends(require_staff)):
    try:
        projects.set_assigned_users(project_id, payload.userIds)
    except Exception as exc:
        raise_service_error(exc, "Project users")
    return {"success": True}


@router.get("/{project_id}/members")
def list_members(project_id: int, user: dict = Depends(get_current_user)):
    try:
        return projects.list_members(project_id)
    except Exception as exc:
        raise_service_error(exc, "Project members")


@router.get("/{project_id}/milestones")
def list_milestones(project_id: int, user: dict = Depends(get_current_user)):
    try:
        return projects.list_milestones(user, project_id)
    except Exception as exc:
        raise_service_error(exc, "Milestones")


@router.post("/{project_id}/milestones")
def create_milestone(project_id: int, payload: MilestonePayload, user: dict = Depends(get_current_user)):
    try:
        return projects.create_milestone(user, project_id, payload.model_dump())
    except Exception as exc:
        raise_service_error(exc, "Create milestone")


@router.get("/{project_id}/items")
def list_items(
    project_id: int,
    search: Optional[str] = None,
    status: Optional[str] = None,
    assigneeId: Optional[str] = None,
    sort: Optional[str] = None,
    order: Optional[str] = None,
    user: dict = Depends(get_current_user),
):
    try:
        return projects.list_items(user, project_id, search, status, assigneeId, sort, order)
    except Exception as exc:
        raise_service_error(exc, "Items")


@router.post("/{project_id}/items")
def create_item(project_id: int, payload: ItemPayload, user: dict = Depends(get_current_user)):
    try:
        return projects.create_item(user, project_id, payload.model_dump())
    except Exception as exc:
        raise_service_error(exc, "Create item")


@router.get("/{project_id}/items/{item_id}")
def get_item(project_id: int, item_id: int, user: dict = Depends(get_current_user)):
    try:
        return projects.get_item(user, project_id, item_id)
    except Exception as exc:
        raise_service_error(exc, "Get item")


@router.put("/{project_id}/items/{item_id}")
def update_item(project_id: int, item_id: int, payload: ItemPayload, user: dict = Depends(get_current_user)):
    try:
        return projects.update_item(user, project_id, item_id, payload.model_dump(exclude_unset=True))
    except Exception as exc:
        raise_service_error(exc, "Update item")


@router.delete("/{project_id}/items/{item_id}")
def delete_item(project_id: int, item_id: int, user: dict = Depends(get_current_user)):
    try:
        projects.delete_item(user, project_id, item_id)
    except Exception as exc:
        raise_service_error(exc, "Delete item")
    return {"success": True}


@router.get("/{project_id}/items/{item_id}/comments")
def list_comments(project_id: int, item_id: int, user: dict = Depends(get_current_user)):
    try:
        return projects.list_comments(user, project_id, item_id)
    except Exception as exc:
        raise_service_error(exc, "Comments")


@router.post("/{project_id}/items/{item_id}/comments")
def create_comment(project_id: int, item_id: int, payload: CommentPayload, user: dict = Depends(get_current_user)):
    try:
        return projects.create_comment(user, project_id, item_id, payload.content)
    except Exception as exc:
        raise_service_error(exc, "Create comment")


@router.put("/{project_id}/items/{item_id}/comments/{comment_id}")
def update_comment(
    project_id: int, item_id: int, comment_id: int, payload: CommentPayload, user: dict = Depends(get_current_user)
):
    try:
        return projects.update_comment(user, project_id, item_id, comment_id, payload.content)
    except Exception as exc:
        raise_service_error(exc, "Update comment")


@router.delete("/{project_id}/items/{item_id}/comments/{comment_id}")
def delete_comment(project_id: int, item_id: int, comment_id: int, user: dict = Depends(get_current_user)):
    try:
        projects.delete_comment(user, project_id, item_id, comment_id)
    except Exception as exc:
        raise_service_error(exc, "Delete comment")
    return {"success": True}
