from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..db import now_ts, rows_to_dicts, with_conn
from ..deps import is_staff

logger = logging.getLogger(__name__)

ITEM_SORT_COLUMNS = ("created_at", "updated_at")
_UNSET = object()

_PROJECT_SELECT = """
    SELECT p.*, u.user_id AS owner_user_id, u.email AS owner_email,
           (SELECT COUNT(*) FROM ITEMS WHERE project_id = p.id) AS task_count
    FROM PROJECTS p
    LEFT JOIN USERS u ON p.user_id = u.id
"""

_ITEM_SELECT = """
    SELECT ITEMS.*,
           Creator.email AS creator_email,
           Creator.user_id AS creator_user_id,
           Creator.avatar_url AS creator_avatar,
           Assignee.email AS assignee_email,
           Assignee.user_id AS assignee_user_id,
           Assignee.avatar_url AS assignee_avatar
    FROM ITEMS
    LEFT JOIN USERS AS Creator ON ITEMS.created_by = Creator.id
    LEFT JOIN USERS AS Assignee ON ITEMS.assignee_id = Assignee.id
"""


def _fetch_project(cur, project_id: int) -> Optional[Dict[str, Any]]:
    cur.execute("SELECT * FROM PROJECTS WHERE id=?", (project_id,))
    row = cur.fetchone()
    return dict(row) if row else None


def _accessible_project(cur, project_id: int, viewer: Dict[str, Any]) -> Dict[str, Any]:
    """Project visible to staff, its owner, or an assigned user."""
    project = _fetch_project(cur, project_id)
    if project and (is_staff(viewer) or project["user_id"] == viewer["id"]):
        return project
    if project:
        cur.execute(
            "SELECT 1 FROM PROJECT_USERS WHERE project_id=? AND user_id=?",
            (project_id, viewer["id"]),
        )
        if cur.fetchone():
            return project
    raise LookupError("Project not found")


def _owned_project(cur, project_id: int, viewer: Dict[str, Any]) -> Dict[str, Any]:
    project = _fetch_project(cur, project_id)
    if not project or project["user_id"] != viewer["id"]:
        raise LookupError("Project not found")
    return project


def _existing_user(cur, user_pk: Any, label: str) -> Optional[int]:
    if user_pk is None or user_pk == "":
        return None
    try:
        user_pk = int(user_pk)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid {label}") from exc
    cur.execute("SELECT 1 FROM USERS WHERE id=?", (user_pk,))
    if not cur.fetchone():
        raise ValueError(f"Unknown {label}: {user_pk}")
    return user_pk


def _project_milestone(cur, project_id: int, milestone_id: Any) -> Optional[int]:
    if milestone_id is None or milestone_id == "":
        return None
    try:
        milestone_id = int(milestone_id)
    except (TypeError, ValueError) as exc:
        raise ValueError("Invalid milestoneId") from exc
    cur.execute("SELECT 1 FROM MILESTONES WHERE id=? AND project_id=?", (milestone_id, project_id))
    if not cur.fetchone():
        raise ValueError("Milestone does not belong to this project")
    return milestone_id


def _replace_assignments(cur, project_id: int, user_ids: List[int]) -> None:
    members = [pk for pk in dict.fromkeys(_existing_user(cur, u, "userId") for u in user_ids) if pk is not None]
    cur.execute("DELETE FROM PROJECT_USERS WHERE project_id=?", (project_id,))
    ts = now_ts()
    for user_pk in members:
        cur.execute(
            "INSERT INTO PROJECT_USERS (project_id, user_id, assigned_at) VALUES (?, ?, ?)",
            (project_id, user_pk, ts),
        )


# ---- projects ----------------------------------------------------------------


def list_projects(viewer: Dict[str, Any]) -> List[Dict[str, Any]]:
    def _run(conn):
        cur = conn.cursor()
        if is_staff(viewer):
            cur.execute(_PROJECT_SELECT + " ORDER BY p.created_at DESC, p.id DESC")
        else:
            cur.execute(
                _PROJECT_SELECT
                + """
                WHERE p.user_id = ?
                   OR p.id IN (SELECT project_id FROM PROJECT_USERS WHERE user_id = ?)
                ORDER BY p.created_at DESC, p.id DESC
                """,
                (viewer["id"], viewer["id"]),
            )
        return rows_to_dicts(cur.fetchall())

    return with_conn(_run)


def create_project(viewer: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
    name = (payload.get("name") or "").strip()
    if not name:
        raise ValueError("Project name is required")

    def _run(conn):
        cur = conn.cursor()
        ts = now_ts()
        cur.execute(
            """
            INSERT INTO PROJECTS (user_id, name, description, avatar_url, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (viewer["id"], name, payload.get("description") or None, payload.get("avatarUrl") or None, ts, ts),
        )
        project_id = cur.lastrowid
        if payload.get("userIds"):
            _replace_assignments(cur, project_id, payload["userIds"])
        conn.commit()
        return _fetch_project(cur, project_id)

    project = with_conn(_run)
    logger.info("Project %s created by user %s", project["id"], viewer["id"])
    return project


def get_project(viewer: Dict[str, Any], project_id: int) -> Dict[str, Any]:
    return with_conn(lambda conn: _accessible_project(conn.cursor(), project_id, viewer))


def update_project(viewer: Dict[str, Any], project_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
    def _run(conn):
        cur = conn.cursor()
        project = _owned_project(cur, project_id, viewer)
        cur.execute(
            "UPDATE PROJECTS SET name=?, description=?, avatar_url=?, updated_at=? WHERE id=?",
            (
                payload.get("name") or project["name"],
                payload.get("description", project["description"]),
                payload.get("avatarUrl", project["avatar_url"]),
                now_ts(),
                project_id,
            ),
        )
        conn.commit()
        return _fetch_project(cur, project_id)

    return with_conn(_run)


def delete_project(viewer: Dict[str, Any], project_id: int) -> None:
    """Delete an owned project; items, comments, milestones and assignments cascade."""

    def _run(conn):
        cur = conn.cursor()
        _owned_project(cur, project_id, viewer)
        cur.execute("DELETE FROM PROJECTS WHERE id=?", (project_id,))
        conn.commit()

    with_conn(_run)
    logger.info("Project %s deleted by user %s", project_id, viewer["id"])


# ---- membership -----------------------------------------------------------------


def list_assigned_users(viewer: Dict[str, Any], project_id: int) -> List[Dict[str, Any]]:
    def _run(conn):
        cur = conn.cursor()
        _accessible_project(cur, project_id, viewer)
        cur.execute(
            """
            SELECT u.id, u.email, u.user_id, u.avatar_url, u.role, pu.assigned_at
            FROM PROJECT_USERS pu
            JOIN USERS u ON pu.user_id = u.id
            WHERE pu.project_id = ?
            ORDER BY u.email ASC
            """,
            (project_id,),
        )
        return rows_to_dicts(cur.fetchall())

    return with_conn(_run)


def set_assigned_users(project_id: int, user_ids: List[int]) -> None:
    def _run(conn):
        cur = conn.cursor()
        if not _fetch_project(cur, project_id):
            raise LookupError("Project not found")
        _replace_assignments(cur, project_id, user_ids)
        conn.commit()

    with_conn(_run)


def list_members(project_id: int) -> List[Dict[str, Any]]:
    """Owner plus assigned users, de-duplicated."""

    def _run(conn):
        cur = conn.cursor()
        if not _fetch_project(cur, project_id):
            raise LookupError("Project not found")
        cur.execute(
            """
            SELECT u.id, u.email, u.user_id, u.avatar_url FROM USERS u
            JOIN PROJECTS p ON p.user_id = u.id
            WHERE p.id = ?
            UNION
            SELECT u.id, u.email, u.user_id, u.avatar_url FROM USERS u
            JOIN PROJECT_USERS pu ON pu.user_id = u.id
            WHERE pu.project_id = ?
            ORDER BY email ASC
            """,
            (project_id, project_id),
        )
        return rows_to_dicts(cur.fetchall())

    return with_conn(_run)


# ---- milestones -----------------------------------------------------------------


def list_milestones(viewer: Dict[str, Any], project_id: int) -> List[Dict[str, Any]]:
    def _run(conn):
        cur = conn.cursor()
        _owned_project(cur, project_id, viewer)
        cur.execute(
            "SELECT * FROM MILESTONES WHERE project_id=? ORDER BY due_date IS NULL, due_date ASC, id ASC",
            (project_id,),
        )
        return rows_to_dicts(cur.fetchall())

    return with_conn(_run)


def create_milestone(viewer: Dict[str, Any], project_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
    title = (payload.get("title") or "").strip()
    if not title:
        raise ValueError("Milestone title is required")

    def _run(conn):
        cur = conn.cursor()
        _owned_project(cur, project_id, viewer)
        cur.execute(
            """
            INSERT INTO MILESTONES (project_id, title, description, due_date, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (project_id, title, payload.get("description") or None, payload.get("dueDate"), now_ts()),
        )
        conn.commit()
        cur.execute("SELECT * FROM MILESTONES WHERE id=?", (cur.lastrowid,))
        return dict(cur.fetchone())

    return with_conn(_run)


# ---- items ---------------------------------------------------------------------


def list_items(
    viewer: Dict[str, Any],
    project_id: int,
    search: Optional[str] = None,
    status: Optional[str] = None,
    assignee: Optional[str] = None,
    sort: Optional[str] = None,
    order: Optional[str] = None,
) -> List[Dict[str, Any]]:
    query = _ITEM_SELECT + " WHERE ITEMS.project_id = ?"
    params: List[Any] = [project_id]
    if search:
        query += " AND (ITEMS.title LIKE ? OR ITEMS.content LIKE ?)"
        params.extend([f"%{search}%", f"%{search}%"])
    if status:
        query += " AND ITEMS.status = ?"
        params.append(status)
    if assignee:
        if assignee == "unassigned":
            query += " AND ITEMS.assignee_id IS NULL"
        else:
            try:
                assignee_pk = viewer["id"] if assignee == "me" else int(assignee)
            except ValueError as exc:
                raise ValueError("Invalid assigneeId") from exc
            query += " AND ITEMS.assignee_id = ?"
            params.append(assignee_pk)
    column = sort if sort in ITEM_SORT_COLUMNS else "created_at"
    direction = "ASC" if (order or "desc").lower() == "asc" else "DESC"
    query += f" ORDER BY ITEMS.{column} {direction}, ITEMS.id {direction}"

    def _run(conn):
        cur = conn.cursor()
        _accessible_project(cur, project_id, viewer)
        cur.execute(query, params)
        return rows_to_dicts(cur.fetchall())

    return with_conn(_run)


def _fetch_item(cur, project_id: int, item_id: int) -> Dict[str, Any]:
    cur.execute(_ITEM_SELECT + " WHERE ITEMS.id = ? AND ITEMS.project_id = ?", (item_id, project_id))
    row = cur.fetchone()
    if not row:
        raise LookupError("Item not found")
    return dict(row)


def create_item(viewer: Dict[str, Any], project_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
    title = (payload.get("title") or "").strip()
    if not title:
        raise ValueError("Item title is required")

    def _run(conn):
        cur = conn.cursor()
        _accessible_project(cur, project_id, viewer)
        ts = now_ts()
        cur.execute(
            """
            INSERT INTO ITEMS (project_id, title, content, status, milestone_id, assignee_id,
                               created_by, updated_by, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                project_id,
                title,
                payload.get("content") or "",
                payload.get("status") or "New",
                _project_milestone(cur, project_id, payload.get("milestoneId")),
                _existing_user(cur, payload.get("assigneeId"), "assigneeId"),
                viewer["id"],
                viewer["id"],
                ts,
                ts,
            ),
        )
        conn.commit()
        return _fetch_item(cur, project_id, cur.lastrowid)

    return with_conn(_run)


def get_item(viewer: Dict[str, Any], project_id: int, item_id: int) -> Dict[str, Any]:
    def _run(conn):
        cur = conn.cursor()
        _accessible_project(cur, project_id, viewer)
        return _fetch_item(cur, project_id, item_id)

    return with_conn(_run)


def update_item(viewer: Dict[str, Any], project_id: int, item_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Partial update; keys absent from ``payload`` keep their value."""

    def _run(conn):
        cur = conn.cursor()
        _accessible_project(cur, project_id, viewer)
        item = _fetch_item(cur, project_id, item_id)
        assignee = payload.get("assigneeId", _UNSET)
        milestone = payload.get("milestoneId", _UNSET)
        cur.execute(
            """
            UPDATE ITEMS
            SET title=?, content=?, status=?, milestone_id=?, assignee_id=?, updated_by=?, updated_at=?
            WHERE id=?
            """,
            (
                payload.get("title") or item["title"],
                payload.get("content", item["content"]),
                payload.get("status") or item["status"],
                item["milestone_id"] if milestone is _UNSET else _project_milestone(cur, project_id, milestone),
                item["assignee_id"] if assignee is _UNSET else _existing_user(cur, assignee, "assigneeId"),
                viewer["id"],
                now_ts(),
                item_id,
            ),
        )
        conn.commit()
        return _fetch_item(cur, project_id, item_id)

    return with_conn(_run)


def delete_item(viewer: Dict[str, Any], project_id: int, item_id: int) -> None:
    def _run(conn):
        cur = conn.cursor()
        _accessible_project(cur, project_id, viewer)
        _fetch_item(cur, project_id, item_id)
        cur.execute("DELETE FROM ITEMS WHERE id=?", (item_id,))
        conn.commit()

    with_conn(_run)


# ---- comments ---------------------------------------------------------------


_COMMENT_SELECT = """
    SELECT COMMENTS.*, Creator.email AS creator_email, Creator.user_id AS creator_user_id,
           Creator.avatar_url AS creator_avatar
    FROM COMMENTS
    LEFT JOIN USERS AS Creator ON COMMENTS.created_by = Creator.id
"""


def list_comments(viewer: Dict[str, Any], project_id: int, item_id: int) -> List[Dict[str, Any]]:
    def _run(conn):
        cur = conn.cursor()
        _accessible_project(cur, project_id, viewer)
        _fetch_item(cur, project_id, item_id)
        cur.execute(
            _COMMENT_SELECT + " WHERE COMMENTS.item_id = ? ORDER BY COMMENTS.created_at ASC, COMMENTS.id ASC",
            (item_id,),
        )
        return rows_to_dicts(cur.fetchall())

    return with_conn(_run)


def create_comment(viewer: Dict[str, Any], project_id: int, item_id: int, content: Optional[str]) -> Dict[str, Any]:
    if not content or not content.strip():
        raise ValueError("Comment content is required")

    def _run(conn):
        cur = conn.cursor()
        _accessible_project(cur, project_id, viewer)
        _fetch_item(cur, project_id, item_id)
        ts = now_ts()
        cur.execute(
            """
            INSERT INTO COMMENTS (item_id, content, created_by, updated_by, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (item_id, content, viewer["id"], viewer["id"], ts, ts),
        )
        conn.commit()
        cur.execute(_COMMENT_SELECT + " WHERE COMMENTS.id = ?", (cur.lastrowid,))
        return dict(cur.fetchone())

    return with_conn(_run)


def _authored_comment(cur, viewer: Dict[str, Any], item_id: int, comment_id: int) -> Dict[str, Any]:
    cur.execute("SELECT * FROM COMMENTS WHERE id=? AND item_id=?", (comment_id, item_id))
    row = cur.fetchone()
    if not row:
        raise LookupError("Comment not found")
    if row["created_by"] != viewer["id"]:
        raise PermissionError("Only the author can change this comment")
    return dict(row)


def update_comment(
    viewer: Dict[str, Any], project_id: int, item_id: int, comment_id: int, content: Optional[str]
) -> Dict[str, Any]:
    if not content or not content.strip():
        raise ValueError("Comment content is required")

    def _run(conn):
        cur = conn.cursor()
        _accessible_project(cur, project_id, viewer)
        _authored_comment(cur, viewer, item_id, comment_id)
        cur.execute(
            "UPDATE COMMENTS SET content=?, updated_by=?, updated_at=? WHERE id=?",
            (content, viewer["id"], now_ts(), comment_id),
        )
        conn.commit()
        cur.execute(_COMMENT_SELECT + " WHERE COMMENTS.id = ?", (comment_id,))
        return dict(cur.fetchone())

    return with_conn(_run)


def delete_comment(viewer: Dict[str, Any], project_id: int, item_id: int, comment_id: int) -> None:
    def _run(conn):
        cur = conn.cursor()
        _accessible_project(cur, project_id, viewer)
        _authored_comment(cur, viewer, item_id, comment_id)
        cur.execute("DELETE FROM COMMENTS WHERE id=?", (comment_id,))
        conn.commit()

    with_conn(_run)
