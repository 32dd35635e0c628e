from datetime import timedelta

import pytest
from sqlmodel import select

from nexusdash.models import Project, Task, TaskAttachment, get_utc_now
from nexusdash.services.authorization_service import AuthorizationService
from nexusdash.services.project_service import ProjectService
from nexusdash.storage.base import UploadedFile

from conftest import HEADERS, OWNER_ID


async def test_create_project_makes_actor_owner(client, session_factory):
    response = client.post(
        "/api/projects", json={"name": "  Roadmap  ", "description": " Q3 "}, headers=HEADERS
    )
    assert response.status_code == 201
    project = response.json()["project"]
    assert project["name"] == "Roadmap"
    assert project["description"] == "Q3"
    assert project["ownerId"] == OWNER_ID
    assert project["counts"] == {"tasks": 0, "contextCards": 0}

    async with session_factory() as session:
        members = await ProjectService.list_project_members(project["id"], session)
    assert members[0]["userId"] == OWNER_ID
    assert members[0]["role"] == "owner"


async def test_create_project_commits_project_and_owner_together(db, monkeypatch):
    commits = []
    original_commit = db.commit

    async def counting_commit():
        commits.append(1)
        await original_commit()

    monkeypatch.setattr(db, "commit", counting_commit)
    project = await ProjectService.create_project(OWNER_ID, "Roadmap", None, db)

    assert len(commits) == 1
    members = await ProjectService.list_project_members(project["id"], db)
    assert [(m["userId"], m["role"]) for m in members] == [(OWNER_ID, "owner")]


async def test_create_project_leaves_nothing_when_membership_fails(
    db, session_factory, monkeypatch
):
    async def failing_membership(project_id, owner_id, session):
        raise RuntimeError("membership write failed")

    monkeypatch.setattr(
        AuthorizationService, "ensure_project_owner_membership", failing_membership
    )
    with pytest.raises(RuntimeError):
        await ProjectService.create_project(OWNER_ID, "Roadmap", None, db)
    await db.rollback()

    async with session_factory() as session:
        result = await session.exec(select(Project))
        assert result.all() == []


def test_create_project_rejects_short_name(client):
    response = client.post("/api/projects", json={"name": " a "}, headers=HEADERS)
    assert response.status_code == 400
    assert response.json() == {"error": "name-too-short"}


def test_invalid_body_is_reported_as_invalid_payload(client):
    response = client.post("/api/projects", json={"name": 5}, headers=HEADERS)
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "invalid-payload"
    assert body["details"]


async def test_list_projects_counts_tasks(client, project, make_task):
    await make_task()
    await make_task(title="Second", position=1)

    response = client.get("/api/projects", headers=HEADERS)
    assert response.status_code == 200
    projects = response.json()["projects"]
    assert [p["id"] for p in projects] == [project.id]
    assert projects[0]["counts"] == {"tasks": 2, "contextCards": 0}


async def test_projects_are_invisible_to_strangers(client, project):
    stranger = {"x-nexus-user-id": "stranger"}

    assert client.get("/api/projects", headers=stranger).json() == {"projects": []}

    response = client.get(f"/api/projects/{project.id}", headers=stranger)
    assert response.status_code == 404
    assert response.json() == {"error": "project-not-found"}


async def test_viewer_cannot_edit(client, project):
    response = client.put(
        f"/api/projects/{project.id}/members/viewer-user",
        json={"role": "viewer"},
        headers=HEADERS,
    )
    assert response.status_code == 200
    assert response.json()["member"]["role"] == "viewer"

    viewer = {"x-nexus-user-id": "viewer-user"}
    assert client.get(f"/api/projects/{project.id}", headers=viewer).status_code == 200

    response = client.patch(
        f"/api/projects/{project.id}", json={"name": "Renamed"}, headers=viewer
    )
    assert response.status_code == 403
    assert response.json() == {"error": "forbidden"}


async def test_editor_can_rename_but_not_delete(client, project):
    client.put(
        f"/api/projects/{project.id}/members/editor-user",
        json={"role": "editor"},
        headers=HEADERS,
    )
    editor = {"x-nexus-user-id": "editor-user"}

    response = client.patch(
        f"/api/projects/{project.id}", json={"name": "Renamed", "description": ""}, headers=editor
    )
    assert response.status_code == 200
    assert response.json()["project"]["name"] == "Renamed"
    assert response.json()["project"]["description"] is None

    assert client.delete(f"/api/projects/{project.id}", headers=editor).status_code == 403


async def test_member_management_rules(client, project):
    base = f"/api/projects/{project.id}/members"

    response = client.put(f"{base}/{OWNER_ID}", json={"role": "editor"}, headers=HEADERS)
    assert response.json() == {"error": "owner-role-locked"}

    response = client.put(f"{base}/someone", json={"role": "admin"}, headers=HEADERS)
    assert response.json() == {"error": "role-invalid"}

    response = client.delete(f"{base}/{OWNER_ID}", headers=HEADERS)
    assert response.json() == {"error": "owner-role-locked"}

    response = client.delete(f"{base}/nobody", headers=HEADERS)
    assert response.status_code == 404
    assert response.json() == {"error": "member-not-found"}

    client.put(f"{base}/helper", json={"role": "editor"}, headers=HEADERS)
    assert client.delete(f"{base}/helper", headers=HEADERS).json() == {"ok": True}

    members = client.get(base, headers=HEADERS).json()["members"]
    assert [m["userId"] for m in members] == [OWNER_ID]


async def test_dashboard_orders_tasks_and_archives_stale_done(client, project, make_task):
    old = get_utc_now() - timedelta(days=10)
    await make_task(title="Shipped long ago", status="Done", completed_at=old)
    await make_task(title="Shipped today", status="Done", completed_at=get_utc_now())
    await make_task(title="Second backlog", position=1)
    await make_task(title="First backlog", position=0)
    await make_task(title="Working", status="In Progress")

    dashboard = client.get(f"/api/projects/{project.id}", headers=HEADERS).json()["project"]
    assert [task["title"] for task in dashboard["tasks"]] == [
        "First backlog",
        "Second backlog",
        "Working",
        "Shipped today",
    ]
    assert dashboard["counts"]["tasks"] == 4

    with_archived = client.get(
        f"/api/projects/{project.id}?includeArchived=true", headers=HEADERS
    ).json()["project"]
    archived = [task for task in with_archived["tasks"] if task["archivedAt"]]
    assert [task["title"] for task in archived] == ["Shipped long ago"]


async def test_archive_stale_done_tasks_uses_updated_at_without_completion(db, project, make_task):
    await make_task(title="Legacy done", status="Done", updated_at=get_utc_now() - timedelta(days=8))
    await make_task(title="Recent done", status="Done")

    assert await ProjectService.archive_stale_done_tasks(project.id, db) == 1
    assert await ProjectService.archive_stale_done_tasks(project.id, db) == 0


async def test_delete_project_removes_rows_and_files(client, project, make_task, storage, session_factory):
    task = await make_task()
    files = [("attachmentFiles", ("notes.txt", b"hello", "text/plain"))]
    response = client.post(
        f"/api/projects/{project.id}/context-cards",
        data={"title": "Brief"},
        files=files,
        headers=HEADERS,
    )
    assert response.status_code == 201

    saved = await storage.save_file("task", task.id, UploadedFile("a.txt", "text/plain", b"x"))
    async with session_factory() as session:
        session.add(
            TaskAttachment(
                task_id=task.id,
                kind="file",
                name="a.txt",
                storage_key=saved.storage_key,
                mime_type="text/plain",
                size_bytes=1,
            )
        )
        await session.commit()

    assert client.delete(f"/api/projects/{project.id}", headers=HEADERS).json() == {"ok": True}

    async with session_factory() as session:
        assert await session.get(Task, task.id) is None
    assert await storage.read_stored_file_metadata(saved.storage_key) is None
    assert client.get(f"/api/projects/{project.id}", headers=HEADERS).status_code == 404
