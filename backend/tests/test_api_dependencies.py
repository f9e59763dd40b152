"""
API tests for projects, tasks and dependency edges.
"""

import uuid

import pytest


async def add_edge(client, project, dependent, blocking):
    return await client.post(
        "/dependencies/",
        json={
            "dependent_task_id": dependent["id"],
            "blocking_task_id": blocking["id"],
            "project_id": project["id"],
        },
    )


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestCreateDependency:

    @pytest.mark.asyncio
    async def test_create_updates_both_tasks(self, client, project, make_task):
        a = await make_task("A")
        b = await make_task("B")

        response = await add_edge(client, project, a, b)

        assert response.status_code == 201
        assert response.json()["dependent_task_id"] == a["id"]
        assert response.json()["blocking_task_id"] == b["id"]

        a_after = (await client.get(f"/tasks/{a['id']}")).json()
        b_after = (await client.get(f"/tasks/{b['id']}")).json()
        assert a_after["dependencies"] == [b["id"]]
        assert a_after["is_blocked"] is True
        assert b_after["dependent_task_ids"] == [a["id"]]

    @pytest.mark.asyncio
    async def test_cycle_rejected_with_path(self, client, project, make_task):
        a = await make_task("A")
        b = await make_task("B")
        await add_edge(client, project, a, b)

        response = await add_edge(client, project, b, a)

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "cycle_detected"
        assert body["message"] == "This dependency would create a circular reference"
        assert body["circular_dependencies"] == [[b["id"], a["id"], b["id"]]]

        b_after = (await client.get(f"/tasks/{b['id']}")).json()
        assert b_after["dependencies"] == []

    @pytest.mark.asyncio
    async def test_self_dependency(self, client, project, make_task):
        a = await make_task("A")

        response = await add_edge(client, project, a, a)

        assert response.status_code == 400
        assert response.json()["error"] == "self_dependency"

    @pytest.mark.asyncio
    async def test_duplicate(self, client, project, make_task):
        a = await make_task("A")
        b = await make_task("B")
        await add_edge(client, project, a, b)

        response = await add_edge(client, project, a, b)

        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_dependency"

    @pytest.mark.asyncio
    async def test_cross_project(self, client, project, make_task):
        a = await make_task("A")
        other = (await client.post("/projects/", json={"name": "Other"})).json()
        foreign = (await client.post("/tasks/", json={"title": "F", "project_id": other["id"]})).json()

        response = await add_edge(client, project, a, foreign)

        assert response.status_code == 400
        assert response.json()["error"] == "cross_project_dependency"

    @pytest.mark.asyncio
    async def test_missing_task(self, client, project, make_task):
        a = await make_task("A")

        response = await add_edge(client, project, a, {"id": str(uuid.uuid4())})

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestValidateDependency:

    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, client, project, make_task):
        a = await make_task("A")
        b = await make_task("B")

        response = await client.post(
            "/dependencies/validate",
            json={"dependent_task_id": a["id"], "blocking_task_id": b["id"], "project_id": project["id"]},
        )

        assert response.status_code == 200
        assert response.json() == {"valid": True, "errors": [], "circular_dependencies": None}
        assert (await client.get(f"/tasks/{a['id']}")).json()["dependencies"] == []

    @pytest.mark.asyncio
    async def test_dry_run_reports_cycle(self, client, project, make_task):
        a = await make_task("A")
        b = await make_task("B")
        await add_edge(client, project, a, b)

        response = await client.post(
            "/dependencies/validate",
            json={"dependent_task_id": b["id"], "blocking_task_id": a["id"], "project_id": project["id"]},
        )

        body = response.json()
        assert body["valid"] is False
        assert body["circular_dependencies"] == [[b["id"], a["id"], b["id"]]]


class TestQueryAndDelete:

    @pytest.mark.asyncio
    async def test_query_types(self, client, project, make_task):
        a = await make_task("A")
        b = await make_task("B")
        await add_edge(client, project, a, b)

        blocking = (await client.get("/dependencies/", params={"task_id": a["id"]})).json()
        dependents = (await client.get("/dependencies/", params={"task_id": b["id"], "type": "dependent"})).json()
        status = (await client.get("/dependencies/", params={"task_id": a["id"], "type": "status"})).json()

        assert [d["blocking_task_id"] for d in blocking["dependencies"]] == [b["id"]]
        assert [t["id"] for t in dependents["dependents"]] == [a["id"]]
        assert status["status"]["is_blocked"] is True
        assert status["status"]["can_start"] is False
        assert [t["id"] for t in status["status"]["blocking_tasks"]] == [b["id"]]

    @pytest.mark.asyncio
    async def test_delete_unblocks(self, client, project, make_task):
        a = await make_task("A")
        b = await make_task("B")
        await add_edge(client, project, a, b)

        response = await client.delete(f"/dependencies/{a['id']}/{b['id']}")

        assert response.status_code == 204
        a_after = (await client.get(f"/tasks/{a['id']}")).json()
        b_after = (await client.get(f"/tasks/{b['id']}")).json()
        assert a_after["dependencies"] == []
        assert a_after["is_blocked"] is False
        assert b_after["dependent_task_ids"] == []

        again = await client.delete(f"/dependencies/{a['id']}/{b['id']}")
        assert again.status_code == 404


class TestTaskLifecycle:

    @pytest.mark.asyncio
    async def test_blocked_task_cannot_start(self, client, project, make_task):
        a = await make_task("A")
        b = await make_task("B")
        await add_edge(client, project, a, b)

        response = await client.patch(f"/tasks/{a['id']}", json={"status": "in_progress"})

        assert response.status_code == 409
        assert response.json()["error"] == "task_blocked"

    @pytest.mark.asyncio
    async def test_completing_blocker_unblocks_dependent(self, client, project, make_task):
        a = await make_task("A")
        b = await make_task("B")
        await add_edge(client, project, a, b)

        response = await client.patch(f"/tasks/{b['id']}", json={"completed": True, "status": "done"})
        assert response.status_code == 200

        a_after = (await client.get(f"/tasks/{a['id']}")).json()
        assert a_after["is_blocked"] is False

        status = (await client.get(f"/tasks/{a['id']}/status")).json()
        assert status["can_start"] is True
        assert status["dependency_depth"] == 1

        started = await client.patch(f"/tasks/{a['id']}", json={"status": "in_progress"})
        assert started.status_code == 200
        assert started.json()["status"] == "in_progress"

    @pytest.mark.asyncio
    async def test_delete_task_removes_its_edges(self, client, project, make_task):
        a = await make_task("A")
        b = await make_task("B")
        c = await make_task("C")
        await add_edge(client, project, a, b)
        await add_edge(client, project, b, c)

        response = await client.delete(f"/tasks/{b['id']}")

        assert response.status_code == 204
        a_after = (await client.get(f"/tasks/{a['id']}")).json()
        c_after = (await client.get(f"/tasks/{c['id']}")).json()
        assert a_after["dependencies"] == []
        assert a_after["is_blocked"] is False
        assert c_after["dependent_task_ids"] == []
        assert (await client.get(f"/tasks/{b['id']}")).status_code == 404


class TestProjectGraph:

    @pytest.mark.asyncio
    async def test_ordered_and_critical_path(self, client, project, make_task):
        """
        C depends on B, B depends on A, D is independent.
        """
        c = await make_task("C")
        b = await make_task("B")
        a = await make_task("A")
        await make_task("D")
        await add_edge(client, project, c, b)
        await add_edge(client, project, b, a)

        ordered = (await client.get(f"/projects/{project['id']}/tasks/ordered")).json()
        titles = [t["title"] for t in ordered]
        assert titles.index("A") < titles.index("B") < titles.index("C")
        assert len(titles) == 4

        path = (await client.get(f"/projects/{project['id']}/critical-path")).json()
        assert path["length"] == 3
        assert [t["title"] for t in path["tasks"]] == ["C", "B", "A"]

    @pytest.mark.asyncio
    async def test_delete_project_cascades(self, client, project, make_task):
        a = await make_task("A")

        response = await client.delete(f"/projects/{project['id']}")

        assert response.status_code == 204
        assert (await client.get(f"/projects/{project['id']}")).status_code == 404
        assert (await client.get(f"/tasks/{a['id']}")).status_code == 404

    @pytest.mark.asyncio
    async def test_dependency_stats(self, client, project, make_task):
        """
        C depends on B, B depends on A; D is independent.
        """
        c = await make_task("C")
        b = await make_task("B")
        a = await make_task("A")
        await make_task("D")
        await add_edge(client, project, c, b)
        await add_edge(client, project, b, a)

        response = await client.get(f"/projects/{project['id']}/dependency-stats")

        assert response.status_code == 200
        assert response.json() == {
            "project_id": project["id"],
            "total_tasks": 4,
            "tasks_with_dependencies": 2,
            "blocked_tasks": 2,
            "average_dependencies_per_task": 0.5,
            "max_dependency_depth": 2,
        }

    @pytest.mark.asyncio
    async def test_dependency_stats_unknown_project(self, client):
        response = await client.get(f"/projects/{uuid.uuid4()}/dependency-stats")

        assert response.status_code == 404


class TestUnblocks:

    @pytest.mark.asyncio
    async def test_only_tasks_waiting_on_this_one(self, client, project, make_task):
        """
        A waits on B and C; D waits on B only. Completing B frees D but
        A still waits on C until C is done as well.
        """
        a = await make_task("A")
        b = await make_task("B")
        c = await make_task("C")
        d = await make_task("D")
        await add_edge(client, project, a, b)
        await add_edge(client, project, a, c)
        await add_edge(client, project, d, b)

        before = (await client.get(f"/tasks/{b['id']}/unblocks")).json()
        assert [t["title"] for t in before] == ["D"]

        await client.patch(f"/tasks/{c['id']}", json={"completed": True})
        after = (await client.get(f"/tasks/{b['id']}/unblocks")).json()
        assert [t["title"] for t in after] == ["A", "D"]

        await client.patch(f"/tasks/{b['id']}", json={"completed": True})
        a_after = (await client.get(f"/tasks/{a['id']}")).json()
        assert a_after["is_blocked"] is False

    @pytest.mark.asyncio
    async def test_unknown_task(self, client):
        response = await client.get(f"/tasks/{uuid.uuid4()}/unblocks")

        assert response.status_code == 404
