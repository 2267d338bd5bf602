import uuid

from fastapi.testclient import TestClient

from content_api.main import app

client = TestClient(app)

PROJECT_ATTRS = {"title": "Course", "description": "Learn things", "category": "education"}
TASK_ATTRS = {"name": "Task", "description": "Solve it", "steps": [{"position": 1, "description": "start"}]}
ANSWER_ATTRS = {"description": "Here is my solution", "links": ["https://github.com"]}


def setup_project(headers, status=1):
    project = client.post("/v1/project", json={"project_attrs": PROJECT_ATTRS}, headers=headers).json()["project"]
    if status:
        client.patch("/v1/project", json={"id": project["id"], "project_status": status, "project_attrs": PROJECT_ATTRS}, headers=headers)
    return project


def setup_task(headers, project_id, status=1):
    r = client.post("/v1/task", json={"project_id": project_id, "task_attrs": TASK_ATTRS}, headers=headers)
    assert r.status_code == 201, r.text
    task = r.json()["task"]
    if status:
        client.patch("/v1/task", json={"id": task["id"], "task_status": status, "task_attrs": TASK_ATTRS}, headers=headers)
    return task


def test_task_for_missing_project_is_404(auth_headers):
    headers = auth_headers(uuid.uuid4())
    r = client.post("/v1/task", json={"project_id": str(uuid.uuid4()), "task_attrs": TASK_ATTRS}, headers=headers)
    assert r.status_code == 404
    assert r.json()["msg"] == "project with this ID not found"
    assert client.get("/v1/me/tasks", headers=headers).json()["count"] == 0


def test_task_on_someone_elses_project_is_403(auth_headers):
    alice = auth_headers(uuid.uuid4())
    bob = auth_headers(uuid.uuid4())
    project = setup_project(alice)
    r = client.post("/v1/task", json={"project_id": project["id"], "task_attrs": TASK_ATTRS}, headers=bob)
    assert r.status_code == 403
    assert r.json()["error"] == "forbidden"
    assert client.get("/v1/me/tasks", headers=bob).json()["count"] == 0
    detail = client.get(f"/v1/project/{project['id']}").json()["project"]
    assert detail["tasks"] == []

    # a missing project is still a 404 for a non-owner
    r = client.post("/v1/task", json={"project_id": str(uuid.uuid4()), "task_attrs": TASK_ATTRS}, headers=bob)
    assert r.status_code == 404


def test_owner_creates_task_on_own_project(auth_headers):
    user_id = uuid.uuid4()
    project = setup_project(auth_headers(user_id))
    task = setup_task(auth_headers(user_id), project["id"], status=0)
    assert task["user_id"] == str(user_id)
    assert task["project_id"] == project["id"]
    assert task["status"] == 0


def test_task_attrs_reject_unknown_keys(auth_headers):
    headers = auth_headers(uuid.uuid4())
    project = setup_project(headers)
    bad_step = {**TASK_ATTRS, "steps": [{"position": 1, "description": "go", "color": "red"}]}
    r = client.post("/v1/task", json={"project_id": project["id"], "task_attrs": bad_step}, headers=headers)
    assert r.status_code == 400
    r = client.post("/v1/task", json={"project_id": project["id"], "task_attrs": {**TASK_ATTRS, "extra": 1}}, headers=headers)
    assert r.status_code == 400


def test_task_validation(auth_headers):
    headers = auth_headers(uuid.uuid4())
    project = setup_project(headers)
    no_steps = {**TASK_ATTRS, "steps": []}
    r = client.post("/v1/task", json={"project_id": project["id"], "task_attrs": no_steps}, headers=headers)
    assert r.status_code == 400
    r = client.post("/v1/task", json={"project_id": "bad", "task_attrs": TASK_ATTRS}, headers=headers)
    assert r.status_code == 400
    assert client.post("/v1/task", json={"task_attrs": TASK_ATTRS}, headers=headers).status_code == 400


def test_task_owner_checks(auth_headers):
    alice = auth_headers(uuid.uuid4())
    bob = auth_headers(uuid.uuid4())
    project = setup_project(alice)
    task = setup_task(alice, project["id"])
    body = {"id": task["id"], "task_status": 0, "task_attrs": TASK_ATTRS}
    assert client.patch("/v1/task", json=body, headers=bob).status_code == 403
    assert client.request("DELETE", "/v1/task", json={"id": task["id"]}, headers=bob).status_code == 403
    assert client.request("DELETE", "/v1/task", json={"id": task["id"]}, headers=alice).status_code == 204
    assert client.request("DELETE", "/v1/task", json={"id": task["id"]}, headers=alice).status_code == 404
    assert client.get(f"/v1/task/{task['id']}").status_code == 404


def test_public_task_list(auth_headers):
    headers = auth_headers(uuid.uuid4())
    project = setup_project(headers)
    active = setup_task(headers, project["id"])
    setup_task(headers, project["id"], status=0)
    setup_task(headers, project["id"], status=2)
    listed = client.get(f"/v1/project/{project['id']}/tasks").json()
    assert listed["count"] == 1
    assert listed["tasks"][0]["id"] == active["id"]
    assert listed["tasks"][0]["answers_count"] == 0
    assert client.get(f"/v1/project/{uuid.uuid4()}/tasks").status_code == 404


def test_answer_lifecycle(make_user, auth_headers):
    alice = make_user("alice")
    bob = make_user("bob")
    alice_headers = auth_headers(alice.id)
    bob_headers = auth_headers(bob.id)
    project = setup_project(alice_headers)
    task = setup_task(alice_headers, project["id"])

    r = client.post(
        "/v1/answer",
        json={"project_id": project["id"], "task_id": task["id"], "answer_attrs": ANSWER_ATTRS},
        headers=bob_headers,
    )
    assert r.status_code == 201
    answer = r.json()["answer"]
    assert answer["user_id"] == str(bob.id)
    assert answer["status"] == 0

    # drafts are not counted or listed
    assert client.get(f"/v1/task/{task['id']}").json()["task"]["answers_count"] == 0
    assert client.get(f"/v1/task/{task['id']}/answers").json()["count"] == 0

    body = {"id": answer["id"], "answer_status": 1, "answer_attrs": ANSWER_ATTRS}
    assert client.patch("/v1/answer", json=body, headers=alice_headers).status_code == 403
    assert client.patch("/v1/answer", json=body, headers=bob_headers).status_code == 204

    assert client.get(f"/v1/task/{task['id']}").json()["task"]["answers_count"] == 1
    by_task = client.get(f"/v1/task/{task['id']}/answers").json()
    assert by_task["count"] == 1
    assert by_task["answers"][0]["author"]["username"] == "bob"
    assert "user_id" not in by_task["answers"][0]
    assert client.get(f"/v1/project/{project['id']}/answers").json()["count"] == 1

    detail = client.get(f"/v1/answer/{answer['id']}").json()["answer"]
    assert detail["attrs"]["links"] == ["https://github.com"]
    assert detail["author"]["user_id"] == str(bob.id)

    assert client.get("/v1/me/answers", headers=bob_headers).json()["count"] == 1
    assert client.get("/v1/me/answers", headers=alice_headers).json()["count"] == 0

    assert client.request("DELETE", "/v1/answer", json={"id": answer["id"]}, headers=bob_headers).status_code == 204
    assert client.get(f"/v1/answer/{answer['id']}").status_code == 404


def test_answer_parent_checks(auth_headers):
    headers = auth_headers(uuid.uuid4())
    project = setup_project(headers)
    other_project = setup_project(headers)
    task = setup_task(headers, project["id"])

    r = client.post(
        "/v1/answer",
        json={"project_id": str(uuid.uuid4()), "task_id": task["id"], "answer_attrs": ANSWER_ATTRS},
        headers=headers,
    )
    assert r.status_code == 404
    r = client.post(
        "/v1/answer",
        json={"project_id": project["id"], "task_id": str(uuid.uuid4()), "answer_attrs": ANSWER_ATTRS},
        headers=headers,
    )
    assert r.status_code == 404
    r = client.post(
        "/v1/answer",
        json={"project_id": other_project["id"], "task_id": task["id"], "answer_attrs": ANSWER_ATTRS},
        headers=headers,
    )
    assert r.status_code == 400
    assert client.get("/v1/me/answers", headers=headers).json()["count"] == 0


def test_answer_lists_for_missing_parents():
    assert client.get(f"/v1/task/{uuid.uuid4()}/answers").status_code == 404
    assert client.get(f"/v1/project/{uuid.uuid4()}/answers").status_code == 404
    assert client.get("/v1/answer/not-a-uuid").status_code == 400
