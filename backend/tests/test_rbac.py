from mathquiz.models.user import UserRole


def test_signed_out_requests_are_401(client):
    r = client.get("/auth/me")
    assert r.status_code == 401
    body = r.json()
    assert body["ok"] is False
    assert body["error_code"] == "unauthorized"
    assert body["request_id"]


def test_student_cannot_access_admin_endpoints(client, seed_account, login):
    seed_account("kid@example.com", role=UserRole.student)
    login("kid@example.com")

    assert client.get("/admin/users").status_code == 403
    r = client.delete("/admin/users/anyone")
    assert r.status_code == 403
    assert r.json()["error_code"] == "forbidden"


def test_teacher_reads_class_progress_but_not_admin(client, seed_account, login):
    seed_account("teach@example.com", role=UserRole.teacher)
    login("teach@example.com")

    assert client.get("/progress").status_code == 200
    assert client.get("/admin/users").status_code == 403


def test_student_reads_only_own_progress(client, seed_account, login):
    kid = seed_account("kid@example.com")
    other = seed_account("other@example.com")
    login("kid@example.com")

    assert client.get(f"/progress/{kid}").status_code == 200
    assert client.get(f"/progress/{other}").status_code == 403
    assert client.get("/progress").status_code == 403


def test_parent_reads_linked_child_progress(client, seed_account, login):
    kid = seed_account("kid@example.com")
    other = seed_account("other@example.com")
    seed_account("pat@example.com", role=UserRole.parent, child_id=kid)
    login("pat@example.com")

    assert client.get(f"/progress/{kid}").status_code == 200
    assert client.get(f"/progress/{other}").status_code == 403


def test_admin_manages_users(client, seed_account, login):
    seed_account("admin@example.com", role=UserRole.admin)
    kid = seed_account("kid@example.com", name="Kid")
    login("admin@example.com")

    r = client.get("/admin/users")
    assert r.status_code == 200
    assert r.json()["total"] == 2

    r = client.patch(f"/admin/users/{kid}", json={"name": "Kiddo", "role": "student"})
    assert r.status_code == 200
    assert r.json()["message"] == "User updated successfully."

    r = client.patch("/admin/users/missing", json={"name": "X", "role": "student"})
    assert r.status_code == 404

    r = client.delete(f"/admin/users/{kid}")
    assert r.status_code == 200
    assert r.json()["success"] is True
    assert client.get("/admin/users").json()["total"] == 1


def test_admin_cannot_delete_self(client, seed_account, login):
    admin = seed_account("admin@example.com", role=UserRole.admin)
    login("admin@example.com")

    r = client.delete(f"/admin/users/{admin}")
    assert r.status_code == 400
    assert r.json()["error_message"] == "You cannot delete your own account."


def test_mutating_request_from_foreign_origin_is_rejected(client):
    r = client.post("/auth/logout", headers={"Origin": "https://evil.example"})
    assert r.status_code == 403
    assert r.json()["error_message"] == "invalid origin"
