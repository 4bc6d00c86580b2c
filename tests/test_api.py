"""HTTP-level tests: status codes, error bodies and routing."""

from reflecto.domain import StoreUnavailable


def create_chat(client, headers, title="Evening notes"):
    response = client.post("/chats", json={"title": title}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def create_notebook(client, headers, title="Notes", is_public=False):
    response = client.post("/notebooks", json={"title": title, "is_public": is_public}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_root_and_health(client):
    assert client.get("/").json()["message"] == "Reflecto API is running"
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


class TestAccounts:
    def test_register_login_logout(self, client):
        creds = {"email": "flow@example.com", "password": "secret123"}
        assert client.post("/register", json=creds).status_code == 201
        token = client.post("/login", json=creds).json()["token"]
        headers = {"Authorization": f"Bearer {token}"}
        assert client.post("/logout", headers=headers).status_code == 200
        assert client.post("/logout", headers=headers).status_code == 401

    def test_duplicate_registration(self, client):
        creds = {"email": "twice@example.com", "password": "secret123"}
        client.post("/register", json=creds)
        response = client.post("/register", json=creds)
        assert response.status_code == 400
        assert response.json()["field"] == "email"

    def test_bad_login(self, client):
        response = client.post("/login", json={"email": "ghost@example.com", "password": "secret123"})
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid email or password", "code": "unauthenticated"}

    def test_username_conflict(self, client, auth_headers):
        first, second = auth_headers(), auth_headers()
        assert client.put("/user/username", json={"username": "moonlit"}, headers=first).status_code == 200
        response = client.put("/user/username", json={"username": "moonlit"}, headers=second)
        assert response.status_code == 409
        assert response.json()["code"] == "conflict"

    def test_username_invalid(self, client, auth_headers):
        response = client.put("/user/username", json={"username": "no spaces"}, headers=auth_headers())
        assert response.status_code == 400
        assert response.json()["field"] == "username"


class TestChatLifecycle:
    def test_archive_requires_auth(self, client, auth_headers):
        chat = create_chat(client, auth_headers())
        response = client.put(f"/chats/{chat['id']}/archive")
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized", "code": "unauthenticated"}

    def test_garbage_token_is_anonymous(self, client, auth_headers):
        chat = create_chat(client, auth_headers())
        response = client.put(f"/chats/{chat['id']}/archive", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_non_owner_gets_404(self, client, auth_headers):
        chat = create_chat(client, auth_headers())
        intruder = auth_headers()
        foreign = client.put(f"/chats/{chat['id']}/archive", headers=intruder)
        missing = client.put("/chats/chat_missing/archive", headers=intruder)
        assert foreign.status_code == missing.status_code == 404
        assert foreign.json() == missing.json()

    def test_archive_and_restore_are_idempotent(self, client, auth_headers):
        headers = auth_headers()
        chat = create_chat(client, headers)
        for _ in range(2):
            response = client.put(f"/chats/{chat['id']}/archive", headers=headers)
            assert response.status_code == 200
            assert response.json()["state"] == "archived"
        for _ in range(2):
            response = client.put(f"/chats/{chat['id']}/restore", headers=headers)
            assert response.status_code == 200
            assert response.json()["is_archived"] is False

    def test_list_and_messages(self, client, auth_headers):
        headers = auth_headers()
        chat = create_chat(client, headers)
        response = client.post(
            f"/chats/{chat['id']}/messages", json={"role": "user", "content": "hello"}, headers=headers
        )
        assert response.status_code == 201
        listing = client.get("/chats", headers=headers).json()
        assert listing["total"] == 1
        assert listing["items"][0]["id"] == chat["id"]
        messages = client.get(f"/chats/{chat['id']}/messages", headers=headers).json()
        assert [m["content"] for m in messages["items"]] == ["hello"]

    def test_bad_sort_is_400(self, client, auth_headers):
        response = client.get("/chats?sort_by=title", headers=auth_headers())
        assert response.status_code == 400
        assert response.json()["field"] == "sort_by"

    def test_store_failure_is_500_without_details(self, client, app, auth_headers, monkeypatch):
        headers = auth_headers()
        chat = create_chat(client, headers)

        def broken(*_args, **_kwargs):
            raise StoreUnavailable()

        monkeypatch.setattr(app.state.reflecto.chats.store, "mutate_owned", broken)
        response = client.put(f"/chats/{chat['id']}/archive", headers=headers)
        assert response.status_code == 500
        assert response.json() == {
            "error": "Service temporarily unavailable, please try again",
            "code": "store_unavailable",
        }


class TestSubmissions:
    def test_contact_missing_name(self, client):
        response = client.post("/contact", json={"email": "a@b.com", "message": "hi"})
        assert response.status_code == 400
        assert response.json() == {"error": "Name is required", "code": "validation_error", "field": "name"}

    def test_contact_success(self, client):
        response = client.post("/contact", json={"name": "Ada", "email": "a@b.com", "message": "hi"})
        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["message"]
        assert body["id"]

    def test_feedback_bad_rating_type(self, client):
        response = client.post("/feedback", json={"email": "a@b.com", "message": "ok", "rating": "lots"})
        assert response.status_code == 400
        assert response.json()["field"] == "rating"

    def test_newsletter(self, client):
        body = {"email": "news@example.com"}
        assert client.post("/newsletter/subscribe", json=body).json()["status"] == "subscribed"
        assert client.post("/newsletter/subscribe", json=body).json()["status"] == "already_subscribed"
        assert client.post("/newsletter/unsubscribe", json=body).json()["status"] == "unsubscribed"


class TestNotebooks:
    def test_public_listing_hides_private(self, client, auth_headers):
        headers = auth_headers()
        public = create_notebook(client, headers, "Shared", is_public=True)
        create_notebook(client, headers, "Secret")
        body = client.get("/notebooks/public").json()
        assert [n["id"] for n in body["items"]] == [public["id"]]
        assert body["limit"] == 20

    def test_public_page_past_end(self, client, auth_headers):
        create_notebook(client, auth_headers(), "Shared", is_public=True)
        response = client.get("/notebooks/public?page=9&limit=5")
        assert response.status_code == 200
        assert response.json()["items"] == []

    def test_public_huge_page(self, client, auth_headers):
        create_notebook(client, auth_headers(), "Shared", is_public=True)
        response = client.get("/notebooks/public", params={"page": 10**18})
        assert response.status_code == 200
        body = response.json()
        assert body["items"] == []
        assert body["total"] == 1
        assert body["has_more"] is False

    def test_public_detail(self, client, auth_headers):
        headers = auth_headers()
        private = create_notebook(client, headers, "Secret")
        assert client.get(f"/notebooks/public/{private['id']}").status_code == 404
        toggled = client.put(f"/notebooks/{private['id']}/toggle-public", headers=headers)
        assert toggled.json() == {"message": "Notebook is now public", "is_public": True}
        assert client.get(f"/notebooks/public/{private['id']}").json()["title"] == "Secret"

    def test_public_route_not_treated_as_id(self, client, auth_headers):
        response = client.get("/notebooks/public", headers=auth_headers())
        assert response.status_code == 200
        assert "items" in response.json()

    def test_public_by_handle(self, client, auth_headers):
        headers = auth_headers()
        client.put("/user/username", json={"username": "writer"}, headers=headers)
        create_notebook(client, headers, "Essay", is_public=True)
        body = client.get("/notebooks/public/user/writer").json()
        assert [n["author"] for n in body["items"]] == ["writer"]

    def test_owned_crud(self, client, auth_headers):
        headers = auth_headers()
        notebook = create_notebook(client, headers, "Draft")
        updated = client.put(f"/notebooks/{notebook['id']}", json={"content": "more", "tags": ["x"]}, headers=headers)
        assert updated.json()["tags"] == ["x"]
        assert client.get("/notebooks", headers=headers).json()["total"] == 1
        tagged = client.get("/notebooks", params={"tag": "x", "limit": 100}, headers=headers).json()
        assert [n["id"] for n in tagged["items"]] == [notebook["id"]]
        assert tagged["limit"] == 40
        assert client.get("/notebooks/" + notebook["id"], headers=auth_headers()).status_code == 404
        assert client.delete(f"/notebooks/{notebook['id']}", headers=headers).status_code == 200
        assert client.get(f"/notebooks/{notebook['id']}", headers=headers).status_code == 404

    def test_tags_need_auth(self, client, auth_headers):
        assert client.get("/tags").status_code == 401
        headers = auth_headers()
        assert client.get("/tags", headers=headers).json() == []
        client.post("/notebooks", json={"title": "Tagged", "tags": ["calm"]}, headers=headers)
        assert [t["name"] for t in client.get("/tags", headers=headers).json()] == ["calm"]
