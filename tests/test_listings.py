# Listings and profiles test suite: property filters and ownership, construction
# projects, favorites, reviews and the public profile.
from __future__ import annotations

from typing import Tuple

from fastapi.testclient import TestClient


# Helper: create a user and return (access_token, user JSON)
def signup(client: TestClient, email: str, password: str = "changeme123", role: str | None = None) -> Tuple[str, dict]:
    payload = {"email": email, "password": password}
    if role:
        payload["role"] = role
    r = client.post("/auth/signup", json=payload)
    assert r.status_code == 201, r.text
    data = r.json()
    return data["access_token"], data["user"]


# Convenience header for authenticated requests
def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# Helper: create a property owned by the authenticated builder
def create_property(client: TestClient, token: str, title: str, price_cents: int, **extra) -> dict:
    r = client.post(
        "/api/v1/properties",
        headers=auth_headers(token),
        json={"title": title, "price_cents": price_cents, **extra},
    )
    assert r.status_code == 201, r.text
    return r.json()


def test_property_filters_and_unpublished_visibility(client: TestClient):
    token, owner = signup(client, "builder-list@example.com", role="empresa_constructora")
    a = create_property(client, token, "Apto Piantini", 20000000, city="Santo Domingo", property_type="apartamento")
    b = create_property(client, token, "Villa Cap Cana", 90000000, city="Punta Cana", property_type="villa")
    hidden = create_property(client, token, "Borrador", 1000, is_published=False)

    public = client.get("/api/v1/properties").json()
    assert [p["id"] for p in public] == [b["id"], a["id"]]

    by_city = client.get("/api/v1/properties?city=Punta%20Cana").json()
    assert [p["id"] for p in by_city] == [b["id"]]
    cheap = client.get("/api/v1/properties?max_price_cents=50000000").json()
    assert [p["id"] for p in cheap] == [a["id"]]
    villas = client.get("/api/v1/properties?property_type=villa&min_price_cents=1").json()
    assert [p["id"] for p in villas] == [b["id"]]

    mine = client.get("/api/v1/properties?mine=true", headers=auth_headers(token)).json()
    assert {p["id"] for p in mine} == {a["id"], b["id"], hidden["id"]}
    assert client.get("/api/v1/properties?mine=true").status_code == 401

    # Unpublished listings are only visible to the owner
    assert client.get(f"/api/v1/properties/{hidden['id']}").status_code == 404
    assert client.get(f"/api/v1/properties/{hidden['id']}", headers=auth_headers(token)).status_code == 200


def test_property_owner_only_mutations(client: TestClient):
    token, _ = signup(client, "owner-mut@example.com", role="empresa_constructora")
    other_token, _ = signup(client, "other-mut@example.com", role="empresa_constructora")
    prop = create_property(client, token, "Casa Gazcue", 15000000)

    r_forbidden = client.patch(
        f"/api/v1/properties/{prop['id']}", headers=auth_headers(other_token), json={"price_cents": 1}
    )
    assert r_forbidden.status_code == 403

    r_ok = client.patch(
        f"/api/v1/properties/{prop['id']}", headers=auth_headers(token), json={"status": "sold", "price_cents": 14000000}
    )
    assert r_ok.status_code == 200, r_ok.text
    assert r_ok.json()["status"] == "sold"
    assert r_ok.json()["price_cents"] == 14000000

    r_img = client.post(
        f"/api/v1/properties/{prop['id']}/images",
        headers=auth_headers(token),
        files={"file": ("sala.jpg", b"\xff\xd8\xff fake jpeg", "image/jpeg")},
    )
    assert r_img.status_code == 200, r_img.text
    assert len(r_img.json()["images"]) == 1
    assert "/uploads/property-images/" in r_img.json()["images"][0]

    assert client.delete(f"/api/v1/properties/{prop['id']}", headers=auth_headers(other_token)).status_code == 403
    assert client.delete(f"/api/v1/properties/{prop['id']}", headers=auth_headers(token)).status_code == 204
    assert client.get(f"/api/v1/properties/{prop['id']}").status_code == 404


def test_admin_can_delete_any_property_and_favorites_go_with_it(client: TestClient, make_admin):
    token, _ = signup(client, "fav-owner@example.com", role="empresa_constructora")
    buyer_token, _ = signup(client, "fav-buyer@example.com")
    admin_token, admin = signup(client, "fav-admin@example.com")
    make_admin(admin["id"])
    prop = create_property(client, token, "Penthouse", 50000000)

    r_fav = client.post(f"/api/v1/favorites/{prop['id']}", headers=auth_headers(buyer_token))
    assert r_fav.status_code == 201, r_fav.text
    # Adding twice keeps one favorite
    client.post(f"/api/v1/favorites/{prop['id']}", headers=auth_headers(buyer_token))
    assert len(client.get("/api/v1/favorites", headers=auth_headers(buyer_token)).json()) == 1

    assert client.delete(f"/api/v1/properties/{prop['id']}", headers=auth_headers(admin_token)).status_code == 204
    assert client.get("/api/v1/favorites", headers=auth_headers(buyer_token)).json() == []
    assert client.post(f"/api/v1/favorites/{prop['id']}", headers=auth_headers(buyer_token)).status_code == 404


def test_projects_are_builder_only_and_count_views(client: TestClient):
    buyer_token, _ = signup(client, "proj-buyer@example.com")
    builder_token, _ = signup(client, "proj-builder@example.com", role="empresa_constructora")

    payload = {"title": "Torre Caribe", "city": "Santo Domingo", "status": "construction", "price_from_cents": 9500000}
    assert client.post("/api/v1/projects", headers=auth_headers(buyer_token), json=payload).status_code == 403

    r = client.post("/api/v1/projects", headers=auth_headers(builder_token), json=payload)
    assert r.status_code == 201, r.text
    project = r.json()
    assert project["views_count"] == 0

    for _ in range(3):
        r_view = client.post(f"/api/v1/projects/{project['id']}/views")
    assert r_view.json() == {"project_id": project["id"], "views_count": 3}
    assert client.post("/api/v1/projects/9999/views").status_code == 404

    listed = client.get("/api/v1/projects?status=construction").json()
    assert [p["id"] for p in listed] == [project["id"]]
    assert client.get("/api/v1/projects?status=completed").json() == []

    r_plan = client.post(
        f"/api/v1/projects/{project['id']}/plans",
        headers=auth_headers(builder_token),
        files={"file": ("plano.pdf", b"%PDF-1.4 fake", "application/pdf")},
    )
    assert r_plan.status_code == 200, r_plan.text
    assert len(r_plan.json()["plans"]) == 1

    r_patch = client.patch(
        f"/api/v1/projects/{project['id']}", headers=auth_headers(builder_token), json={"status": "completed"}
    )
    assert r_patch.json()["status"] == "completed"


def test_public_profile_and_reviews(client: TestClient):
    seller_token, seller = signup(client, "profile-seller@example.com", role="empresa_constructora")
    buyer_token, _ = signup(client, "profile-buyer1@example.com")
    buyer2_token, _ = signup(client, "profile-buyer2@example.com")
    create_property(client, seller_token, "Local comercial", 30000000)
    create_property(client, seller_token, "Oculta", 1000, is_published=False)

    r_me = client.patch("/api/v1/users/me", headers=auth_headers(seller_token), json={"name": "Constructora Sol"})
    assert r_me.json()["name"] == "Constructora Sol"

    for token, rating in ((buyer_token, 5), (buyer2_token, 4)):
        r = client.post(f"/api/v1/users/{seller['id']}/reviews", headers=auth_headers(token), json={"rating": rating})
        assert r.status_code == 201, r.text

    dup = client.post(f"/api/v1/users/{seller['id']}/reviews", headers=auth_headers(buyer_token), json={"rating": 1})
    assert dup.status_code == 409
    own = client.post(f"/api/v1/users/{seller['id']}/reviews", headers=auth_headers(seller_token), json={"rating": 5})
    assert own.status_code == 400

    profile = client.get(f"/api/v1/users/{seller['id']}").json()
    assert profile["user"]["name"] == "Constructora Sol"
    assert "email" not in profile["user"]
    assert [p["title"] for p in profile["properties"]] == ["Local comercial"]
    assert profile["rating_average"] == 4.5
    assert profile["rating_count"] == 2
    assert len(client.get(f"/api/v1/users/{seller['id']}/reviews").json()) == 2


def test_avatar_replacement(client: TestClient):
    token, _ = signup(client, "avatar@example.com")
    first = client.post(
        "/api/v1/users/me/avatar",
        headers=auth_headers(token),
        files={"file": ("a.png", b"\x89PNG one", "image/png")},
    )
    assert first.status_code == 200, first.text
    second = client.post(
        "/api/v1/users/me/avatar",
        headers=auth_headers(token),
        files={"file": ("b.png", b"\x89PNG two", "image/png")},
    )
    assert second.json()["avatar_url"] != first.json()["avatar_url"]


def test_admin_role_change_and_stats(client: TestClient, make_admin):
    admin_token, admin = signup(client, "root@example.com")
    make_admin(admin["id"])
    _, user = signup(client, "promote-me@example.com")

    r = client.patch(
        f"/api/v1/admin/users/{user['id']}/role", headers=auth_headers(admin_token), json={"role": "agente"}
    )
    assert r.status_code == 200, r.text
    assert r.json()["role"] == "agente"

    self_demote = client.patch(
        f"/api/v1/admin/users/{admin['id']}/role", headers=auth_headers(admin_token), json={"role": "comprador"}
    )
    assert self_demote.status_code == 400

    found = client.get("/api/v1/admin/users?search=promote", headers=auth_headers(admin_token)).json()
    assert found["total"] == 1

    stats = client.get("/api/v1/admin/stats", headers=auth_headers(admin_token)).json()
    assert stats["users_by_role"] == {"admin": 1, "agente": 1}


def test_contact_form_roundtrip(client: TestClient, make_admin):
    admin_token, admin = signup(client, "contact-admin@example.com")
    make_admin(admin["id"])
    r = client.post(
        "/api/v1/contact",
        json={"name": "Visitante", "email": "visita@example.com", "message": "Quiero publicar"},
    )
    assert r.status_code == 201, r.text
    assert r.json()["status"] == "new"

    r_patch = client.patch(
        f"/api/v1/admin/contact-forms/{r.json()['id']}", headers=auth_headers(admin_token), json={"status": "read"}
    )
    assert r_patch.json()["status"] == "read"
    listed = client.get("/api/v1/admin/contact-forms", headers=auth_headers(admin_token)).json()
    assert [c["status"] for c in listed] == ["read"]
