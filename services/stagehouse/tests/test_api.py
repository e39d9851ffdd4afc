import csv
import io

import pytest

from stagehouse import config, models
from stagehouse.auth import Identity

from conftest import auth_header, make_token


def test_health_check(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


# ---------------------------------------------------------------------------
# Authentication and authorization
# ---------------------------------------------------------------------------

def test_anonymous_write_is_rejected(client):
    response = client.post("/inventory/", json={"name": "Sofa"})

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"
    assert response.json()["error"] == "Unauthenticated"


def test_invalid_token_is_rejected(client):
    response = client.get("/projects/mine", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Could not validate credentials"


def test_customer_cannot_edit_catalog(client, owner):
    response = client.post("/inventory/", json={"name": "Sofa"}, headers=auth_header(owner))
    assert response.status_code == 403
    assert response.json()["error"] == "Unauthorized"


def test_sync_user_bootstraps_admin(client, monkeypatch):
    monkeypatch.setattr(config, "ADMIN_SUBJECTS", ["boss"])
    headers = {"Authorization": f"Bearer {make_token('boss', name='The Boss')}"}

    assert client.get("/users/me", headers=headers).status_code == 404

    response = client.post("/users/me", headers=headers)
    assert response.status_code == 200
    assert response.json()["role"] == "admin"
    assert response.json()["name"] == "The Boss"

    other = {"Authorization": f"Bearer {make_token('someone')}"}
    assert client.post("/users/me", headers=other).json()["role"] == "customer"


def test_admin_sets_role(client, admin, owner):
    response = client.put(f"/users/{owner.subject}/role", json={"role": "admin"}, headers=auth_header(admin))
    assert response.status_code == 200
    assert response.json()["role"] == "admin"

    response = client.put(f"/users/{admin.subject}/role", json={"role": "customer"}, headers=auth_header(owner))
    assert response.status_code == 200


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

def test_create_items_assigns_o_ids(client, admin):
    headers = auth_header(admin)
    first = client.post("/inventory/", json={"name": "Sofa", "count": 2, "price": "40.00"}, headers=headers)
    second = client.post("/inventory/", json={"name": "Lamp", "category": "Lighting"}, headers=headers)

    assert first.status_code == 201
    assert first.json()["o_id"] == 1
    assert first.json()["in_use"] == 0
    assert second.json()["o_id"] == 2

    listing = client.get("/inventory/").json()
    assert [item["name"] for item in listing] == ["Lamp", "Sofa"]
    assert client.get("/inventory/categories").json() == ["Lighting"]
    assert client.get("/inventory/most-recent").json() == {"o_id": 2}


def test_duplicate_o_id_is_rejected(client, admin, make_item):
    make_item(o_id=5)
    response = client.post("/inventory/", json={"name": "Dup", "o_id": 5}, headers=auth_header(admin))
    assert response.status_code == 409


def test_item_lookup_and_availability(client, make_item):
    item = make_item(o_id=7, count=3, in_use=1)

    assert client.get(f"/inventory/{item.id}").json()["name"] == "Velvet sofa"
    assert client.get("/inventory/by-oid/7").json()["id"] == item.id
    assert client.get(f"/inventory/{item.id}/availability").json() == {"total": 3, "in_use": 1, "available": 2}
    assert client.get("/inventory/999/availability").json() is None
    assert client.get("/inventory/999").status_code == 404


def test_adjacent_endpoint(client, make_item):
    make_item(o_id=1)
    make_item(o_id=2)
    assert client.get("/inventory/by-oid/2/adjacent").json() == {"next_o_id": None, "prev_o_id": 1}


def test_update_cannot_drop_count_below_in_use(client, admin, make_item):
    item = make_item(count=5, in_use=3)
    headers = auth_header(admin)

    assert client.put(f"/inventory/{item.id}", json={"count": 2}, headers=headers).status_code == 409
    assert client.put(f"/inventory/{item.id}", json={"active": False}, headers=headers).status_code == 409

    response = client.put(f"/inventory/{item.id}", json={"count": 3, "name": "Green sofa"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["count"] == 3
    assert response.json()["in_use"] == 3


def test_delete_item_with_in_use_units(client, admin, make_item):
    item = make_item(in_use=1)
    response = client.delete(f"/inventory/{item.id}", headers=auth_header(admin))
    assert response.status_code == 409
    assert response.json()["error"] == "CannotDelete"


def test_delete_item_referenced_by_ledger(client, db, admin, owner, make_item, make_project):
    item = make_item(count=2)
    project = make_project(owner)
    headers = auth_header(owner)
    assignment = client.post(f"/projects/{project.id}/inventory", json={"inventory_id": item.id, "quantity": 1}, headers=headers).json()
    client.post(f"/projects/inventory/{assignment['id']}/return", headers=headers)

    response = client.delete(f"/inventory/{item.id}", headers=auth_header(admin))

    assert response.status_code == 409
    assert "archive" in response.json()["detail"]


def test_delete_item_removes_extra_images(client, db, admin, make_item):
    item = make_item()
    headers = auth_header(admin)
    client.post(f"/inventory/{item.id}/images", json={"image_path": "extra.jpg"}, headers=headers)

    response = client.delete(f"/inventory/{item.id}", headers=headers)

    assert response.status_code == 204
    assert db.query(models.ExtraImage).count() == 0
    assert client.get(f"/inventory/{item.id}").status_code == 404


def test_move_and_image_endpoints(client, admin, make_item):
    a = make_item(name="A")
    make_item(name="B")
    headers = auth_header(admin)

    moved = client.post(f"/inventory/{a.id}/move", json={"direction": "up"}, headers=headers)
    assert moved.json()["o_id"] == 2

    client.post(f"/inventory/{a.id}/images", json={"image_path": "extra.jpg"}, headers=headers)
    swapped = client.post(f"/inventory/{a.id}/images/swap", json={"position1": 1, "position2": 2}, headers=headers)
    assert swapped.json()["image_path"] == "extra.jpg"

    out_of_range = client.post(f"/inventory/{a.id}/images/move", json={"position": 3, "direction": "up"}, headers=headers)
    assert out_of_range.status_code == 404


def test_csv_import_and_export(client, admin, make_item):
    make_item(o_id=1, count=4, in_use=2)
    headers = auth_header(admin)
    upload = "o_id,name,category,vendor,location,count,price,active\n" \
             "1,Velvet sofa,Seating,,,1,40.00,\n" \
             ",Brass lamp,Lighting,Acme,Shelf B,3,12.5,1\n" \
             ",,Broken,,,1,1,\n" \
             ",Floor lamp,Lighting,,,1,NaN,\n" \
             ",Mirror,Decor,,,1,Infinity,\n"

    response = client.post(
        "/inventory/import/csv",
        files={"file": ("inventory.csv", upload, "text/csv")},
        headers=headers,
    )

    summary = response.json()
    assert summary["created_count"] == 1
    assert summary["updated_count"] == 0
    assert summary["skipped_count"] == 4
    assert "Row 5: Price must be a finite number" in summary["errors"]
    assert "Row 6: Price must be a finite number" in summary["errors"]

    exported = client.get("/inventory/export/csv", headers=headers)
    assert exported.status_code == 200
    rows = list(csv.DictReader(io.StringIO(exported.text)))
    assert {row["name"] for row in rows} == {"Velvet sofa", "Brass lamp"}
    assert next(r for r in rows if r["name"] == "Brass lamp")["o_id"] == "2"


# ---------------------------------------------------------------------------
# Projects and allocation
# ---------------------------------------------------------------------------

def test_allocation_flow(client, db, owner, make_item):
    item = make_item(count=2)
    headers = auth_header(owner)
    project = client.post("/projects/", json={"name": "Elm Street"}, headers=headers).json()
    assert project["owner_id"] == owner.subject

    assigned = client.post(f"/projects/{project['id']}/inventory", json={"inventory_id": item.id, "quantity": 2}, headers=headers)
    assert assigned.status_code == 201
    assert assigned.json()["price_per_item"] == "40.00"

    over = client.post(f"/projects/{project['id']}/inventory", json={"inventory_id": item.id, "quantity": 1}, headers=headers)
    assert over.status_code == 409
    assert over.json()["available"] == 0
    assert over.json()["requested"] == 1

    listing = client.get(f"/projects/{project['id']}/inventory", headers=headers).json()
    assert listing["rental_total"] == "80.00"

    assignment_id = assigned.json()["id"]
    returned = client.post(f"/projects/inventory/{assignment_id}/return", headers=headers)
    assert returned.status_code == 200
    assert returned.json()["returned_at"] is not None

    again = client.post(f"/projects/inventory/{assignment_id}/return", headers=headers)
    assert again.status_code == 409

    db.refresh(item)
    assert item.in_use == 0
    assert client.get(f"/projects/{project['id']}", headers=headers).json()["inventory_assigned"] is True


def test_zero_quantity_is_a_validation_error(client, owner, make_item, make_project):
    item = make_item()
    project = make_project(owner)
    response = client.post(f"/projects/{project.id}/inventory", json={"inventory_id": item.id, "quantity": 0}, headers=auth_header(owner))
    assert response.status_code == 422


def test_project_visibility(client, admin, owner, stranger, make_project):
    private = make_project(owner)
    public = make_project(owner, highlighted=True)

    assert client.get(f"/projects/{private.id}", headers=auth_header(stranger)).status_code == 403
    assert client.get(f"/projects/{private.id}", headers=auth_header(owner)).status_code == 200
    assert client.get(f"/projects/{private.id}", headers=auth_header(admin)).status_code == 200
    assert client.get(f"/projects/{public.id}").status_code == 200

    highlighted = client.get("/projects/highlighted").json()
    assert [p["id"] for p in highlighted] == [public.id]


@pytest.mark.parametrize("limit", [-1, 0, 101])
def test_portfolio_limit_out_of_range(client, limit):
    assert client.get("/projects/highlighted", params={"limit": limit}).status_code == 422


def test_highlight_toggle_updates_portfolio(client, admin, owner, make_project):
    project = make_project(owner)
    assert client.get("/projects/highlighted").json() == []

    response = client.post(f"/projects/{project.id}/highlight", headers=auth_header(admin))
    assert response.json()["highlighted"] is True
    assert [p["id"] for p in client.get("/projects/highlighted").json()] == [project.id]

    assert client.post(f"/projects/{project.id}/highlight", headers=auth_header(owner)).status_code == 403


def test_project_listing_and_moves(client, admin, owner, make_project):
    a = make_project(owner, name="A")
    make_project(owner, name="B")

    assert client.get("/projects/", headers=auth_header(owner)).status_code == 403

    moved = client.post(f"/projects/{a.id}/move", json={"direction": "up"}, headers=auth_header(admin))
    assert [p["name"] for p in moved.json()] == ["B", "A"]
    assert [p["name"] for p in client.get("/projects/mine", headers=auth_header(owner)).json()] == ["B", "A"]


def test_project_image_endpoints(client, owner, make_project):
    project = make_project(owner)
    headers = auth_header(owner)
    ids = [
        client.post(f"/projects/{project.id}/images", json={"image_path": name}, headers=headers).json()["id"]
        for name in ("one.jpg", "two.jpg")
    ]

    reordered = client.put(f"/projects/{project.id}/images/order", json={"image_ids": ids[::-1]}, headers=headers)
    assert [(i["image_path"], i["display_order"]) for i in reordered.json()] == [("two.jpg", 0), ("one.jpg", 1)]

    partial = client.put(f"/projects/{project.id}/images/order", json={"image_ids": ids[:1]}, headers=headers)
    assert partial.status_code == 409

    assert client.delete(f"/projects/images/{ids[1]}", headers=headers).status_code == 204
    detail = client.get(f"/projects/{project.id}", headers=headers).json()
    assert [(i["image_path"], i["display_order"]) for i in detail["images"]] == [("one.jpg", 0)]


def test_delete_project_cascade(client, db, admin, owner, make_item, make_project):
    item = make_item(count=4)
    project = make_project(owner)
    client.post(f"/projects/{project.id}/inventory", json={"inventory_id": item.id, "quantity": 4}, headers=auth_header(owner))

    assert client.delete(f"/projects/{project.id}", headers=auth_header(owner)).status_code == 403
    assert client.delete(f"/projects/{project.id}", headers=auth_header(admin)).status_code == 204

    db.refresh(item)
    assert item.in_use == 0
    assert client.get(f"/projects/{project.id}", headers=auth_header(admin)).status_code == 404


def test_ledger_audit_endpoint(client, admin, owner, make_item):
    make_item(count=3, in_use=2)
    response = client.get("/inventory/ledger/audit", headers=auth_header(admin))
    assert response.status_code == 200
    assert response.json()[0]["ledger_in_use"] == 0
    assert client.get("/inventory/analytics", headers=auth_header(admin)).json()["units_in_use"] == 2
    assert client.get("/inventory/ledger/audit", headers=auth_header(owner)).status_code == 403


def test_identity_without_user_row_is_not_admin(client):
    ghost = Identity(authenticated=True, subject="ghost")
    assert client.get("/inventory/all", headers=auth_header(ghost)).status_code == 403
