from datetime import timedelta

from bson import ObjectId

import lifecycle
from database import utcnow
from utils.security import create_access_token


# ---------- auth ----------
async def test_register_login_and_profile(client):
    payload = {
        "name": "Jane Smith",
        "membership_id": "student002",
        "password": "pass1234",
        "phone": "+1-555-0124",
        "role": "admin",
    }
    response = await client.post("/auth/register", json=payload)
    assert response.status_code == 201
    body = response.json()
    assert body["membership_id"] == "STUDENT002"
    assert body["role"] == "user"
    assert "password" not in body

    response = await client.post("/auth/login", json={"user_id": "Student002", "password": "pass1234"})
    assert response.status_code == 200
    token = response.json()["access_token"]
    assert response.json()["user"]["name"] == "Jane Smith"

    response = await client.get("/auth/profile", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert response.json()["membership_id"] == "STUDENT002"


async def test_duplicate_registration_is_conflict(client):
    payload = {"name": "A", "membership_id": "lib001", "password": "pass1234", "phone": "1"}
    assert (await client.post("/auth/register", json=payload)).status_code == 201

    payload.update(membership_id="LIB001", phone="2")
    response = await client.post("/auth/register", json=payload)
    assert response.status_code == 409
    assert response.json() == {"message": "Phone number or membership ID already exists"}


async def test_login_failures(client, member):
    response = await client.post("/auth/login", json={"membership_id": "STUDENT001", "password": "nope-nope"})
    assert response.status_code == 401
    assert response.json() == {"message": "Invalid credentials"}

    response = await client.post("/auth/login", json={"membership_id": "STUDENT001"})
    assert response.status_code == 400
    assert "password" in response.json()["message"]


async def test_credential_failures(client, db, member, auth_headers):
    response = await client.get("/borrowings")
    assert response.status_code == 401
    assert response.json() == {"message": "Access token required"}
    assert response.headers["www-authenticate"] == "Bearer"

    response = await client.get("/borrowings", headers={"Authorization": "Bearer not.a.token"})
    assert response.status_code == 401
    assert response.json() == {"message": "Invalid or expired token"}

    expired = create_access_token({"sub": str(member["_id"])}, timedelta(minutes=-5))
    response = await client.get("/borrowings", headers={"Authorization": f"Bearer {expired}"})
    assert response.status_code == 401

    headers = auth_headers(member)
    await db.users.delete_one({"_id": member["_id"]})
    response = await client.get("/borrowings", headers=headers)
    assert response.status_code == 401
    assert response.json() == {"message": "User not found"}


async def test_inactive_account_is_refused(client, db, member, auth_headers):
    await db.users.update_one({"_id": member["_id"]}, {"$set": {"is_active": False}})
    response = await client.get("/auth/profile", headers=auth_headers(member))
    assert response.status_code == 401

    response = await client.post("/auth/login", json={"membership_id": "STUDENT001", "password": "secret123"})
    assert response.status_code == 401


async def test_admin_only_endpoints(client, member, make_book, auth_headers):
    book = await make_book()
    headers = auth_headers(member)

    for method, url in [
        ("post", "/books"),
        ("put", f"/books/{book['_id']}"),
        ("delete", f"/books/{book['_id']}"),
        ("get", "/users"),
        ("post", "/users"),
        ("put", f"/borrowings/{ObjectId()}/approve"),
        ("put", f"/borrowings/{ObjectId()}/reject"),
        ("put", f"/borrowings/{ObjectId()}/calculate-fine"),
        ("delete", f"/borrowings/{ObjectId()}"),
    ]:
        kwargs = {"json": {}} if method in ("post", "put") else {}
        response = await getattr(client, method)(url, headers=headers, **kwargs)
        assert response.status_code == 403, url
        assert response.json() == {"message": "Admin access required"}


async def test_change_password_endpoint(client, member, auth_headers):
    headers = auth_headers(member)
    response = await client.put("/auth/change-password", headers=headers,
                                json={"current_password": "secret123", "new_password": "short"})
    assert response.status_code == 400

    response = await client.put("/auth/change-password", headers=headers,
                                json={"current_password": "secret123", "new_password": "longer-pass"})
    assert response.status_code == 200
    response = await client.post("/auth/login", json={"membership_id": "student001", "password": "longer-pass"})
    assert response.status_code == 200


async def test_update_profile(client, member, auth_headers):
    response = await client.put("/auth/profile", headers=auth_headers(member),
                                json={"name": "Johnny Doe", "address": "1 Library Way"})
    assert response.status_code == 200
    assert response.json()["name"] == "Johnny Doe"
    assert response.json()["address"] == "1 Library Way"
    assert response.json()["role"] == "user"


# ---------- books ----------
async def test_book_crud(client, admin, auth_headers):
    headers = auth_headers(admin)
    payload = {
        "title": "To Kill a Mockingbird",
        "author": "Harper Lee",
        "isbn": "978-0-06-112008-4",
        "genre": "Fiction",
        "publication_year": 1960,
        "total_copies": 4,
    }
    response = await client.post("/books", json=payload, headers=headers)
    assert response.status_code == 201
    book = response.json()
    assert (book["available_copies"], book["is_available"]) == (4, True)

    response = await client.get("/books", params={"search": "mocking"})
    assert [b["id"] for b in response.json()] == [book["id"]]

    response = await client.put(f"/books/{book['id']}", json={"total_copies": 2}, headers=headers)
    assert response.json()["available_copies"] == 2

    response = await client.delete(f"/books/{book['id']}", headers=headers)
    assert response.status_code == 200
    response = await client.get(f"/books/{book['id']}")
    assert response.status_code == 404
    assert response.json() == {"message": "Book not found"}


async def test_book_validation_errors(client, admin, auth_headers):
    response = await client.post("/books", json={"title": "No author"}, headers=auth_headers(admin))
    assert response.status_code == 400
    assert "message" in response.json()

    response = await client.get("/books/not-an-id")
    assert response.status_code == 400
    assert response.json() == {"message": "Invalid book ID format"}


# ---------- borrowings ----------
async def test_borrowing_workflow(client, admin, member, make_book, auth_headers):
    book = await make_book(total_copies=1)
    member_headers = auth_headers(member)
    admin_headers = auth_headers(admin)

    response = await client.post("/borrowings", json={"book_id": str(book["_id"])}, headers=member_headers)
    assert response.status_code == 201
    borrowing = response.json()
    assert borrowing["status"] == "pending"
    assert borrowing["user"]["membership_id"] == "STUDENT001"
    assert borrowing["book"]["title"] == "The Great Gatsby"

    response = await client.put(f"/borrowings/{borrowing['id']}/approve", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "borrowed"
    assert (await client.get(f"/books/{book['_id']}")).json()["available_copies"] == 0

    response = await client.put(f"/borrowings/{borrowing['id']}/approve", headers=admin_headers)
    assert response.status_code == 400
    assert response.json() == {"message": "Only pending requests can be approved"}

    response = await client.put(f"/borrowings/{borrowing['id']}/return", headers=member_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "returned"
    assert response.json()["fine"] == 0
    assert (await client.get(f"/books/{book['_id']}")).json()["available_copies"] == 1




async def test_members_only_see_their_own(client, db, admin, member, make_user, make_book, auth_headers):
    other = await make_user()
    book = await make_book(total_copies=3)
    mine = await lifecycle.create_borrowing(db, member["_id"], book["_id"])
    await lifecycle.create_borrowing(db, other["_id"], book["_id"])

    response = await client.get("/borrowings", headers=auth_headers(member))
    assert [b["id"] for b in response.json()] == [str(mine["_id"])]

    response = await client.get("/borrowings", headers=auth_headers(admin))
    assert len(response.json()) == 2

    response = await client.get(f"/borrowings/{mine['_id']}", headers=auth_headers(other))
    assert response.status_code == 403

    response = await client.get(f"/users/{member['_id']}/borrowings", headers=auth_headers(other))
    assert response.status_code == 403
    response = await client.get(f"/users/{member['_id']}/borrowings", headers=auth_headers(member))
    assert [b["token_number"] for b in response.json()] == [mine["token_number"]]


async def test_member_cannot_request_for_someone_else(client, member, make_user, make_book, auth_headers):
    other = await make_user()
    book = await make_book()
    response = await client.post("/borrowings", headers=auth_headers(member),
                                 json={"book_id": str(book["_id"]), "user_id": str(other["_id"])})
    assert response.status_code == 403
    assert response.json() == {"message": "Cannot request a book for someone else"}


async def test_admin_requests_on_behalf_of_member(client, admin, member, make_book, auth_headers):
    book = await make_book()
    response = await client.post("/borrowings", headers=auth_headers(admin),
                                 json={"book_id": str(book["_id"]), "user_id": str(member["_id"])})
    assert response.status_code == 201
    assert response.json()["user"]["id"] == str(member["_id"])


async def test_return_by_another_member_is_forbidden(client, db, member, make_user, make_book, auth_headers):
    other = await make_user()
    book = await make_book()
    record = await lifecycle.create_borrowing(db, member["_id"], book["_id"])
    await lifecycle.approve_borrowing(db, record["_id"])

    response = await client.put(f"/borrowings/{record['_id']}/return", headers=auth_headers(other))
    assert response.status_code == 403
    assert response.json() == {"message": "Cannot return someone else's book"}
    assert (await db.borrowings.find_one({"_id": record["_id"]}))["status"] == "borrowed"


async def test_unavailable_book_is_conflict(client, db, member, make_user, make_book, auth_headers):
    book = await make_book(total_copies=1)
    record = await lifecycle.create_borrowing(db, (await make_user())["_id"], book["_id"])
    await lifecycle.approve_borrowing(db, record["_id"])

    response = await client.post("/borrowings", json={"book_id": str(book["_id"])}, headers=auth_headers(member))
    assert response.status_code == 409
    assert response.json() == {"message": "Book is not available"}


async def test_overdue_filter_extension_and_fine(client, db, admin, member, make_book, auth_headers):
    book = await make_book()
    # due date lands just under six days ago
    past = utcnow() - timedelta(days=20, hours=-1)
    record = await lifecycle.create_borrowing(db, member["_id"], book["_id"], now=past)
    await lifecycle.approve_borrowing(db, record["_id"], now=past)
    headers = auth_headers(admin)

    response = await client.get("/borrowings", params={"overdue": "true"}, headers=headers)
    [overdue] = response.json()
    assert overdue["is_overdue"] is True
    assert overdue["days_overdue"] == 6

    response = await client.put(f"/borrowings/{record['_id']}/calculate-fine", headers=headers)
    assert response.status_code == 200
    assert response.json()["fine"] == 6.0

    new_due = (utcnow() + timedelta(days=7)).isoformat()
    response = await client.put(f"/borrowings/{record['_id']}", json={"due_date": new_due}, headers=headers)
    assert response.status_code == 200
    assert response.json()["is_overdue"] is False

    response = await client.get("/borrowings", params={"overdue": "true"}, headers=headers)
    assert response.json() == []


async def test_overdue_filter_conflicts_with_other_status(client, admin, auth_headers):
    response = await client.get("/borrowings", params={"status": "pending", "overdue": "true"},
                                headers=auth_headers(admin))
    assert response.status_code == 400
    assert response.json() == {"message": "The overdue filter only applies to borrowed records"}


async def test_reject_and_delete(client, db, admin, member, make_book, auth_headers):
    book = await make_book()
    record = await lifecycle.create_borrowing(db, member["_id"], book["_id"])
    headers = auth_headers(admin)

    response = await client.put(f"/borrowings/{record['_id']}/reject", headers=headers)
    assert response.json()["status"] == "rejected"

    response = await client.get("/borrowings", params={"status": "rejected"}, headers=headers)
    assert len(response.json()) == 1

    response = await client.delete(f"/borrowings/{record['_id']}", headers=headers)
    assert response.json() == {"message": "Borrowing record deleted successfully"}
    response = await client.get(f"/borrowings/{record['_id']}", headers=headers)
    assert response.status_code == 404


# ---------- users ----------
async def test_admin_manages_users(client, admin, auth_headers):
    headers = auth_headers(admin)
    payload = {
        "name": "Mike Johnson",
        "membership_id": "staff001",
        "password": "staff123",
        "phone": "+1-555-0125",
        "membership_type": "staff",
        "role": "admin",
    }
    response = await client.post("/users", json=payload, headers=headers)
    assert response.status_code == 201
    created = response.json()
    assert (created["membership_id"], created["role"]) == ("STAFF001", "admin")

    response = await client.put(f"/users/{created['id']}", json={"is_active": False}, headers=headers)
    assert response.json()["is_active"] is False

    response = await client.get("/users", params={"membership_type": "staff"}, headers=headers)
    assert [u["id"] for u in response.json()] == [created["id"]]

    response = await client.delete(f"/users/{created['id']}", headers=headers)
    assert response.json()["message"] == "User 'Mike Johnson' (STAFF001) has been deleted successfully"

    response = await client.delete(f"/users/{admin['_id']}", headers=headers)
    assert response.status_code == 400


# ---------- uploads ----------
async def test_image_upload(client, admin, tmp_path, auth_headers):
    files = {"image": ("cover.PNG", b"\x89PNG fake image", "image/png")}
    response = await client.post("/upload/image", files=files, headers=auth_headers(admin))
    assert response.status_code == 200
    body = response.json()
    assert body["url"].startswith("/uploads/image-")
    assert body["filename"].endswith(".png")
    assert (tmp_path / body["filename"]).read_bytes() == b"\x89PNG fake image"


async def test_pdf_upload_lands_in_subdirectory(client, admin, tmp_path, auth_headers):
    files = {"pdf": ("book.pdf", b"%PDF-1.4 data", "application/pdf")}
    response = await client.post("/upload/pdf", files=files, headers=auth_headers(admin))
    assert response.status_code == 200
    body = response.json()
    assert body["url"] == f"/uploads/pdfs/{body['filename']}"
    assert (tmp_path / "pdfs" / body["filename"]).exists()


async def test_upload_rejections(client, admin, member, auth_headers):
    headers = auth_headers(admin)

    files = {"image": ("notes.txt", b"hello", "text/plain")}
    response = await client.post("/upload/image", files=files, headers=headers)
    assert response.status_code == 400
    assert response.json() == {"message": "Only image files are allowed"}

    files = {"pdf": ("cover.png", b"png", "image/png")}
    response = await client.post("/upload/pdf", files=files, headers=headers)
    assert response.json() == {"message": "Only PDF files are allowed"}

    files = {"image": ("big.png", b"x" * 2048, "image/png")}
    response = await client.post("/upload/image", files=files, headers=headers)
    assert response.status_code == 400

    files = {"cover": ("cover.png", b"png", "image/png")}
    response = await client.post("/upload/image", files=files, headers=headers)
    assert response.json() == {"message": "No image file uploaded"}

    files = {"image": ("cover.png", b"png", "image/png")}
    response = await client.post("/upload/image", files=files, headers=auth_headers(member))
    assert response.status_code == 403


# ---------- misc ----------
async def test_root_and_config(client):
    assert (await client.get("/")).json() == {"message": "Library Management System API"}
    assert "API_BASE_URL" in (await client.get("/config")).json()


async def test_unknown_route_uses_envelope(client):
    response = await client.get("/nowhere")
    assert response.status_code == 404
    assert response.json() == {"message": "Not Found"}
