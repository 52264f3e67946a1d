import pytest
from fastapi import HTTPException
from sqlalchemy.orm import sessionmaker

import crud
from database import Group, Saving, User, build_engine, init_db
from conftest import join_group, make_group, signup


def _group(client, headers, group_id):
    return client.get(f"/api/groups/{group_id}", headers=headers).json()["group"]


def test_add_expense_raises_goal(client):
    owner = signup(client, "owner@example.com")
    group = make_group(client, owner, goal=100)

    response = client.post(
        "/api/add-expense",
        json={"groupId": group["id"], "amount": 40.5, "title": "Hotel"},
        headers=owner,
    )
    assert response.status_code == 200
    expense = response.json()["expense"]
    assert expense["title"] == "Hotel"
    assert expense["note"] == ""
    assert expense["user_email"] == "owner@example.com"

    assert _group(client, owner, group["id"])["savings_goal"] == 140.5


def test_add_saving_raises_current_total(client):
    owner = signup(client, "owner@example.com")
    group = make_group(client, owner)

    response = client.post(
        "/api/add-saving",
        json={"groupId": group["id"], "amount": 30, "note": "first"},
        headers=owner,
    )
    assert response.status_code == 200
    assert response.json()["saving"]["note"] == "first"
    assert _group(client, owner, group["id"])["savings_curr"] == 30


@pytest.mark.parametrize("path", ["/api/add-expense", "/api/add-saving"])
def test_add_requires_group_and_amount(client, path):
    owner = signup(client, "owner@example.com")
    response = client.post(path, json={"note": "x"}, headers=owner)
    assert response.status_code == 400
    assert response.json() == {"error": "groupId and amount required"}


def test_add_requires_bearer_token(client):
    response = client.post("/api/add-expense", json={"groupId": 1, "amount": 5})
    assert response.status_code == 401


@pytest.mark.parametrize("path", ["/api/add-expense", "/api/add-saving"])
def test_non_member_cannot_add(client, path):
    owner = signup(client, "owner@example.com")
    stranger = signup(client, "stranger@example.com")
    group = make_group(client, owner)

    response = client.post(path, json={"groupId": group["id"], "amount": 5}, headers=stranger)
    assert response.status_code == 403
    assert _group(client, owner, group["id"])["savings_curr"] == 0


def test_remove_expense_subtracts_exact_amount(client):
    owner = signup(client, "owner@example.com")
    group = make_group(client, owner, goal=100)
    expense = client.post(
        "/api/add-expense", json={"groupId": group["id"], "amount": 25}, headers=owner
    ).json()["expense"]

    response = client.post(
        "/api/remove-expense",
        json={"expenseId": expense["id"], "groupId": group["id"]},
        headers=owner,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["deleted"]["id"] == expense["id"]
    assert body["deleted"]["amount"] == 25
    assert _group(client, owner, group["id"])["savings_goal"] == 100


def test_remove_saving_subtracts_exact_amount(client):
    owner = signup(client, "owner@example.com")
    group = make_group(client, owner)
    for amount in (10, 15):
        client.post(
            "/api/add-saving", json={"groupId": group["id"], "amount": amount}, headers=owner
        )
    saving_id = client.get(f"/api/groups/{group['id']}/savings", headers=owner).json()[0]["id"]

    response = client.post(
        "/api/remove-saving", json={"id": saving_id, "groupId": group["id"]}, headers=owner
    )
    assert response.status_code == 200
    assert response.json()["deleted"]["amount"] == 15
    assert _group(client, owner, group["id"])["savings_curr"] == 10


def test_remove_unknown_or_other_groups_entry_is_not_found(client):
    owner = signup(client, "owner@example.com")
    first = make_group(client, owner, name="First")
    second = make_group(client, owner, name="Second")
    saving = client.post(
        "/api/add-saving", json={"groupId": first["id"], "amount": 5}, headers=owner
    ).json()["saving"]

    response = client.post(
        "/api/remove-saving",
        json={"id": saving["id"], "groupId": second["id"]},
        headers=owner,
    )
    assert response.status_code == 404
    assert _group(client, owner, first["id"])["savings_curr"] == 5


def test_non_member_cannot_remove(client):
    owner = signup(client, "owner@example.com")
    stranger = signup(client, "stranger@example.com")
    group = make_group(client, owner)
    expense = client.post(
        "/api/add-expense", json={"groupId": group["id"], "amount": 5}, headers=owner
    ).json()["expense"]

    response = client.post(
        "/api/remove-expense",
        json={"id": expense["id"], "groupId": group["id"]},
        headers=stranger,
    )
    assert response.status_code == 403
    assert len(client.get(f"/api/groups/{group['id']}/expenses", headers=owner).json()) == 1


def test_removed_member_cannot_add(client, sent_emails):
    owner = signup(client, "owner@example.com")
    friend = signup(client, "friend@example.com")
    group = make_group(client, owner)
    join_group(client, owner, friend, "friend@example.com", group["id"])
    client.delete(f"/api/groups/{group['id']}/members/2", headers=owner)

    response = client.post(
        "/api/add-saving", json={"groupId": group["id"], "amount": 5}, headers=friend
    )
    assert response.status_code == 403


def test_expense_listing_is_newest_first_with_author(client, sent_emails):
    owner = signup(client, "owner@example.com")
    friend = signup(client, "friend@example.com")
    group = make_group(client, owner)
    join_group(client, owner, friend, "friend@example.com", group["id"])
    client.post("/api/add-expense", json={"groupId": group["id"], "amount": 1}, headers=owner)
    client.post("/api/add-expense", json={"groupId": group["id"], "amount": 2}, headers=friend)

    rows = client.get(f"/api/groups/{group['id']}/expenses", headers=owner).json()
    assert [(r["amount"], r["user_email"]) for r in rows] == [
        (2, "friend@example.com"),
        (1, "owner@example.com"),
    ]


def test_total_never_goes_negative(db_session):
    user = User(email="a@example.com", password_hash="x")
    db_session.add(user)
    db_session.commit()
    group = crud.create_group(db_session, "G", 0, user)
    saving = crud.add_entry(db_session, Saving, group.id, user, amount=10.0, note="")

    db_session.query(Group).filter(Group.id == group.id).update({"savings_curr": 4.0})
    db_session.commit()
    crud.remove_entry(db_session, Saving, saving.id, group.id)

    db_session.expire_all()
    assert db_session.get(Group, group.id).savings_curr == 0


def _seed_savings(tmp_path, *amounts):
    engine = build_engine(f"sqlite:///{tmp_path / 'race.db'}")
    init_db(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    with Session() as setup:
        user = User(email="a@example.com", password_hash="x")
        setup.add(user)
        setup.commit()
        group = crud.create_group(setup, "G", 0, user)
        ids = [
            crud.add_entry(setup, Saving, group.id, user, amount=amount, note="").id
            for amount in amounts
        ]
        return engine, Session, group.id, ids


def test_interleaved_deletes_do_not_lose_updates(tmp_path):
    engine, Session, group_id, (first_id, second_id) = _seed_savings(tmp_path, 10.0, 5.0)

    session_a = Session()
    session_b = Session()
    try:
        # Both requests have seen the total before either delete lands.
        assert session_a.get(Group, group_id).savings_curr == 15
        assert session_b.get(Group, group_id).savings_curr == 15

        crud.remove_entry(session_b, Saving, first_id, group_id)
        crud.remove_entry(session_a, Saving, second_id, group_id)
    finally:
        session_a.close()
        session_b.close()

    with Session() as check:
        assert check.get(Group, group_id).savings_curr == 0
        assert check.query(Saving).count() == 0
    engine.dispose()


def test_same_row_removed_twice_is_subtracted_once(tmp_path, monkeypatch):
    engine, Session, group_id, (kept_id, raced_id) = _seed_savings(tmp_path, 8.0, 7.0)
    session_a = Session()
    session_b = Session()

    real_delete = crud.delete
    raced = []

    def delete_after_rival(model):
        # The other request removes the same row after this one found it.
        if not raced:
            raced.append(True)
            crud.remove_entry(session_b, Saving, raced_id, group_id)
        return real_delete(model)

    monkeypatch.setattr(crud, "delete", delete_after_rival)
    try:
        with pytest.raises(HTTPException) as excinfo:
            crud.remove_entry(session_a, Saving, raced_id, group_id)
        assert excinfo.value.status_code == 404
    finally:
        session_a.close()
        session_b.close()

    with Session() as check:
        assert check.get(Group, group_id).savings_curr == 8
        assert [s.id for s in check.query(Saving).all()] == [kept_id]
    engine.dispose()


@pytest.mark.parametrize("path", ["/api/add-expense", "/api/add-saving"])
@pytest.mark.parametrize("amount", ["Infinity", "-Infinity", "NaN"])
def test_non_finite_amount_is_rejected(client, path, amount):
    owner = signup(client, "owner@example.com")
    group = make_group(client, owner)

    response = client.post(
        path,
        content=f'{{"groupId": {group["id"]}, "amount": {amount}}}',
        headers={**owner, "Content-Type": "application/json"},
    )
    assert response.status_code == 400
    detail = _group(client, owner, group["id"])
    assert (detail["savings_curr"], detail["savings_goal"]) == (0, 100)


def test_non_finite_savings_goal_is_rejected(client):
    owner = signup(client, "owner@example.com")
    response = client.post(
        "/api/groups",
        content='{"name": "Trip", "savingsGoal": Infinity}',
        headers={**owner, "Content-Type": "application/json"},
    )
    assert response.status_code == 400
    assert client.get("/api/groups", headers=owner).json() == []


@pytest.mark.parametrize("path", ["/api/add-expense", "/api/add-saving"])
@pytest.mark.parametrize("amount", [0, -5])
def test_non_positive_amount_is_rejected(client, path, amount):
    owner = signup(client, "owner@example.com")
    group = make_group(client, owner)

    response = client.post(
        path, json={"groupId": group["id"], "amount": amount}, headers=owner
    )
    assert response.status_code == 400
    assert response.json()["error"].startswith("Invalid amount")
    assert client.get(f"/api/groups/{group['id']}/savings", headers=owner).json() == []
    assert client.get(f"/api/groups/{group['id']}/expenses", headers=owner).json() == []
