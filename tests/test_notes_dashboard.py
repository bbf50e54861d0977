from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from studio_sync.api.dashboard import compute_summary
from studio_sync.models.order import Order
from studio_sync.services.notifier import NOTE_CHANGED, notifier


def test_notes_created_for_everyone(client):
    notes = client.get("/notes").json()["notes"]
    assert [n["person"] for n in notes] == ["amandine", "charlie", "loic", "melina"]
    assert all(n["content"] == "" and n["todos"] == [] for n in notes)


def test_note_update_emits(client):
    received = []
    sub = notifier.subscribe(NOTE_CHANGED, received.append)
    try:
        resp = client.patch("/notes/loic", json={
            "content": "commander encre",
            "todos": [{"id": "t1", "text": "appeler fournisseur"}],
        })
    finally:
        sub.unsubscribe()
    assert resp.status_code == 200
    note = resp.json()["note"]
    assert note["content"] == "commander encre"
    assert note["todos"] == [{"id": "t1", "text": "appeler fournisseur", "done": False}]
    assert received == [note]

    loic = [n for n in client.get("/notes").json()["notes"] if n["person"] == "loic"][0]
    assert loic["content"] == "commander encre"


def test_note_unknown_person(client):
    assert client.patch("/notes/bob", json={"content": "x"}).status_code == 422


def _order(status="COMMANDE_A_TRAITER", payment="PENDING", total=10.0, created=None):
    return Order(
        external_reference="R",
        customer_name="C",
        status=status,
        payment_state=payment,
        total_amount=total,
        created_at=created or datetime(2025, 3, 1, 9, tzinfo=timezone.utc),
    )


def test_compute_summary():
    today = datetime(2025, 3, 1, 18, tzinfo=timezone.utc)
    orders = [
        _order(total=10.5),
        _order(status="CLIENT_PREVENU", payment="PAID", total=20),
        _order(status="ARCHIVES", total=5, created=today - timedelta(days=3)),
    ]
    summary = compute_summary(orders, today=today)
    assert summary == {
        "total_orders": 3,
        "revenue": 35.5,
        "pending": 1,
        "shipped": 1,
        "paid": 1,
        "today_orders": 2,
        "today_revenue": 30.5,
    }


def test_stats_database_failure(client):
    with patch("studio_sync.api.dashboard.get_session") as get_session:
        get_session.return_value.exec.side_effect = OperationalError("SELECT", {}, Exception("db down"))
        resp = client.get("/dashboard/stats")
    assert resp.status_code == 500
    assert resp.json() == {"detail": "Failed to compute dashboard stats"}
    get_session.return_value.close.assert_called_once()


def test_summary_and_stats_endpoints(client, native_payload):
    client.post("/orders", json=native_payload(paiement={"statut": "OUI"}))
    summary = client.get("/dashboard/summary").json()
    assert summary["total_orders"] == 1
    assert summary["paid"] == 1
    stats = client.get("/dashboard/stats").json()
    assert stats["by_status"]["COMMANDE_A_TRAITER"] == 1
    assert stats["by_payment"] == {"PAID": 1}
