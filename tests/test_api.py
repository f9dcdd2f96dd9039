"""
Tests for the HTTP and WebSocket surface.
"""
import pytest
from fastapi.testclient import TestClient

from handoff.main import create_app


@pytest.fixture
def client(test_settings, store, mock_ai):
    """Test client with the lifespan running (core built, loops started)."""
    app = create_app(test_settings, store=store, ai=mock_ai)
    with TestClient(app) as test_client:
        yield test_client


def resolved_ticket(client, owner_id="user-1"):
    """Create, assign and resolve a ticket through the running core."""
    core = client.app.state.core
    ticket, _ = client.portal.call(core.tickets.create_ticket, owner_id, "sess-api", "help please")
    client.portal.call(core.tickets.assign, ticket.id, "agent-1")
    client.portal.call(core.tickets.resolve, ticket.id, "agent-1")
    return ticket


# ===========================
# Health Tests
# ===========================

def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["instance_id"] == "test-instance"
    assert body["services"]["store"] == "healthy"
    assert body["services"]["queue"]["name"] == "chat:test-instance"
    assert body["services"]["agents"]["total_agents"] == 0


def test_liveness(client):
    assert client.get("/health/live").json()["status"] == "alive"


def test_root(client):
    body = client.get("/").json()

    assert body["websockets"] == ["/ws/chat", "/ws/agent"]


# ===========================
# Ticket Route Tests
# ===========================

def test_queue_stats(client):
    core = client.app.state.core
    client.portal.call(core.tickets.create_ticket, "user-1", "sess-1", "question")

    body = client.get("/api/queue/stats").json()

    assert body["waiting_tickets"] == 1
    assert body["total_tickets"] == 1
    assert body["queue_by_priority"]["medium"] == 1


def test_get_ticket(client):
    core = client.app.state.core
    ticket, _ = client.portal.call(core.tickets.create_ticket, "user-1", "sess-1", "question")

    body = client.get(f"/api/tickets/{ticket.id}").json()

    assert body["ticket_id"] == ticket.id
    assert body["status"] == "waiting"
    assert body["queue_position"] == 1
    assert body["assigned_agent_id"] is None
    assert body["feedback"] is None


def test_get_missing_ticket(client):
    assert client.get("/api/tickets/tkt_missing").status_code == 404


def test_submit_feedback(client):
    ticket = resolved_ticket(client)

    response = client.post(f"/api/tickets/{ticket.id}/feedback", json={
        "owner_id": "user-1", "rating": 4, "comment": "  thanks  "
    })

    assert response.status_code == 200
    assert response.json()["rating"] == 4
    assert client.get(f"/api/tickets/{ticket.id}").json()["feedback"]["comment"] == "thanks"

    again = client.post(f"/api/tickets/{ticket.id}/feedback", json={"owner_id": "user-1", "rating": 2})
    assert again.status_code == 409


def test_feedback_errors(client):
    ticket = resolved_ticket(client)

    wrong_owner = client.post(f"/api/tickets/{ticket.id}/feedback", json={"owner_id": "user-2", "rating": 4})
    missing = client.post("/api/tickets/tkt_missing/feedback", json={"owner_id": "user-1", "rating": 4})
    invalid = client.post(f"/api/tickets/{ticket.id}/feedback", json={"owner_id": "user-1", "rating": 9})

    assert wrong_owner.status_code == 403
    assert missing.status_code == 404
    assert invalid.status_code == 422


def test_feedback_on_open_ticket(client):
    core = client.app.state.core
    ticket, _ = client.portal.call(core.tickets.create_ticket, "user-1", "sess-1", "question")

    response = client.post(f"/api/tickets/{ticket.id}/feedback", json={"owner_id": "user-1", "rating": 4})

    assert response.status_code == 409


# ===========================
# Supervisor Route Tests
# ===========================

def register_agents(client, *agent_ids):
    core = client.app.state.core
    for agent_id in agent_ids:
        client.portal.call(core.pool.register, agent_id)


def test_team_overview(client):
    core = client.app.state.core
    register_agents(client, "agent-1")
    client.portal.call(core.tickets.create_ticket, "user-1", "sess-1", "fraud alert")
    resolved_ticket(client)

    body = client.get("/api/supervisor/overview").json()

    assert body["total_agents"] == 1
    assert body["agents_by_status"]["available"] == 1
    assert body["total_tickets"] == 2
    assert body["resolved_today"] == 1
    assert body["resolution_rate"] == 50.0
    assert body["emergency_tickets"] == 1
    assert body["queue"]["waiting_tickets"] == 1


def test_agent_performance(client):
    register_agents(client, "agent-1", "agent-2")
    resolved_ticket(client)

    body = client.get("/api/supervisor/agents/performance", params={"time_range": "today"}).json()

    assert body["time_range"] == "today"
    assert [agent["agent_id"] for agent in body["agents"]] == ["agent-1", "agent-2"]
    assert body["agents"][0]["tickets_resolved"] == 1
    assert body["agents"][1]["tickets_assigned"] == 0
    assert client.get("/api/supervisor/agents/performance", params={"time_range": "year"}).status_code == 422


def test_workload(client):
    register_agents(client, "agent-1", "agent-2")

    agents = client.get("/api/supervisor/agents/workload").json()["agents"]

    assert [agent["agent_id"] for agent in agents] == ["agent-1", "agent-2"]
    assert all(agent["utilization_percent"] == 0.0 for agent in agents)


def test_reassign_ticket(client):
    core = client.app.state.core
    register_agents(client, "agent-1")
    ticket, _ = client.portal.call(core.tickets.create_ticket, "user-1", "sess-1", "question")

    response = client.post(f"/api/supervisor/tickets/{ticket.id}/reassign", json={"agent_id": "agent-1"})

    assert response.status_code == 200
    assert response.json()["status"] == "assigned"
    assert response.json()["assigned_agent_id"] == "agent-1"

    same_agent = client.post(f"/api/supervisor/tickets/{ticket.id}/reassign", json={"agent_id": "agent-1"})
    unknown_agent = client.post(f"/api/supervisor/tickets/{ticket.id}/reassign", json={"agent_id": "ghost"})
    missing = client.post("/api/supervisor/tickets/tkt_missing/reassign", json={"agent_id": "agent-1"})

    assert same_agent.status_code == 409
    assert unknown_agent.status_code == 404
    assert missing.status_code == 404


def test_set_agent_offline_requeues_tickets(client):
    core = client.app.state.core
    register_agents(client, "agent-1")
    ticket, _ = client.portal.call(core.tickets.create_ticket, "user-1", "sess-1", "question")
    client.portal.call(core.engine.reassign, ticket.id, "agent-1")

    response = client.put("/api/supervisor/agents/agent-1/status", json={"status": "offline"})

    assert response.status_code == 200
    assert response.json()["returned_tickets"] == [ticket.id]
    assert client.get(f"/api/tickets/{ticket.id}").json()["status"] == "waiting"

    assert client.put("/api/supervisor/agents/ghost/status", json={"status": "busy"}).status_code == 404
    assert client.put("/api/supervisor/agents/agent-1/status", json={"status": "asleep"}).status_code == 422


# ===========================
# Emergency Route Tests
# ===========================

def test_emergency_tickets(client):
    core = client.app.state.core
    urgent, _ = client.portal.call(core.tickets.create_ticket, "user-1", "sess-1", "fraud alert")
    client.portal.call(core.tickets.create_ticket, "user-2", "sess-2", "question")

    body = client.get("/api/emergency/tickets").json()

    assert body["count"] == 1
    listed = body["tickets"][0]
    assert listed["ticket_id"] == urgent.id
    assert listed["sla_status"]["kind"] == "response"
    assert listed["sla_status"]["status"] == "safe"


def test_ticket_sla(client):
    core = client.app.state.core
    ticket, _ = client.portal.call(core.tickets.create_ticket, "user-1", "sess-1", "fraud alert")
    closed = resolved_ticket(client, owner_id="user-2")

    assert client.get(f"/api/emergency/tickets/{ticket.id}/sla").json()["status"] == "safe"
    assert client.get(f"/api/emergency/tickets/{closed.id}/sla").status_code == 409
    assert client.get("/api/emergency/tickets/tkt_missing/sla").status_code == 404


def test_track_emergency_response(client):
    core = client.app.state.core
    register_agents(client, "agent-1")
    ticket, _ = client.portal.call(core.tickets.create_ticket, "user-1", "sess-1", "fraud alert")
    client.portal.call(core.engine.reassign, ticket.id, "agent-1")

    response = client.post(f"/api/emergency/tickets/{ticket.id}/response", json={"agent_id": "agent-1"})

    assert response.status_code == 200
    body = response.json()
    assert body["tracked"] is True
    assert body["priority"] == "emergency"
    assert body["emergency_response"]["within_sla"] is True

    other = client.post(f"/api/emergency/tickets/{ticket.id}/response", json={"agent_id": "agent-2"})
    missing = client.post("/api/emergency/tickets/tkt_missing/response", json={"agent_id": "agent-1"})
    assert other.status_code == 403
    assert missing.status_code == 404


def test_routine_ticket_response_is_not_tracked(client):
    core = client.app.state.core
    register_agents(client, "agent-1")
    ticket, _ = client.portal.call(core.tickets.create_ticket, "user-1", "sess-1", "question")
    client.portal.call(core.engine.reassign, ticket.id, "agent-1")

    body = client.post(f"/api/emergency/tickets/{ticket.id}/response", json={"agent_id": "agent-1"}).json()

    assert body["tracked"] is False
    assert body["emergency_response"] is None


# ===========================
# WebSocket Tests
# ===========================

def test_chat_socket_ping_and_invalid_json(client):
    with client.websocket_connect("/ws/chat") as ws:
        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == "pong"

        ws.send_text("{not json")
        error = ws.receive_json()
        assert error["type"] == "chatError"
        assert error["payload"]["code"] == "INVALID_PAYLOAD"


def test_chat_socket_conversation(client):
    with client.websocket_connect("/ws/chat") as ws:
        ws.send_json({"type": "connect", "owner_id": "user-1", "session_id": "sess-ws"})
        connected = ws.receive_json()
        assert connected["type"] == "connected"
        assert connected["payload"]["connection_id"].startswith("conn_")

        ws.send_json({"type": "message", "text": "What are your opening hours?"})
        frames = [ws.receive_json() for _ in range(3)]

    assert [frame["type"] for frame in frames] == ["typing", "typing", "chatResponse"]
    assert frames[-1]["payload"]["sender"] == "assistant"


def test_agent_socket_receives_ticket(client):
    with client.websocket_connect("/ws/agent") as agent_ws:
        agent_ws.send_json({"type": "dashboardConnect", "agent_id": "agent-ws"})
        connected = agent_ws.receive_json()
        assert connected["type"] == "connected"
        assert connected["payload"]["agent"]["agent_id"] == "agent-ws"

        with client.websocket_connect("/ws/chat") as chat_ws:
            chat_ws.send_json({"type": "connect", "owner_id": "user-1", "session_id": "sess-ws"})
            chat_ws.receive_json()
            chat_ws.send_json({"type": "requestAgent", "reason": "Need a person"})

            types = []
            while "ticketAssigned" not in types:
                types.append(agent_ws.receive_json()["type"])

    assert types[0] == "ticketCreated"
