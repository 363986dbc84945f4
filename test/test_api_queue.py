async def test_queue_requires_admin(client):
    assert client.get("/api/queue").status_code == 401


async def test_queue_status_and_items(client, services, admin_headers):
    await services.queue.enqueue("vm-1", source="whatsapp")
    await services.queue.enqueue("vm-2")

    status = client.get("/api/queue", headers=admin_headers).json()
    assert status["queue_size"] == 2
    assert status["total"] == 2

    items = client.get("/api/queue/items", headers=admin_headers).json()
    assert items["count"] == 2
    assert {i["voice_message_id"] for i in items["items"]} == {"vm-1", "vm-2"}


async def test_dead_job_can_be_retried(client, services, admin_headers):
    job_id = await services.queue.enqueue("vm-1", max_attempts=1)
    await services.queue.dequeue()
    await services.queue.fail(job_id, "boom")

    dead = client.get("/api/queue/dead", headers=admin_headers).json()
    assert [i["id"] for i in dead["items"]] == [job_id]
    assert dead["items"][0]["last_error"] == "boom"

    r = client.post(f"/api/queue/items/{job_id}/retry", headers=admin_headers)
    assert r.status_code == 200
    assert services.queue.jobs[job_id]["status"] == "pending"

    again = client.post(f"/api/queue/items/{job_id}/retry", headers=admin_headers)
    assert again.status_code == 400


async def test_job_detail_and_delete(client, services, admin_headers):
    job_id = await services.queue.enqueue("vm-1")

    detail = client.get(f"/api/queue/items/{job_id}", headers=admin_headers).json()
    assert detail["status"] == "pending"
    assert detail["result"] is None

    assert client.delete(f"/api/queue/items/{job_id}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/queue/items/{job_id}", headers=admin_headers).status_code == 404
    assert client.delete(f"/api/queue/items/{job_id}", headers=admin_headers).status_code == 404


async def test_purge_completed(client, services, admin_headers):
    job_id = await services.queue.enqueue("vm-1")
    await services.queue.dequeue()
    await services.queue.complete(job_id, {"total_processed": 1})

    r = client.post("/api/queue/purge?older_than_hours=0", headers=admin_headers)
    assert r.json()["purged_count"] == 1
    assert services.queue.jobs == {}


def test_queue_unavailable_is_503(client, services, admin_headers):
    services.queue = None
    assert client.get("/api/queue", headers=admin_headers).status_code == 503
