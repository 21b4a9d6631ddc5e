"""
Basic Locust load test for the Chess Broadcast API.

Prereq: pip install -e ".[load]"

Run:
  locust -f scripts/load_test_locust.py --host=http://localhost:8000
  CV_LOAD_SLUG=worldcup2025 locust -f scripts/load_test_locust.py --host=http://localhost:8000 --users 50 --spawn-rate 5 --run-time 1m

Viewers poll the live round with If-None-Match like a browser would, so most
polls should come back 304.
"""
import os
import random

from locust import HttpUser, between, task

SLUG = os.environ.get("CV_LOAD_SLUG", "worldcup2025")
ROUND = int(os.environ.get("CV_LOAD_ROUND", "1"))
BOARDS = int(os.environ.get("CV_LOAD_BOARDS", "8"))


class BroadcastViewer(HttpUser):
    wait_time = between(0.5, 1.5)

    def on_start(self):
        r = self.client.get("/health")
        if r.status_code != 200:
            raise Exception("Health check failed")
        self.etag = None

    @task(1)
    def health(self):
        self.client.get("/health")

    @task(6)
    def live_round(self):
        headers = {"If-None-Match": self.etag} if self.etag else {}
        with self.client.get(
            f"/v1/tournaments/{SLUG}/rounds/{ROUND}/live",
            headers=headers,
            name="/v1/tournaments/[slug]/rounds/[round]/live",
            catch_response=True,
        ) as r:
            if r.status_code in (200, 304):
                self.etag = r.headers.get("ETag", self.etag)
                r.success()
            else:
                r.failure(f"unexpected status {r.status_code}")

    @task(3)
    def replay(self):
        board = random.randint(1, BOARDS)
        self.client.get(f"/v1/replay/{SLUG}-board{ROUND}.{board}", name="/v1/replay/[board_id]")
