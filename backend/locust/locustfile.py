"""
Locust Load Test Suite

Tokens are minted locally with the API's SECRET_KEY for pre-seeded users
(LOAD_USER_IDS, default 1-100). LOAD_ASSET_ID is the bike everyone fights over.
Run the API with GATEWAY_MODE=sandbox.

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Test double booking
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests
"""

import os
import random
from datetime import datetime, timezone, timedelta

from locust import HttpUser, task, between, tag, events

from rentals.core.security import create_access_token

USER_IDS = [
    int(u) for u in os.environ.get("LOAD_USER_IDS", ",".join(str(i) for i in range(1, 101))).split(",")
]
ASSET_ID = int(os.environ.get("LOAD_ASSET_ID", "1"))
HOURLY_RATE = float(os.environ.get("LOAD_HOURLY_RATE", "50"))

# Every ConcurrencyUser asks for this exact window
CONTESTED_START = (datetime.now(timezone.utc) + timedelta(days=7)).replace(
    minute=0, second=0, microsecond=0
)
CONTESTED_END = CONTESTED_START + timedelta(hours=2)


def auth_headers():
    token = create_access_token(data={"sub": str(random.choice(USER_IDS))}, expires_delta=timedelta(hours=2))
    return {"Authorization": f"Bearer {token}"}


def window_payload(start, hours):
    return {
        "asset_id": ASSET_ID,
        "start_time": start.isoformat(),
        "end_time": (start + timedelta(hours=hours)).isoformat(),
        "final_amount": f"{HOURLY_RATE * hours:.2f}",
    }


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"Contested window on asset {ASSET_ID}: {CONTESTED_START.isoformat()} (2h)")
    print("=" * 60)


class ConcurrencyUser(HttpUser):
    """
    TEST 1: Concurrency - N riders -> 1 bike, 1 window

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT COUNT(*) FROM bookings
       WHERE asset_id = X AND status IN ('pending_payment', 'confirmed')
         AND start_time < :end AND end_time > :start;
    Should be exactly 1
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = auth_headers()

    @tag("concurrency")
    @task
    def book_contested_window(self):
        payload = window_payload(CONTESTED_START, 2)
        with self.client.post("/api/v1/bookings/",
            json=payload,
            headers=self.headers,
            name="/api/v1/bookings/ [contested]",
            catch_response=True
        ) as resp:
            if resp.status_code in (201, 409):
                resp.success()  # 409: someone else holds the window
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class EdgeCaseUser(HttpUser):
    """
    TEST 2: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = auth_headers()

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_asset(self):
        payload = window_payload(CONTESTED_START + timedelta(days=1), 1)
        payload["asset_id"] = 999999
        with self.client.post("/api/v1/bookings/", json=payload, headers=self.headers,
                              catch_response=True) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def window_in_the_past(self):
        payload = window_payload(datetime.now(timezone.utc) - timedelta(days=1), 1)
        with self.client.post("/api/v1/bookings/", json=payload, headers=self.headers,
                              catch_response=True) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def wrong_price(self):
        payload = window_payload(CONTESTED_START + timedelta(days=2), 1)
        payload["final_amount"] = "1.00"
        with self.client.post("/api/v1/bookings/", json=payload, headers=self.headers,
                              catch_response=True) as resp:
            self._expect(resp, [409])

    @tag("edge")
    @task
    def forged_signature(self):
        with self.client.post("/api/v1/bookings/verify-payment",
            json={
                "booking_id": 999999,
                "gateway_order_id": "order_fake",
                "gateway_payment_id": "pay_fake",
                "gateway_signature": "0" * 64,
            },
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [400, 404])

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/v1/bookings/",
            data="not json at all",
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [400, 422])

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post("/api/v1/bookings/",
            json=window_payload(CONTESTED_START, 1),
            catch_response=True
        ) as resp:
            self._expect(resp, [401])


class RealisticUser(HttpUser):
    """
    TEST 3: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

      - Mostly reading own bookings and quotes
      - Some bookings on random future windows
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = auth_headers()

    def _random_start(self):
        offset = timedelta(days=random.randint(8, 60), hours=random.randint(0, 23))
        return (datetime.now(timezone.utc) + offset).replace(minute=0, second=0, microsecond=0)

    @task(50)
    def my_bookings(self):
        self.client.get("/api/v1/bookings/?page=1&limit=10", headers=self.headers)

    @task(20)
    def quote(self):
        start = self._random_start()
        self.client.post("/api/v1/bookings/quote", json={
            "asset_id": ASSET_ID,
            "start_time": start.isoformat(),
            "end_time": (start + timedelta(hours=3)).isoformat(),
        }, headers=self.headers)

    @task(10)
    def book(self):
        hours = random.randint(1, 4)
        with self.client.post("/api/v1/bookings/",
            json=window_payload(self._random_start(), hours),
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code in (201, 409):
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")

    @task(1)
    def health_check(self):
        self.client.get("/health")
