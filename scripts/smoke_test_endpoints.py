#!/usr/bin/env python3
"""
API Endpoint Smoke Test

Exercises every retention endpoint of a running deployment, minting bearer
tokens with the configured JWT_SECRET.

Usage:
    python scripts/smoke_test_endpoints.py
    python scripts/smoke_test_endpoints.py --base-url http://your-server:8000
    python scripts/smoke_test_endpoints.py --verbose
"""
import argparse
import sys
import time
from typing import Optional

import httpx
from jose import jwt

from gym_retention.config import settings


class Colors:
    """ANSI color codes for terminal output"""
    GREEN = '\033[92m'
    RED = '\033[91m'
    YELLOW = '\033[93m'
    BLUE = '\033[94m'
    RESET = '\033[0m'


def log_success(msg):
    print(f"{Colors.GREEN}✓{Colors.RESET} {msg}")


def log_error(msg):
    print(f"{Colors.RED}✗{Colors.RESET} {msg}")


def log_info(msg):
    print(f"{Colors.BLUE}→{Colors.RESET} {msg}")


def make_token(role: str, user_id: str = "smoke-test") -> str:
    payload = {"sub": user_id, "role": role, "exp": int(time.time()) + 600}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


class APITester:
    def __init__(self, base_url: str, verbose: bool = False):
        self.base_url = base_url.rstrip('/')
        self.verbose = verbose
        self.results = {"passed": 0, "failed": 0}
        self.client = httpx.Client(base_url=self.base_url, timeout=30)

    def request(self, method: str, endpoint: str, role: Optional[str] = "ADMIN", **kwargs) -> Optional[httpx.Response]:
        """Make HTTP request and return response"""
        headers = {"Authorization": f"Bearer {make_token(role)}"} if role else {}
        try:
            response = self.client.request(method, endpoint, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            log_error(f"{method} {endpoint}: {e}")
            return None
        if self.verbose:
            print(f"    Response [{response.status_code}]: {response.text[:200]}...")
        return response

    def test_endpoint(self, name: str, method: str, endpoint: str, expected_status=200, **kwargs):
        """Test a single endpoint"""
        if self.verbose:
            log_info(f"Testing: {method.upper()} {endpoint}")

        response = self.request(method, endpoint, **kwargs)

        if response is None:
            log_error(f"{name}: Connection failed")
            self.results["failed"] += 1
            return None

        if isinstance(expected_status, (list, tuple)):
            status_ok = response.status_code in expected_status
        else:
            status_ok = response.status_code == expected_status

        if status_ok:
            log_success(f"{name} [{response.status_code}]")
            self.results["passed"] += 1
            return response

        log_error(f"{name} - Expected {expected_status}, got {response.status_code}")
        if self.verbose:
            print(f"    Response: {response.text[:500]}")
        self.results["failed"] += 1
        return None

    def run_tests(self):
        """Run all endpoint tests"""
        api = settings.API_PREFIX + "/retention"

        print("\n" + "=" * 60)
        print("Gym Retention API Endpoint Tests")
        print("=" * 60)
        print(f"Base URL: {self.base_url}")
        print()

        # =================================================================
        # 1. Health & Root
        # =================================================================
        print("\n--- Health & Root ---")
        self.test_endpoint("Root endpoint", "GET", "/", role=None)
        self.test_endpoint("Health check", "GET", "/health", role=None, expected_status=[200, 503])
        self.test_endpoint("Database health", "GET", "/health/db", role=None)

        # =================================================================
        # 2. Authorization
        # =================================================================
        print("\n--- Authorization ---")
        self.test_endpoint("Overview without token", "GET", f"{api}/overview", role=None, expected_status=401)
        self.test_endpoint("Overview as TRAINER", "GET", f"{api}/overview", role="TRAINER", expected_status=403)
        self.test_endpoint("Recalculate as STAFF", "POST", f"{api}/recalculate", role="STAFF", expected_status=403)

        # =================================================================
        # 3. Risk
        # =================================================================
        print("\n--- Retention Risk ---")
        self.test_endpoint("Recalculate", "POST", f"{api}/recalculate", expected_status=201)
        self.test_endpoint("Overview", "GET", f"{api}/overview", role="STAFF")

        members = self.test_endpoint(
            "List HIGH risk members", "GET", f"{api}/members",
            role="STAFF", params={"riskLevel": "HIGH", "limit": 5}
        )
        self.test_endpoint(
            "Invalid risk filter", "GET", f"{api}/members",
            params={"riskLevel": "EXTREME"}, expected_status=400
        )

        member_rows = members.json()["data"]["data"] if members is not None else []
        if member_rows:
            self.test_endpoint("Member detail", "GET", f"{api}/members/{member_rows[0]['memberId']}", role="STAFF")
        self.test_endpoint("Unknown member", "GET", f"{api}/members/does-not-exist", expected_status=404)

        # =================================================================
        # 4. Tasks
        # =================================================================
        print("\n--- Retention Tasks ---")
        tasks = self.test_endpoint(
            "List open tasks", "GET", f"{api}/tasks", role="STAFF", params={"status": "OPEN"}
        )
        task_rows = tasks.json()["data"]["data"] if tasks is not None else []
        if task_rows:
            task_id = task_rows[0]["id"]
            self.test_endpoint(
                "Start task", "PATCH", f"{api}/tasks/{task_id}",
                role="STAFF", json={"status": "IN_PROGRESS", "note": "Smoke test"}
            )
            self.test_endpoint(
                "Reopen task", "PATCH", f"{api}/tasks/bulk",
                role="STAFF", json={"taskIds": [task_id], "status": "OPEN"}
            )
        self.test_endpoint(
            "Bulk update without changes", "PATCH", f"{api}/tasks/bulk",
            json={"taskIds": ["does-not-exist"]}, expected_status=400
        )
        self.test_endpoint(
            "Invalid priority", "PATCH", f"{api}/tasks/does-not-exist",
            json={"priority": 9}, expected_status=400
        )

        # =================================================================
        # Summary
        # =================================================================
        print("\n" + "=" * 60)
        print("TEST SUMMARY")
        print("=" * 60)
        print(f"  {Colors.GREEN}Passed: {self.results['passed']}{Colors.RESET}")
        print(f"  {Colors.RED}Failed: {self.results['failed']}{Colors.RESET}")
        total = self.results['passed'] + self.results['failed']
        if total > 0:
            pct = (self.results['passed'] / total) * 100
            print(f"  Success Rate: {pct:.1f}%")
        print()

        self.client.close()
        return self.results['failed'] == 0


def main():
    parser = argparse.ArgumentParser(description="Smoke test Gym Retention API endpoints")
    parser.add_argument("--base-url", default="http://localhost:8000",
                        help="API base URL (default: http://localhost:8000)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Show detailed output")

    args = parser.parse_args()

    tester = APITester(args.base_url, verbose=args.verbose)
    success = tester.run_tests()

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
