#!/usr/bin/env python3
"""
Ticket pipeline - E2E smoke tests against running services

Run:
  python scripts/e2e_smoke.py

Optional env:
  API_BASE=http://localhost:3000
  FULFILLMENT_BASE=http://localhost:3000
  ANALYTICS_BASE=http://localhost:3000
  TIMEOUT_SECONDS=45
  POLL_INTERVAL=1
  DEBUG=1

With the three-service layout point the bases at ports 3000, 3001 and 4000.
"""

from __future__ import annotations

import os
import sys
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests


# =========================
# Simple CLI UI (ANSI)
# =========================

class Style:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    GRAY = "\033[90m"

    BOX_LINE = "─"
    BOX_VERT = "│"
    BOX_TL = "┌"
    BOX_TR = "┐"
    BOX_BL = "└"
    BOX_BR = "┘"


def boxed(text: str, color: str):
    line = Style.BOX_LINE * (len(text) + 2)
    print(f"{color}{Style.BOX_TL}{line}{Style.BOX_TR}{Style.RESET}")
    print(f"{color}{Style.BOX_VERT} {Style.BOLD}{text}{Style.RESET}{color} {Style.BOX_VERT}{Style.RESET}")
    print(f"{color}{Style.BOX_BL}{line}{Style.BOX_BR}{Style.RESET}")


def banner():
    print()
    boxed("Ticket Pipeline E2E Smoke Tests", Style.CYAN)
    print()


def section_title(text: str):
    print()
    boxed(text, Style.BLUE)


def info(msg: str):
    print(f"{Style.CYAN}ℹ {msg}{Style.RESET}")


def warn(msg: str):
    print(f"{Style.YELLOW}⚠ {msg}{Style.RESET}")


def ok(msg: str):
    print(f"{Style.GREEN}✔ {msg}{Style.RESET}")


def fail(msg: str):
    print(f"{Style.RED}✘ {msg}{Style.RESET}")


# =========================
# Config
# =========================

API_BASE = os.getenv("API_BASE", "http://localhost:3000")
FULFILLMENT_BASE = os.getenv("FULFILLMENT_BASE", API_BASE)
ANALYTICS_BASE = os.getenv("ANALYTICS_BASE", API_BASE)

TIMEOUT_SECONDS = int(os.getenv("TIMEOUT_SECONDS", "45"))
POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", "1"))
DEBUG = os.getenv("DEBUG", "0").strip().lower() in {"1", "true", "yes"}

VALID_EVENTS = ["movie", "game", "concert", "sports"]


def debug(msg: str):
    if DEBUG:
        print(f"{Style.GRAY}… {msg}{Style.RESET}")


# =========================
# Models
# =========================

@dataclass
class TestResult:
    name: str
    success: bool
    details: str = ""
    scenario: str = ""


# =========================
# HTTP helpers
# =========================

def http(method: str, url: str, **kwargs) -> requests.Response:
    kwargs.setdefault("timeout", 8)
    debug(f"{method} {url} {kwargs.get('json', '')}")
    return requests.request(method, url, **kwargs)


def wait_for_health(base_url: str, service_name: str, timeout: int = 30) -> bool:
    url = f"{base_url}/health"
    start = time.time()
    while time.time() - start < timeout:
        try:
            resp = http("GET", url)
            if resp.status_code == 200:
                ok(f"{service_name} is healthy (broker={resp.json().get('broker')}).")
                return True
        except requests.RequestException as e:
            debug(f"{service_name} not ready: {e}")
        time.sleep(1)
    fail(f"{service_name} did not become healthy in {timeout} seconds.")
    return False


def get_stats() -> Dict[str, Any]:
    resp = http("GET", f"{ANALYTICS_BASE}/stats")
    if resp.status_code != 200:
        raise AssertionError(f"GET /stats: expected HTTP 200, got {resp.status_code}, body={resp.text}")
    return resp.json()


def event_count(stats: Dict[str, Any], event_type: str) -> int:
    for row in stats.get("events", []):
        if row.get("event") == event_type:
            return int(row.get("count", 0))
    return 0


def place_order(event_type: str, customer: str, quantity: int) -> Tuple[int, Dict[str, Any]]:
    payload = {"eventType": event_type, "customer": customer, "quantity": quantity}
    info(f"POST {API_BASE}/order → {payload}")
    resp = http("POST", f"{API_BASE}/order", json=payload)
    try:
        body = resp.json()
    except ValueError:
        body = {"raw": resp.text}
    return resp.status_code, body


# =========================
# Scenarios
# =========================

def scenario_order_is_fulfilled() -> List[TestResult]:
    scenario = "Scenario 1 - Order Reaches Analytics"
    section_title(scenario)
    results: List[TestResult] = []

    try:
        before = event_count(get_stats(), "movie")
    except Exception as e:
        fail(f"Could not read stats: {e}")
        return [TestResult("Read Stats", False, str(e), scenario)]

    status, body = place_order("movie", "e2e-smoke", 2)
    order_id: Optional[int] = body.get("orderId")
    success = status == 200 and isinstance(order_id, int) and body.get("status") == "processing"
    (ok if success else fail)(f"HTTP {status}, body={body}")
    results.append(TestResult("Create Order", success, f"HTTP {status}, body={body}", scenario))
    if not success:
        return results

    section_title(f"Wait For Order {order_id} In Stats")
    info(f"Waiting up to {TIMEOUT_SECONDS}s for movie tickets to go from {before} to {before + 2}")
    start = time.time()
    last = before
    while time.time() - start < TIMEOUT_SECONDS:
        try:
            last = event_count(get_stats(), "movie")
            if last >= before + 2:
                ok(f"Movie tickets now {last}")
                results.append(TestResult("Order Fulfilled", True, f"movie count={last}", scenario))
                return results
        except Exception as e:
            debug(f"Stats poll error: {e}")
        time.sleep(POLL_INTERVAL)

    fail(f"Timeout. Last movie count={last}")
    results.append(TestResult("Order Fulfilled", False, f"Timeout, last movie count={last}", scenario))
    return results


def scenario_invalid_event_type() -> List[TestResult]:
    scenario = "Scenario 2 - Invalid Event Type"
    section_title(scenario)

    status, body = place_order("opera", "e2e-smoke", 1)
    success = status == 400 and body.get("validEvents") == VALID_EVENTS
    (ok if success else fail)(f"HTTP {status}, body={body}")
    return [TestResult("Reject Unknown Event", success, f"HTTP {status}, body={body}", scenario)]


def scenario_lookups() -> List[TestResult]:
    scenario = "Scenario 3 - Lookups"
    section_title(scenario)
    results: List[TestResult] = []

    resp = http("GET", f"{API_BASE}/orders/999999")
    success = resp.status_code == 404
    (ok if success else fail)(f"Unknown order → HTTP {resp.status_code}")
    results.append(TestResult("Unknown Order 404", success, resp.text, scenario))

    resp = http("GET", f"{ANALYTICS_BASE}/events/movie")
    success = resp.status_code == 200 and resp.json().get("event") == "movie"
    (ok if success else fail)(f"Movie stats → HTTP {resp.status_code}")
    results.append(TestResult("Event Stats", success, resp.text, scenario))

    resp = http("GET", f"{FULFILLMENT_BASE}/ping")
    success = resp.status_code == 200 and resp.json().get("status") == "ok"
    (ok if success else warn)(f"Fulfillment ping → {resp.text}")
    results.append(TestResult("Fulfillment Ping", success, resp.text, scenario))

    return results


# =========================
# Summary
# =========================

def print_results(results: List[TestResult]) -> int:
    print(f"\n{Style.BOLD}================ TEST RESULTS ================ {Style.RESET}")
    passed = 0
    for r in results:
        icon = "✅" if r.success else "❌"
        color = Style.GREEN if r.success else Style.RED
        print(f"{color}{icon} {r.scenario}: {r.name}{Style.RESET}")
        if r.details and not r.success:
            print(f"    {Style.DIM}{r.details}{Style.RESET}")
        if r.success:
            passed += 1

    failed = len(results) - passed
    print(f"{Style.BOLD}==============================================={Style.RESET}")
    print(f"Total: {len(results)}  |  Passed: {Style.GREEN}{passed}{Style.RESET}  |  Failed: {Style.RED}{failed}{Style.RESET}")

    if failed:
        print(f"\n{Style.YELLOW}{Style.BOLD}Troubleshooting hints:{Style.RESET}")
        print(f"{Style.YELLOW}- If stats never move: check /health for broker and consumer state.{Style.RESET}")
        print(f"{Style.YELLOW}- Check RabbitMQ UI: http://localhost:15672 (guest/guest).{Style.RESET}")
        print()
    return failed


def main() -> int:
    banner()
    info("Waiting for services to become healthy...")

    for base, name in [(API_BASE, "api"), (FULFILLMENT_BASE, "fulfillment"), (ANALYTICS_BASE, "analytics")]:
        if not wait_for_health(base, name):
            return 1

    results: List[TestResult] = []
    results.extend(scenario_order_is_fulfilled())
    results.extend(scenario_invalid_event_type())
    results.extend(scenario_lookups())

    return 1 if print_results(results) else 0


if __name__ == "__main__":
    sys.exit(main())
