"""Fire concurrent create requests for one slot at a running bookings service.

Usage: python scripts/profiling/race_bookings.py <token> <court_id> <start> <end> [attempts]

Exactly one request should come back 201; the rest 409 SLOT_UNAVAILABLE.
The run is profiled with cProfile.
"""
import cProfile
import pstats
import sys
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import requests

BASE_URL = "http://localhost:8003"


def attempt(token: str, court_id: int, start: str, end: str) -> str:
    response = requests.post(
        f"{BASE_URL}/bookings",
        json={"court_id": court_id, "start_time": start, "end_time": end},
        headers={"Authorization": f"Bearer {token}"},
        timeout=30,
    )
    if response.status_code == 201:
        return "created"
    return response.json().get("code", str(response.status_code))


def race(token: str, court_id: int, start: str, end: str, attempts: int) -> Counter:
    with ThreadPoolExecutor(max_workers=attempts) as pool:
        futures = [pool.submit(attempt, token, court_id, start, end) for _ in range(attempts)]
        return Counter(future.result() for future in futures)


def main() -> None:
    if len(sys.argv) < 5:
        print(__doc__)
        sys.exit(1)
    token, court_id, start, end = sys.argv[1], int(sys.argv[2]), sys.argv[3], sys.argv[4]
    attempts = int(sys.argv[5]) if len(sys.argv) > 5 else 10

    profile_path = Path(__file__).with_name("race_profile.prof")
    with cProfile.Profile() as profiler:
        outcomes = race(token, court_id, start, end, attempts)
    profiler.dump_stats(profile_path)

    for outcome, count in sorted(outcomes.items()):
        print(f"{outcome}: {count}")
    if outcomes.get("created", 0) > 1:
        print("Double booking detected!")
        sys.exit(2)
    stats = pstats.Stats(str(profile_path))
    stats.sort_stats(pstats.SortKey.TIME).print_stats(10)


if __name__ == "__main__":
    main()
