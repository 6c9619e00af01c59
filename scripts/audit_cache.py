#!/usr/bin/env python3
import json
import os
import sys
import urllib.request

BASE_URL = os.getenv("FLEETCACHE_BASE_URL", "http://localhost:8000").rstrip("/")


def http_json(path: str):
    req = urllib.request.Request(f"{BASE_URL}{path}")
    with urllib.request.urlopen(req, timeout=10) as resp:
        return json.loads(resp.read().decode("utf-8"))


def main():
    stats = http_json("/api/cache/stats")
    statuses = http_json("/api/hosts/status")
    containers = http_json("/api/containers")

    if not isinstance(statuses, list) or not isinstance(containers, list):
        print("Unexpected response shape.")
        return 2

    containers_by_host: dict[int, int] = {}
    for item in containers:
        host_id = item.get("host_id")
        containers_by_host[host_id] = containers_by_host.get(host_id, 0) + 1

    status_stats = stats.get("server_status_cache", {})
    container_stats = stats.get("container_cache", {})
    print(
        f"\nCache at {BASE_URL}: polling={stats.get('is_polling')} "
        f"ttl_ms={stats.get('cache_duration_ms')}"
    )
    print(
        f"  status entries total={status_stats.get('total')} valid={status_stats.get('valid')} "
        f"expired={status_stats.get('expired')}"
    )
    print(
        f"  container entries total={container_stats.get('total')} valid={container_stats.get('valid')} "
        f"expired={container_stats.get('expired')}\n"
    )

    problems = 0
    for entry in sorted(statuses, key=lambda item: item.get("host_id") or 0):
        host_id = entry.get("host_id")
        name = entry.get("host_name") or "-"
        status = entry.get("status")
        age_s = int((entry.get("cache_age_ms") or 0) / 1000)
        line = (
            f"- {str(host_id):6} | {name:18} | status={str(status):7} | "
            f"age={age_s:4}s | containers={containers_by_host.get(host_id, 0)}"
        )
        if entry.get("error"):
            problems += 1
            line += f" | error={entry['error']}"
        print(line)

    if not statuses:
        print("No valid host status entries cached.")
    print(f"\nHosts with refresh errors: {problems}")
    return 1 if problems else 0


if __name__ == "__main__":
    sys.exit(main())
