"""Payload builders shared by the unit tests."""
from datetime import datetime, timezone


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def detail(ts: str, input_tokens=0, output_tokens=0, cached_tokens=0, reasoning_tokens=0, failed=False) -> dict:
    return {
        "timestamp": ts,
        "failed": failed,
        "tokens": {
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "reasoning_tokens": reasoning_tokens,
            "cached_tokens": cached_tokens,
            "total_tokens": input_tokens + output_tokens + reasoning_tokens,
        },
    }


def snapshot(*entries) -> dict:
    """Build a proxy /usage payload from (route, model, detail) triples."""
    apis: dict = {}
    for route, model, d in entries:
        apis.setdefault(route, {"models": {}})["models"].setdefault(model, {"details": []})["details"].append(d)
    return {"usage": {"total_requests": len(entries), "apis": apis}}
