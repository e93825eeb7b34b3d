"""Caller identity passed explicitly through request handling."""
from dataclasses import dataclass


@dataclass(frozen=True)
class CallerContext:
    user_id: str
