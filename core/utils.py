"""Utility functions for the drill gauntlet."""

import json
import math
import re


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves towards positive infinity."""
    return int(math.floor(value + 0.5))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def extract_json_object(text: str) -> dict:
    """Pull the outermost JSON object out of a model response.

    Models sometimes wrap JSON in markdown fences or add a sentence before it.
    Raises ValueError when no object can be decoded.
    """
    cleaned = re.sub(r'```(?:json)?', '', text or '').strip()
    start = cleaned.find('{')
    end = cleaned.rfind('}')
    if start == -1 or end <= start:
        raise ValueError("no JSON object found in response")
    data = json.loads(cleaned[start:end + 1])
    if not isinstance(data, dict):
        raise ValueError("response is not a JSON object")
    return data
