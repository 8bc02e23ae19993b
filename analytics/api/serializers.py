"""
Analytics API Serializers

Handles query-parameter validation for analytics endpoints. Filter
values never fail validation: unknown values fall back to defaults.
"""

from rest_framework import serializers

from analytics.bucketing import TrendRange
from analytics.periods import TimeFilter


# Constants
TIME_FILTER_CHOICES = ["24h", "7d", "1m", "30d", "1y", "total"]
RANGE_CHOICES = [r.value for r in TrendRange]
PAGE_MIN, PAGE_MAX, PAGE_DEFAULT = 1, 1000, 1
LIMIT_MIN, LIMIT_MAX, LIMIT_DEFAULT = 1, 100, 10
SEARCH_MAX_LENGTH = 200


def _clamp_int(value, minimum: int, maximum: int, default: int) -> int:
    """Parse an int; below range or unparseable -> default, above -> maximum."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    if parsed < minimum:
        return default
    return min(parsed, maximum)


def parse_positive_id(raw):
    """Return a positive int id, or None when `raw` is not one."""
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return None
    return value if value >= 1 else None


class TimeFilterSerializer(serializers.Serializer):
    timeFilter = serializers.CharField(
        required=False,
        allow_blank=True,
        help_text=f"One of: {', '.join(TIME_FILTER_CHOICES)} (default: total)",
    )

    def validate(self, data):
        data["time_filter"] = TimeFilter.from_string(data.get("timeFilter"))
        return data


class UserBlogsQuerySerializer(TimeFilterSerializer):
    page = serializers.CharField(required=False, allow_blank=True)
    limit = serializers.CharField(required=False, allow_blank=True)
    search = serializers.CharField(
        required=False,
        allow_blank=True,
        max_length=SEARCH_MAX_LENGTH,
        help_text="Case-insensitive title search",
    )

    def validate(self, data):
        data = super().validate(data)
        data["page"] = _clamp_int(data.get("page"), PAGE_MIN, PAGE_MAX, PAGE_DEFAULT)
        data["limit"] = _clamp_int(data.get("limit"), LIMIT_MIN, LIMIT_MAX, LIMIT_DEFAULT)
        data["search"] = (data.get("search") or "").strip()
        return data


class TrendRangeSerializer(serializers.Serializer):
    range = serializers.CharField(
        required=False,
        allow_blank=True,
        help_text=f"One of: {', '.join(RANGE_CHOICES)} (default: week)",
    )

    def validate(self, data):
        data["trend_range"] = TrendRange.from_string(data.get("range"))
        return data


class TrackViewResponseSerializer(serializers.Serializer):
    success = serializers.BooleanField()
    message = serializers.CharField()
