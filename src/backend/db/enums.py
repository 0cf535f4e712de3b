"""
Enums for diagnostic CMS models.

Values are stored as plain strings in the database so that rows written by
older clients stay readable.
"""
from enum import Enum


class DeviceStatus(str, Enum):
    ACTIVE = "active"
    MAINTENANCE = "maintenance"
    INACTIVE = "inactive"


class ProblemCategory(str, Enum):
    CRITICAL = "critical"
    MODERATE = "moderate"
    MINOR = "minor"
    OTHER = "other"


class ProblemStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class Difficulty(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class RemoteLayout(str, Enum):
    STANDARD = "standard"
    COMPACT = "compact"
    SMART = "smart"
    CUSTOM = "custom"


class TVInterfaceType(str, Enum):
    """Screen kinds a TV interface screenshot can represent."""

    HOME = "home"
    SETTINGS = "settings"
    CHANNELS = "channels"
    APPS = "apps"
    GUIDE = "guide"
    NO_SIGNAL = "no-signal"
    ERROR = "error"
    CUSTOM = "custom"


class MarkType(str, Enum):
    POINT = "point"
    ZONE = "zone"
    AREA = "area"


class MarkShape(str, Enum):
    CIRCLE = "circle"
    RECTANGLE = "rectangle"
    POLYGON = "polygon"
    ELLIPSE = "ellipse"


class MarkAnimation(str, Enum):
    PULSE = "pulse"
    GLOW = "glow"
    BOUNCE = "bounce"
    SHAKE = "shake"
    FADE = "fade"
    BLINK = "blink"
    NONE = "none"


class MarkPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class StepResult(str, Enum):
    """Outcome of one step inside a diagnostic session."""

    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


class TimeBucket(str, Enum):
    """Grouping granularity for session time analytics."""

    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


def enum_values(enum_cls) -> list:
    """Return the raw string values of an enum class."""
    return [member.value for member in enum_cls]
