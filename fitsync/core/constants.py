"""Static constants and mappings for fitsync."""

from __future__ import annotations

WEIGHT = "WeightEntry"
BODY_FAT = "BodyFatEntry"
WORKOUT = "WorkoutSession"
SLEEP = "SleepEntry"
MEAL = "MealEntry"

RECORD_KINDS = (WEIGHT, BODY_FAT, WORKOUT, SLEEP, MEAL)

# Kinds whose same-slot content is a set of child items matched by identity.
MULTI_ENTRY_KINDS = {MEAL}

KIND_ALIASES = {
    "weight": WEIGHT,
    "bodyfat": BODY_FAT,
    "body_fat": BODY_FAT,
    "body-fat": BODY_FAT,
    "workout": WORKOUT,
    "sleep": SLEEP,
    "meal": MEAL,
}

SOURCE_CHAT = "chat"
SOURCE_MANUAL = "manual"
SOURCE_APPLE = "import_apple"
SOURCE_HEVY = "import_hevy"

SOURCES = (SOURCE_CHAT, SOURCE_MANUAL, SOURCE_APPLE, SOURCE_HEVY)
AUTHORITATIVE_SOURCES = {SOURCE_CHAT, SOURCE_MANUAL}

IMPORT_SOURCE_BY_NAME = {
    "apple": SOURCE_APPLE,
    "apple-health": SOURCE_APPLE,
    "import_apple": SOURCE_APPLE,
    "hevy": SOURCE_HEVY,
    "import_hevy": SOURCE_HEVY,
}

STATUS_PENDING = "pending"
STATUS_PARSING = "parsing"
STATUS_RESOLVING = "resolving"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

ERROR_CODE_CONTAINER = "container_error"
ERROR_CODE_CANCELLED = "cancelled"

DEFAULT_TOLERANCE_SECONDS = {
    WEIGHT: 120,
    BODY_FAT: 120,
    SLEEP: 60,
    WORKOUT: 0,
    MEAL: 300,
}

# Per-kind field weights. A key counts when the field is present and non-empty;
# "set", "named_exercise" and "item" are counted per occurrence.
DEFAULT_DETAIL_WEIGHTS = {
    WEIGHT: {"value": 2, "device": 1, "notes": 1},
    BODY_FAT: {"value": 2, "device": 1, "notes": 1},
    SLEEP: {"duration_s": 2, "stage": 1, "end": 1, "device": 1, "notes": 1},
    WORKOUT: {
        "set": 1,
        "named_exercise": 1,
        "notes": 1,
        "title": 1,
        "duration_s": 1,
        "distance_m": 1,
        "energy_kcal": 1,
    },
    MEAL: {"item": 1, "item_calories": 1, "name": 1, "notes": 1},
}

GENERIC_EXERCISE_NAMES = {"", "workout", "exercise", "other", "generic", "unknown"}

APPLE_RECORD_TAGS = {
    "HKQuantityTypeIdentifierBodyMass": "weight",
    "HKQuantityTypeIdentifierBodyFatPercentage": "body_fat",
    "HKCategoryTypeIdentifierSleepAnalysis": "sleep",
}
APPLE_WORKOUT_ELEMENT = "Workout"
APPLE_RECORD_ELEMENT = "Record"
APPLE_SKIPPED_MEMBERS = {"export_cda.xml"}
APPLE_METADATA_INDOOR = "HKIndoorWorkout"
APPLE_METADATA_TIME_ZONE = "HKTimeZone"

APPLE_SLEEP_STAGES = {
    "HKCategoryValueSleepAnalysisInBed": "in_bed",
    "HKCategoryValueSleepAnalysisAsleep": "asleep",
    "HKCategoryValueSleepAnalysisAsleepUnspecified": "asleep",
    "HKCategoryValueSleepAnalysisAsleepCore": "core",
    "HKCategoryValueSleepAnalysisAsleepDeep": "deep",
    "HKCategoryValueSleepAnalysisAsleepREM": "rem",
    "HKCategoryValueSleepAnalysisAwake": "awake",
}

KG_PER_LB = 0.45359237
METERS_PER_MILE = 1609.344
KJ_PER_KCAL = 4.184

MASS_TO_KG = {"kg": 1.0, "g": 0.001, "lb": KG_PER_LB, "lbs": KG_PER_LB}
DISTANCE_TO_M = {"m": 1.0, "km": 1000.0, "mi": METERS_PER_MILE, "mile": METERS_PER_MILE}
DURATION_TO_S = {"s": 1.0, "sec": 1.0, "min": 60.0, "h": 3600.0, "hr": 3600.0}
ENERGY_TO_KCAL = {"kcal": 1.0, "cal": 1.0, "kj": 1.0 / KJ_PER_KCAL}

# Workout-log header aliases, first match wins.
HEVY_COLUMN_ALIASES = {
    "session": ("session_id", "start_time"),
    "start": ("start_time", "session_start"),
    "end": ("end_time",),
    "title": ("title", "workout_title"),
    "notes": ("description", "workout_notes"),
    "exercise": ("exercise_title", "exercise", "exercise_name"),
    "exercise_notes": ("exercise_notes",),
    "set_index": ("set_index", "set_order"),
    "set_type": ("set_type",),
    "reps": ("reps",),
    "weight_kg": ("weight_kg",),
    "weight_lbs": ("weight_lbs",),
    "weight": ("weight", "load"),
    "unit": ("unit", "weight_unit"),
    "distance_km": ("distance_km",),
    "duration_seconds": ("duration_seconds",),
}
HEVY_REQUIRED_COLUMNS = ("session", "exercise")

TIMESTAMP_FORMATS = (
    "%Y-%m-%d %H:%M:%S %z",
    "%Y-%m-%d %H:%M:%S",
    "%d %b %Y, %H:%M",
    "%d %b %Y %H:%M",
    "%Y-%m-%d %H:%M",
)
