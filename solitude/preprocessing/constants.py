"""
Shared constants for data loading and feature derivation.
"""

from pathlib import Path

# Directory paths
BASE_DIR = Path(__file__).resolve().parents[2]
DATA_DIR = BASE_DIR / "data"
RAW_DIR = DATA_DIR / "raw"
RESULTS_DIR = BASE_DIR / "results"
FIT_CACHE_DIR = RESULTS_DIR / "fit_cache"

DIARY_FILENAME = "diary.csv"
BASELINE_FILENAME = "baseline.csv"

DEFAULT_DIARY_PATH = RAW_DIR / DIARY_FILENAME
DEFAULT_BASELINE_PATH = RAW_DIR / BASELINE_FILENAME

SUPPORTED_SUFFIXES = {".csv", ".tsv", ".txt", ".parquet"}

# Keys
PARTICIPANT_COL = "participant_id"
DAY_COL = "day"
PARTICIPANT_ID_ALIASES = {"participant_id", "id", "pid", "subject", "subject_id", "participantid"}

# Diary columns: canonical name -> accepted raw spellings (matched case-insensitively)
DIARY_COLUMN_ALIASES = {
    PARTICIPANT_COL: PARTICIPANT_ID_ALIASES,
    DAY_COL: {"day", "diary_day", "dayindex", "day_index"},
    "satisfaction": {"satisfaction", "lifesatisfaction", "swl"},
    "lonely": {"lonely", "loneliness"},
    "alonely": {"alonely", "aloneliness"},
    "stress": {"stress"},
    "choice": {"choice", "choiceful", "solitude_choice"},
    "autonomy": {"autonomy"},
    "ltime": {"ltime", "alonetime", "solitude_time", "prop_alone"},
}

# Baseline columns
BASELINE_COLUMN_ALIASES = {
    PARTICIPANT_COL: PARTICIPANT_ID_ALIASES,
    "sdm": {"sdm", "motivation", "self_determined_motivation", "sdmotivation"},
    "age": {"age"},
    "gender": {"gender", "sex"},
}

DIARY_NUMERIC_COLS = [
    DAY_COL, "satisfaction", "lonely", "alonely", "stress", "choice", "autonomy", "ltime",
]
BASELINE_NUMERIC_COLS = ["sdm", "age"]

# Outcomes: display name -> canonical column
OUTCOMES = {
    "Satisfaction": "satisfaction",
    "Lonely": "lonely",
    "Alonely": "alonely",
    "Stress": "stress",
    "Autonomy": "autonomy",
    "LTime": "ltime",
}
# LTime is modelled as an outcome in the unconditional (ICC) model only
CONDITIONAL_OUTCOMES = ["satisfaction", "lonely", "alonely", "stress", "autonomy"]

# Feature derivation
TIME_COL = "ltime"
CHOICE_COL = "choice"
MOTIVATION_COL = "sdm"
LAGGED_VARIABLES = CONDITIONAL_OUTCOMES + [TIME_COL]
QUADRATIC_VARIABLES = [TIME_COL, f"{TIME_COL}_lag"]

LAG_SUFFIX = "_lag"
GMC_SUFFIX = "_gmc"   # grand-mean centred
PM_SUFFIX = "_pm"     # person mean (between-person)
PMC_SUFFIX = "_pmc"   # person-mean centred (within-person)
QUAD_SUFFIX = "2"

# Gender normalization tokens
MALE_TOKENS_EXACT = {"m", "male", "man", "men", "boy"}
FEMALE_TOKENS_EXACT = {"f", "female", "woman", "women", "girl"}
