"""Reference data for claim synthesis: codes by specialty, denial categories, names."""

from decimal import Decimal

from portalsim.schemas.scenario import PatternCategory, PatternTier

# ──────────────────────────────────────────────
# Procedure codes a provider of each specialty bills
# ──────────────────────────────────────────────
FALLBACK_SPECIALTY = "General Practice"

PROCEDURE_CODES_BY_SPECIALTY: dict[str, list[str]] = {
    "Orthopedic Surgery": [
        "27447", "27446", "27445", "29881", "29880", "27130", "27132", "23472",
        "20610", "20611", "64483", "29879", "29876", "29877",
    ],
    "Sports Medicine": [
        "29881", "29880", "29879", "29876", "29877", "20610", "20611", "29871",
        "29826", "29827", "29828",
    ],
    "Physical Therapy": [
        "97110", "97112", "97116", "97140", "97530", "97535", "97542", "97161",
        "97162", "97163", "97164", "97010", "97012", "97014",
    ],
    "Pain Management": [
        "64483", "64484", "64490", "64493", "20610", "20611", "64625", "64624",
        "27096", "77003",
    ],
    "Internal Medicine": [
        "99213", "99214", "99215", "99203", "99204", "99205", "93000", "93010",
        "80053", "80061",
    ],
    "Family Medicine": [
        "99213", "99214", "99215", "99203", "99204", "99205", "99395", "99396",
        "99397", "90471", "90472",
    ],
    "Cardiology": [
        "93000", "93010", "93306", "93307", "93308", "93312", "93351", "93350",
        "93458", "93459",
    ],
    "General Practice": [
        "99213", "99214", "99215", "99203", "99204", "99205", "99385", "99386",
    ],
    "Neurology": [
        "95810", "95811", "95816", "95819", "95957", "95999", "64615",
    ],
    "Rheumatology": [
        "20610", "20611", "99213", "99214", "99215", "80053", "86038", "86039",
    ],
}

PROCEDURE_DESCRIPTIONS = {
    "99213": "Office visit, established patient, low complexity",
    "99214": "Office visit, established patient, moderate complexity",
    "99215": "Office visit, established patient, high complexity",
    "99203": "Office visit, new patient, low complexity",
    "99204": "Office visit, new patient, moderate complexity",
    "99205": "Office visit, new patient, high complexity",
    "36415": "Collection of venous blood by venipuncture",
    "80053": "Comprehensive metabolic panel",
    "93000": "Electrocardiogram, complete",
    "93306": "Echocardiography, complete",
    "93350": "Echocardiography, stress",
    "27447": "Total knee arthroplasty",
    "27446": "Knee arthroplasty, medial compartment",
    "29881": "Knee arthroscopy with meniscectomy",
    "20610": "Joint injection, major joint",
    "20611": "Joint injection, major joint with ultrasound",
    "97110": "Therapeutic exercises",
    "97112": "Neuromuscular reeducation",
    "97140": "Manual therapy techniques",
    "97530": "Therapeutic activities",
    "64483": "Transforaminal epidural injection, lumbar",
    "64484": "Transforaminal epidural injection, additional level",
    "64493": "Facet joint injection, lumbar",
    "70553": "MRI brain with and without contrast",
    "72148": "MRI lumbar spine without contrast",
    "73221": "MRI shoulder without contrast",
}

# ──────────────────────────────────────────────
# ICD-10 groups; the group is chosen by procedure code prefix
# ──────────────────────────────────────────────
DIAGNOSIS_CODES: dict[str, list[str]] = {
    "orthopedic": [
        "M17.11", "M17.12", "M25.561", "M25.562", "M54.5", "M54.41", "M54.42",
        "M79.3", "M75.100", "M75.101", "M75.102",
    ],
    "pain": [
        "M54.5", "M54.41", "M54.42", "G89.29", "M47.816", "M47.817", "M54.16",
        "M54.17", "G89.4",
    ],
    "eval": [
        "Z00.00", "Z00.01", "Z23", "R10.9", "R05", "J06.9", "R50.9",
    ],
    "therapy": [
        "M54.5", "S83.511A", "S83.512A", "M62.81", "M62.830", "M79.3",
    ],
}

COMMON_MODIFIERS = ["25", "59", "50", "LT", "RT", "76", "77", "XE", "XS", "XP", "XU"]

PLACE_OFFICE = "11"


def diagnosis_group_for(procedure_code: str) -> str:
    if procedure_code.startswith("99"):
        return "eval"
    if procedure_code.startswith("97"):
        return "therapy"
    if procedure_code.startswith("64") or procedure_code.startswith("206"):
        return "pain"
    return "orthopedic"


def needs_modifier_25(procedure_code: str, other_codes: list[str]) -> bool:
    """E/M billed alongside a non-E/M, non-therapy procedure on the same claim."""
    if not procedure_code.startswith("99"):
        return False
    return any(not c.startswith("99") and not c.startswith("97") for c in other_codes)


# ──────────────────────────────────────────────
# Denial categories: appeal overturn odds, adjustment code, appeal wording
# ──────────────────────────────────────────────
DEFAULT_OVERTURN_RATE = 0.40
DEFAULT_APPEAL_REASON = "Requesting reconsideration of denial based on supporting documentation"

DENIAL_CATEGORY_PROFILES: dict[PatternCategory, dict] = {
    PatternCategory.MODIFIER_MISSING: {
        "overturn_rate": 0.65,
        "edit_code": "CO-4",
        "appeal_reason": "Modifier was appropriate; submitting corrected claim with supporting documentation",
    },
    PatternCategory.AUTHORIZATION: {
        "overturn_rate": 0.20,
        "edit_code": "CO-197",
        "appeal_reason": "Authorization was obtained; submitting authorization number and approval letter",
    },
    PatternCategory.DOCUMENTATION: {
        "overturn_rate": 0.45,
        "edit_code": "CO-16",
        "appeal_reason": "Submitting additional clinical documentation to support the service",
    },
    PatternCategory.BILLING_ERROR: {
        "overturn_rate": 0.55,
        "edit_code": "CO-97",
        "appeal_reason": "Services were distinct and separately identifiable; requesting unbundling",
    },
    PatternCategory.TIMING: {
        "overturn_rate": 0.25,
        "edit_code": "CO-119",
        "appeal_reason": "Additional services were medically necessary; submitting clinical justification",
    },
    PatternCategory.CODE_MISMATCH: {
        "overturn_rate": 0.40,
        "edit_code": "CO-11",
        "appeal_reason": "Diagnosis supports the procedure; submitting corrected diagnosis linkage",
    },
    PatternCategory.MEDICAL_NECESSITY: {
        "overturn_rate": 0.35,
        "edit_code": "CO-50",
        "appeal_reason": "Medical necessity documented; attaching clinical notes and test results",
    },
    PatternCategory.CODING_SPECIFICITY: {
        "overturn_rate": 0.50,
        "edit_code": "CO-16",
        "appeal_reason": "Submitting corrected claim with the most specific supported diagnosis code",
    },
    PatternCategory.NON_COVERED: {
        "overturn_rate": 0.10,
        "edit_code": "CO-96",
        "appeal_reason": "Requesting coverage review under the member's benefit exception process",
    },
}

# ──────────────────────────────────────────────
# Patterns available to the continuous generator
# ──────────────────────────────────────────────
PREDEFINED_PATTERNS: dict[str, dict] = {
    "MOD25-MISSING": {
        "category": PatternCategory.MODIFIER_MISSING,
        "tier": PatternTier.HIGH,
        "denial_reason": "Modifier 25 required for E/M service on same day as procedure",
        "procedure_codes": ["99213", "99214", "99215", "99203", "99204", "99205"],
        "policy_ids": ["POL-MOD-25"],
    },
    "MOD59-MISSING": {
        "category": PatternCategory.MODIFIER_MISSING,
        "tier": PatternTier.MEDIUM,
        "denial_reason": "Modifier 59 required to indicate distinct procedural service",
        "procedure_codes": ["97110", "97140", "20610"],
        "policy_ids": ["POL-MOD-59"],
    },
    "AUTH-MISSING": {
        "category": PatternCategory.AUTHORIZATION,
        "tier": PatternTier.CRITICAL,
        "denial_reason": "Prior authorization required but not obtained",
        "procedure_codes": ["27447", "27446", "70553", "72148", "64483"],
        "policy_ids": ["POL-AUTH-PROC", "POL-AUTH-MRI"],
    },
    "DOC-INCOMPLETE": {
        "category": PatternCategory.DOCUMENTATION,
        "tier": PatternTier.MEDIUM,
        "denial_reason": "Medical necessity not established in documentation",
        "procedure_codes": [],
        "policy_ids": ["POL-DOC-MEDICAL-NECESSITY"],
    },
    "BUNDLED-SERVICE": {
        "category": PatternCategory.BILLING_ERROR,
        "tier": PatternTier.MEDIUM,
        "denial_reason": "Service is bundled with primary procedure",
        "procedure_codes": ["36415", "96372"],
        "policy_ids": ["POL-BUNDLE-INJECT"],
    },
    "GLOBAL-PERIOD": {
        "category": PatternCategory.BILLING_ERROR,
        "tier": PatternTier.LOW,
        "denial_reason": "Service included in surgical global period",
        "procedure_codes": ["99213", "99214"],
        "policy_ids": ["POL-BUNDLE-SURGERY"],
    },
    "FREQ-EXCEEDED": {
        "category": PatternCategory.TIMING,
        "tier": PatternTier.MEDIUM,
        "denial_reason": "Service frequency exceeds benefit limits",
        "procedure_codes": ["20610", "64483", "64493"],
        "policy_ids": ["POL-FREQ-INJECT"],
    },
    "DX-MISMATCH": {
        "category": PatternCategory.CODE_MISMATCH,
        "tier": PatternTier.LOW,
        "denial_reason": "Diagnosis does not support medical necessity of procedure",
        "procedure_codes": [],
        "policy_ids": ["POL-CODE-DX-PROC"],
    },
}

# ──────────────────────────────────────────────
# Providers for live generation when no scenario is given
# ──────────────────────────────────────────────
DEFAULT_PROVIDERS = [
    {"id": "PRV-001", "name": "Valley Medical Associates", "npi": "1234567890", "specialty": "Internal Medicine", "taxonomy": "207R00000X"},
    {"id": "PRV-002", "name": "Cardiology Partners LLC", "npi": "2345678901", "specialty": "Cardiology", "taxonomy": "207RC0000X"},
    {"id": "PRV-003", "name": "Orthopedic Specialists", "npi": "3456789012", "specialty": "Orthopedic Surgery", "taxonomy": "207X00000X"},
    {"id": "PRV-004", "name": "Family Care Clinic", "npi": "4567890123", "specialty": "Family Medicine", "taxonomy": "207Q00000X"},
    {"id": "PRV-005", "name": "Pain Management Center", "npi": "5678901234", "specialty": "Pain Management", "taxonomy": "208VP0014X"},
    {"id": "PRV-006", "name": "Physical Therapy Plus", "npi": "6789012345", "specialty": "Physical Therapy", "taxonomy": "225100000X"},
]

DEFAULT_TAX_ID = "12-3456789"

DEFAULT_VALUE_RANGES = {
    "low": (Decimal("75.00"), Decimal("250.00")),
    "medium": (Decimal("250.00"), Decimal("1500.00")),
    "high": (Decimal("1500.00"), Decimal("5000.00")),
}

# ──────────────────────────────────────────────
# Patient names
# ──────────────────────────────────────────────
FIRST_NAMES_MALE = [
    "James", "John", "Robert", "Michael", "William", "David", "Richard", "Joseph",
    "Thomas", "Charles", "Christopher", "Daniel", "Matthew", "Anthony", "Mark",
    "Donald", "Steven", "Paul", "Andrew", "Joshua", "Kenneth", "Kevin", "Brian",
    "George", "Timothy", "Ronald", "Edward", "Jason", "Jeffrey", "Ryan",
]

FIRST_NAMES_FEMALE = [
    "Mary", "Patricia", "Jennifer", "Linda", "Barbara", "Elizabeth", "Susan",
    "Jessica", "Sarah", "Karen", "Lisa", "Nancy", "Betty", "Margaret", "Sandra",
    "Ashley", "Kimberly", "Emily", "Donna", "Michelle", "Dorothy", "Carol",
    "Amanda", "Melissa", "Deborah", "Stephanie", "Rebecca", "Sharon", "Laura",
]

LAST_NAMES = [
    "Smith", "Johnson", "Williams", "Brown", "Jones", "Garcia", "Miller", "Davis",
    "Rodriguez", "Martinez", "Hernandez", "Lopez", "Gonzalez", "Wilson", "Anderson",
    "Thomas", "Taylor", "Moore", "Jackson", "Martin", "Lee", "Perez", "Thompson",
    "White", "Harris", "Sanchez", "Clark", "Ramirez", "Lewis", "Robinson",
    "Walker", "Young", "Allen", "King", "Wright", "Scott", "Torres", "Nguyen",
    "Hill", "Flores", "Green", "Adams", "Nelson", "Baker", "Hall", "Rivera",
]

MEMBER_ID_PREFIXES = ["MBR", "HMO", "PPO", "MCD"]

# (age_low, age_high, cumulative probability)
AGE_BANDS = [
    (18, 30, 0.10),
    (30, 45, 0.25),
    (45, 55, 0.45),
    (55, 65, 0.70),
    (65, 85, 1.00),
]
