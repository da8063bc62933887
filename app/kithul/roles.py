ADMINISTRATOR = "Administrator"
FIELD_COLLECTION = "Field Collection"
PROCESSING = "Processing"
PACKAGING = "Packaging"
LABELING = "Labeling"

ROLE_LIST = [ADMINISTRATOR, FIELD_COLLECTION, PROCESSING, PACKAGING, LABELING]

# Only this role may be picked on the public registration form.
DEFAULT_ROLE = FIELD_COLLECTION
SELF_SERVICE_ROLES = {DEFAULT_ROLE}

_BY_KEY = {r.lower(): r for r in ROLE_LIST}
_SYNONYMS = {"labelling": LABELING}


def normalize_role(value) -> str | None:
    if not isinstance(value, str):
        return None
    key = value.strip().lower()
    if not key:
        return None
    return _BY_KEY.get(key) or _SYNONYMS.get(key)


def is_allowed_role(value) -> bool:
    return normalize_role(value) is not None


def is_self_service_role(value) -> bool:
    return normalize_role(value) in SELF_SERVICE_ROLES
