from datetime import datetime, timedelta, timezone

import jwt
import pytest

from app.kithul import products
from app.kithul.modules.field_collection.models import SapCan, TreacleCan
from app.kithul.modules.labeling.models import JaggeryLabelingBatch
from app.kithul.modules.processing.models import TreacleProcessingBatch
from app.kithul.roles import (
    ADMINISTRATOR,
    FIELD_COLLECTION,
    LABELING,
    is_allowed_role,
    is_self_service_role,
    normalize_role,
)
from app.kithul.security import TokenError, decode_token, issue_token, parse_duration


def test_normalize_role_is_case_insensitive():
    assert normalize_role("administrator") == ADMINISTRATOR
    assert normalize_role("  FIELD COLLECTION ") == FIELD_COLLECTION
    assert normalize_role("Labelling") == LABELING
    assert normalize_role("chef") is None
    assert normalize_role(None) is None


def test_self_service_roles():
    assert is_self_service_role("field collection")
    assert not is_self_service_role(ADMINISTRATOR)
    assert is_allowed_role("Processing")
    assert not is_allowed_role("")


def test_table_dispatch():
    assert products.get_table_name("treacle", "cans") == "sap_cans"
    assert products.get_table_name("jaggery", "cans") == "treacle_cans"
    assert products.get_model("treacle", "cans") is SapCan
    assert products.get_model("jaggery", "cans") is TreacleCan
    assert products.get_model("treacle", "processingBatches") is TreacleProcessingBatch
    assert products.get_model("jaggery", "labelingBatches") is JaggeryLabelingBatch


def test_table_dispatch_rejects_unknown():
    with pytest.raises(ValueError):
        products.get_table_name("honey", "cans")
    with pytest.raises(ValueError):
        products.get_table_name("treacle", "barrels")


def test_product_and_can_type_mapping():
    assert products.product_for_can_type("sap") == "treacle"
    assert products.product_for_can_type("treacle") == "jaggery"
    assert products.can_type_for_product("jaggery") == "treacle"
    assert products.normalize_product(" Jaggery ") == "jaggery"
    assert products.normalize_product("sap") is None
    assert products.normalize_can_type("SAP") == "sap"
    assert products.products_or_all(None) == ["treacle", "jaggery"]
    assert products.products_or_all("jaggery") == ["jaggery"]


def test_parse_duration():
    assert parse_duration("7d") == timedelta(days=7)
    assert parse_duration("12h") == timedelta(hours=12)
    assert parse_duration("30m") == timedelta(minutes=30)
    assert parse_duration("90") == timedelta(seconds=90)
    assert parse_duration("soon") == timedelta(days=7)


class _User:
    id = 5
    user_id = "alice"
    role = FIELD_COLLECTION


def test_token_roundtrip_and_tamper():
    token = issue_token(_User(), secret="s1", expires="1h")
    claims = decode_token(token, secret="s1")
    assert claims["id"] == 5
    assert claims["userId"] == "alice"
    assert claims["role"] == FIELD_COLLECTION

    with pytest.raises(TokenError):
        decode_token(token, secret="other")


def test_expired_token_rejected():
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    token = jwt.encode({"id": 5, "userId": "alice", "role": FIELD_COLLECTION, "exp": past}, "s1", algorithm="HS256")
    with pytest.raises(TokenError):
        decode_token(token, secret="s1")
