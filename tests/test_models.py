"""
Configuration model invariants, stamping and legacy document upgrades.
"""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from shopconfig.core.models import (
    FEATURE_IDS,
    ApiCredentials,
    Configuration,
    ProductConfiguration,
    backfill_legacy,
    default_config,
    is_valid_sku,
    parse_document,
    resolve_section,
    revalidate,
    section_limit,
    upgrade_legacy_document,
)


class TestDefaults:
    def test_default_config_enables_every_feature(self):
        config = default_config()
        assert set(config.upselling) == set(FEATURE_IDS)
        assert all(config.upselling.values())

    def test_default_config_has_no_references(self):
        product = default_config().product_configuration
        assert product.primary_reference is None
        assert product.recommendations == []
        assert product.all_references() == []

    def test_default_credentials_are_unconfigured(self):
        credentials = default_config().api_credentials
        assert credentials.is_configured is False
        assert credentials.api_key is None
        assert credentials.has_credentials() is False

    def test_document_uses_camel_case(self):
        document = default_config().to_document()
        assert set(document) == {"upselling", "productConfiguration", "apiCredentials", "lastUpdated"}
        assert "primaryReference" in document["productConfiguration"]
        assert "isConfigured" in document["apiCredentials"]


class TestSkuRules:
    @pytest.mark.parametrize("sku", ["ABC123", "abcdef", "A1B2C3D4E5F6G7H8I9J0"])
    def test_valid_skus(self, sku):
        assert is_valid_sku(sku)

    @pytest.mark.parametrize("sku", ["ABC12", "A" * 21, "ABC-123", "", None, 123456])
    def test_invalid_skus(self, sku):
        assert not is_valid_sku(sku)

    def test_list_over_limit_is_rejected(self):
        with pytest.raises(ValidationError):
            ProductConfiguration(recommendations=["AAA111", "BBB222", "CCC333", "DDD444"])

    def test_duplicates_are_rejected(self):
        with pytest.raises(ValidationError, match="duplicate"):
            ProductConfiguration(bundle_references=["AAA111", "AAA111"])

    def test_bad_primary_reference_is_rejected(self):
        with pytest.raises(ValidationError):
            ProductConfiguration(primary_reference="bad sku")

    def test_all_references_deduplicates_primary_first(self):
        product = ProductConfiguration(
            primary_reference="PRIME01",
            recommendations=["AAA111", "PRIME01"],
            cross_sell_references=["AAA111", "BBB222"],
        )
        assert product.all_references() == ["PRIME01", "AAA111", "BBB222"]

    def test_sections_resolve_by_wire_or_field_name(self):
        assert resolve_section("postPurchaseOffers") == "post_purchase_offers"
        assert resolve_section("post_purchase_offers") == "post_purchase_offers"
        assert section_limit("crossSellReferences") == 6
        with pytest.raises(ValueError):
            resolve_section("wishlist")


class TestCredentials:
    def test_configured_requires_validation_stamp(self):
        with pytest.raises(ValidationError, match="isConfigured"):
            ApiCredentials(api_key="key", account_id=1, is_configured=True)

    def test_configured_with_everything_present(self):
        credentials = ApiCredentials(api_key="key", account_id=1, is_configured=True,
                                     last_validated=datetime.now(timezone.utc))
        assert credentials.is_configured

    def test_base_url_is_normalized(self):
        assert ApiCredentials(base_url="https://api.example.com/").base_url == "https://api.example.com"

    def test_base_url_must_be_http(self):
        with pytest.raises(ValidationError):
            ApiCredentials(base_url="ftp://api.example.com")


class TestConfigurationValidation:
    def test_feature_values_must_be_booleans(self):
        document = default_config().to_document()
        document["upselling"]["youMightAlsoLike"] = "yes"
        with pytest.raises(ValidationError):
            revalidate(document)

    def test_unknown_feature_is_rejected(self):
        document = default_config().to_document()
        document["upselling"]["spinToWin"] = True
        with pytest.raises(ValidationError, match="unknown feature"):
            revalidate(document)

    def test_missing_feature_is_rejected(self):
        document = default_config().to_document()
        del document["upselling"]["freeShippingProgressBar"]
        with pytest.raises(ValidationError, match="missing feature"):
            revalidate(document)

    def test_naive_timestamp_becomes_utc(self):
        document = default_config().to_document()
        document["lastUpdated"] = "2024-01-01T12:00:00"
        assert revalidate(document).last_updated.tzinfo is not None


class TestStamping:
    def test_stamp_moves_forward(self):
        config = default_config()
        assert config.stamped().last_updated > config.last_updated

    def test_stamp_passes_a_future_previous(self):
        future = datetime.now(timezone.utc) + timedelta(hours=1)
        stamped = default_config().stamped(future)
        assert stamped.last_updated == future + timedelta(microseconds=1)

    def test_stamp_does_not_mutate_original(self):
        config = default_config()
        original = config.last_updated
        config.stamped()
        assert config.last_updated == original

    def test_same_content_ignores_timestamp(self):
        config = default_config()
        assert config.same_content(config.stamped())


class TestParseDocument:
    def test_valid_document(self):
        document = default_config().to_document()
        assert parse_document(document) is not None

    def test_json_string(self):
        assert parse_document(default_config().to_json()) is not None

    @pytest.mark.parametrize("data", [None, [], "not json", {}, {"upselling": {}}])
    def test_structurally_invalid_returns_none(self, data):
        assert parse_document(data) is None

    def test_invalid_field_returns_none(self):
        document = default_config().to_document()
        document["productConfiguration"]["recommendations"] = ["bad"]
        assert parse_document(document) is None

    def test_missing_top_level_key_returns_none(self):
        document = default_config().to_document()
        del document["apiCredentials"]
        assert parse_document(document) is None


class TestLegacyUpgrade:
    def test_upgrade_keeps_existing_flags(self):
        legacy = {"upselling": {"youMightAlsoLike": False}}
        upgraded = upgrade_legacy_document(legacy)
        assert upgraded["upselling"]["youMightAlsoLike"] is False
        assert upgraded["upselling"]["frequentlyBoughtTogether"] is True
        assert "productConfiguration" in upgraded
        assert "apiCredentials" in upgraded

    def test_backfill_skips_complete_documents(self):
        assert backfill_legacy(default_config().to_document()) is None

    def test_backfill_produces_valid_configuration(self):
        config = backfill_legacy({"upselling": {"postCartUpsellOffers": False}})
        assert isinstance(config, Configuration)
        assert config.upselling["postCartUpsellOffers"] is False
