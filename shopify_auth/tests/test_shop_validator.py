"""
Tests for shop domain and host validation.

Tests cover:
- Direct shop domains against the default and custom allow-lists
- Admin console URL normalization
- Rejection of anything outside the shop domain pattern
- Base64 host validation
"""

import base64
import re

import pytest

from shopify_auth.errors import InvalidShopDomainError, ValidationError
from shopify_auth.services.shop_validator import ShopValidator, validate_host


def _b64(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


class TestValidateShopUrl:
    """Tests for ShopValidator.validate_shop_url."""

    @pytest.fixture
    def validator(self):
        return ShopValidator()

    @pytest.mark.parametrize("shop", [
        "my-store.myshopify.com",
        "my_store.myshopify.com",
        "Store1.myshopify.com",
        "my-store.myshopify.com/",
        "store.shopify.com",
        "store.myshopify.io",
    ])
    def test_valid_domains_returned_unchanged(self, validator, shop):
        assert validator.validate_shop_url(shop) == shop

    @pytest.mark.parametrize("shop", [
        None,
        "",
        "https://my-store.myshopify.com",
        "-store.myshopify.com",
        "my store.myshopify.com",
        "my-store.myshopify.com.evil.com",
        "my-store.evil.com",
        "my.store.myshopify.com",
        "my-store.myshopify.com//",
        "myshopify.com",
        "my-store.myshopify.com?x=1",
        "shop.myshopify.com\n",
        "shop.myshopify.com\r\n",
    ])
    def test_invalid_domains_return_none(self, validator, shop):
        assert validator.validate_shop_url(shop) is None

    def test_matches_domain_pattern_exactly(self, validator):
        """A value is accepted unchanged iff it matches the shop domain pattern."""
        pattern = re.compile(r"[A-Za-z0-9][A-Za-z0-9\-_]*\.(myshopify\.com|shopify\.com|myshopify\.io)/?")
        candidates = [
            "a.myshopify.com", "a-.shopify.com", "_a.myshopify.io", "a..myshopify.com",
            "A_B-c.myshopify.io/", "abc.myshopify.comm", "abc.MYSHOPIFY.COM", "9.shopify.com",
            "a.myshopify.com\n", "a.myshopify.com/\n",
        ]
        for candidate in candidates:
            expected = candidate if pattern.fullmatch(candidate) else None
            assert validator.validate_shop_url(candidate) == expected, candidate

    def test_custom_allowed_domains(self):
        validator = ShopValidator(["example.com"])
        assert validator.validate_shop_url("x.example.com") == "x.example.com"
        assert validator.validate_shop_url("x.myshopify.com") is None

    def test_suffix_is_escaped(self):
        """A dot in an allowed suffix must not match arbitrary characters."""
        validator = ShopValidator(["example.com"])
        assert validator.validate_shop_url("x.exampleXcom") is None


class TestAdminUrlNormalization:
    """Tests for admin console URL mapping."""

    def test_unified_admin_maps_to_myshopify(self):
        validator = ShopValidator()
        assert validator.validate_shop_url("admin.shopify.com/store/my-store") == "my-store.myshopify.com"

    def test_other_suffix_maps_to_same_suffix(self):
        validator = ShopValidator(["example.com"])
        assert validator.admin_url_to_legacy_url("admin.example.com/store/shop1") == "shop1.example.com"
        assert validator.validate_shop_url("admin.example.com/store/shop1") == "shop1.example.com"

    def test_admin_url_for_disallowed_domain_rejected(self):
        validator = ShopValidator()
        assert validator.validate_shop_url("admin.evil.com/store/my-store") is None

    def test_admin_url_with_invalid_store_name_rejected(self):
        validator = ShopValidator()
        assert validator.validate_shop_url("admin.shopify.com/store/-bad") is None
        assert validator.validate_shop_url("admin.shopify.com/store/") is None

    def test_admin_url_with_trailing_newline_rejected(self):
        validator = ShopValidator()
        assert validator.admin_url_to_legacy_url("admin.shopify.com/store/my-store\n") is None
        assert validator.validate_shop_url("admin.shopify.com/store/my-store\n") is None


class TestRequireValidShop:

    def test_returns_shop(self):
        assert ShopValidator().require_valid_shop("a.myshopify.com") == "a.myshopify.com"

    def test_trailing_newline_raises(self):
        with pytest.raises(InvalidShopDomainError):
            ShopValidator().require_valid_shop("a.myshopify.com\n")

    def test_raises_validation_error(self):
        with pytest.raises(InvalidShopDomainError) as exc_info:
            ShopValidator().require_valid_shop("evil.com")

        assert isinstance(exc_info.value, ValidationError)
        assert exc_info.value.shop == "evil.com"


class TestValidateHost:
    """Tests for the base64 `host` parameter."""

    @pytest.mark.parametrize("decoded", [
        "admin.shopify.com/store/my-store",
        "my-store.myshopify.com/admin",
        "admin.myshopify.io/store/x",
        "admin.web.abc.user.spin.dev/store/x",
    ])
    def test_valid_hosts(self, decoded):
        host = _b64(decoded)
        assert validate_host(host) == host

    def test_unpadded_host_accepted(self):
        host = _b64("admin.shopify.com/store/my-store").rstrip("=")
        assert validate_host(host) == host

    @pytest.mark.parametrize("host", [
        None,
        "",
        "not base64!",
        _b64("evil.com/admin"),
        _b64("shopify.com.evil.com"),
        _b64("admin.shopify.com/store/my-store") + "\n",
    ])
    def test_invalid_hosts(self, host):
        assert validate_host(host) is None

    def test_raise_on_invalid(self):
        with pytest.raises(ValidationError, match="invalid host"):
            validate_host(_b64("evil.com"), raise_on_invalid=True)
