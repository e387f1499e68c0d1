"""
Credential service tests.

Scenario: saving ads credentials validates blanks, retries the ad-account
directory fetch and writes nothing when the directory stays empty.
"""
import asyncio
from datetime import datetime, timedelta

import pytest

from trackprofit.errors import AuthFailed, InvalidInput, NoDirectory, NotConfigured, NotFound
from trackprofit.models.credential import PROVIDER_ADS, PROVIDER_CARRIER, ProviderCredential
from trackprofit.services.credential_service import CredentialService

from conftest import SHOP, ad_account, seed_ads_credentials, seed_carrier_credentials, tariff_entry


def _run(coro):
    """Run an async coroutine in a sync test."""
    return asyncio.run(coro)


# ────────────────────────────────────────────
# ADS
# ────────────────────────────────────────────


class TestSaveAdsCredentials:

    @pytest.mark.parametrize("token", [None, "", "   "])
    def test_blank_token_rejected(self, db, fake_ads, token):
        with pytest.raises(InvalidInput) as exc:
            _run(CredentialService(db).save(SHOP, PROVIDER_ADS, {"accessToken": token}))
        assert exc.value.field == "accessToken"
        assert fake_ads.calls == []

    def test_saves_with_directory(self, db, fake_ads):
        fake_ads.accounts = [ad_account("123")]

        credential = _run(CredentialService(db).save(SHOP, PROVIDER_ADS, {"accessToken": " abc "}))

        assert credential.secrets == {"access_token": "abc"}
        assert credential.cached_directory[0]["id"] == "act_123"
        assert credential.expires_at > datetime.utcnow() + timedelta(days=59)

    def test_empty_directory_after_retries_writes_nothing(self, db, fake_ads, no_retry_delay):
        fake_ads.accounts = []

        with pytest.raises(NoDirectory):
            _run(CredentialService(db).save(SHOP, PROVIDER_ADS, {"accessToken": "abc"}))

        directory_calls = [c for c in fake_ads.calls if c[0] == "get_ad_accounts"]
        assert len(directory_calls) == 3
        assert db.query(ProviderCredential).count() == 0

    def test_invalid_token_writes_nothing(self, db, fake_ads):
        fake_ads.token_error = AuthFailed("Invalid OAuth access token", provider="ads")

        with pytest.raises(AuthFailed):
            _run(CredentialService(db).save(SHOP, PROVIDER_ADS, {"accessToken": "abc"}))
        assert db.query(ProviderCredential).count() == 0

    def test_expired_token_fails_without_network(self, db, fake_ads):
        seed_ads_credentials(db, expires_in_days=-1)

        with pytest.raises(AuthFailed):
            CredentialService(db).ads_connector(SHOP)
        assert fake_ads.calls == []

    def test_oauth_code_exchange(self, db, fake_ads):
        fake_ads.accounts = [ad_account()]

        credential = _run(CredentialService(db).save_ads_credentials_from_code(
            SHOP, "code-1", "https://app.example.com/callback"
        ))

        assert credential.secrets["access_token"] == "long-lived-token"
        assert fake_ads.calls[0] == ("exchange_code", "code-1", "https://app.example.com/callback")


# ────────────────────────────────────────────
# CARRIER
# ────────────────────────────────────────────


class TestSaveCarrierCredentials:

    @pytest.mark.parametrize("payload,field", [
        ({"token": "", "key": "k"}, "token"),
        ({"token": "t", "key": "  "}, "key"),
        ({}, "token"),
    ])
    def test_blank_fields_rejected(self, db, fake_carrier, payload, field):
        with pytest.raises(InvalidInput) as exc:
            _run(CredentialService(db).save(SHOP, PROVIDER_CARRIER, payload))
        assert exc.value.field == field

    def test_upsert_replaces_and_invalidates_directory(self, db, fake_carrier):
        existing = seed_carrier_credentials(db, token="old", key="old")
        existing.cached_directory = [tariff_entry().to_dict()]
        existing.directory_refreshed_at = datetime.utcnow()
        db.commit()

        _run(CredentialService(db).save(SHOP, PROVIDER_CARRIER, {"token": " new ", "key": "new"}))

        rows = db.query(ProviderCredential).all()
        assert len(rows) == 1
        assert rows[0].secrets == {"token": "new", "key": "new"}
        assert rows[0].cached_directory is None

    def test_rejected_keys_write_nothing(self, db, fake_carrier):
        fake_carrier.error = AuthFailed("bad key", provider="carrier")
        with pytest.raises(AuthFailed):
            _run(CredentialService(db).save(SHOP, PROVIDER_CARRIER, {"token": "t", "key": "k"}))
        assert db.query(ProviderCredential).count() == 0


# ────────────────────────────────────────────
# STATUS / DELETE / CACHES
# ────────────────────────────────────────────


class TestCredentialReads:

    def test_unknown_provider(self, db):
        with pytest.raises(InvalidInput) as exc:
            CredentialService(db).status(SHOP, "paypal")
        assert exc.value.field == "provider"

    def test_status_hides_secrets(self, db):
        seed_carrier_credentials(db)
        status = CredentialService(db).status(SHOP, PROVIDER_CARRIER)
        assert status["isConfigured"] is True
        assert "secrets" not in status
        assert "tok" not in str(status.values())

    def test_status_not_configured(self, db):
        assert CredentialService(db).status(SHOP, PROVIDER_ADS) == {"provider": "ads", "isConfigured": False}

    def test_delete(self, db):
        seed_carrier_credentials(db)
        service = CredentialService(db)
        service.delete(SHOP, PROVIDER_CARRIER)
        assert db.query(ProviderCredential).count() == 0
        with pytest.raises(NotFound):
            service.delete(SHOP, PROVIDER_CARRIER)

    def test_require_not_configured(self, db):
        with pytest.raises(NotConfigured) as exc:
            CredentialService(db).carrier_keys(SHOP)
        assert exc.value.provider == PROVIDER_CARRIER

    def test_tariff_cached_within_ttl(self, db, fake_carrier):
        seed_carrier_credentials(db)
        fake_carrier.tariff = [tariff_entry(16, "Alger")]
        service = CredentialService(db)

        first = _run(service.get_tariff(SHOP))
        fake_carrier.tariff = [tariff_entry(16, "Changed")]
        second = _run(service.get_tariff(SHOP))
        forced = _run(service.get_tariff(SHOP, force_refresh=True))

        assert first[0].name == "Alger"
        assert second[0].name == "Alger"
        assert forced[0].name == "Changed"

    def test_stale_directory_refetched(self, db, fake_ads):
        credential = seed_ads_credentials(db)
        credential.cached_directory = [{"id": "act_old"}]
        credential.directory_refreshed_at = datetime.utcnow() - timedelta(hours=2)
        db.commit()
        fake_ads.accounts = [ad_account("999")]

        accounts = _run(CredentialService(db).get_ad_accounts(SHOP))

        assert accounts[0]["id"] == "act_999"
