import pytest
from pydantic import ValidationError

from spo_control_plane.config import (
    CertificateAuth,
    ClientSecretAuth,
    ControlPlaneConfig,
    ManagedIdentityAuth,
    SecretRef,
    TenantConfig,
    is_valid_site_url,
)

from .conftest import TENANT_ID


def test_load_yaml(config_file):
    config = ControlPlaneConfig.load(config_file)

    tenant = config.tenants[0]
    assert tenant.tenant_id == TENANT_ID
    assert isinstance(tenant.auth, ClientSecretAuth)
    assert tenant.application_name == "spo-control-plane"
    assert tenant.http_timeout == 30.0


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        ControlPlaneConfig.load(tmp_path / "nope.yaml")


def test_default_scope_targets_admin_site_origin():
    tenant = TenantConfig(
        tenant_id="t",
        admin_site_url="https://contoso-admin.sharepoint.com/",
        auth={"type": "managed_identity"},
    )

    assert tenant.admin_site_url == "https://contoso-admin.sharepoint.com"
    assert tenant.resource == "https://contoso-admin.sharepoint.com"
    assert tenant.token_scopes == ["https://contoso-admin.sharepoint.com/.default"]
    assert isinstance(tenant.auth, ManagedIdentityAuth)


def test_explicit_scopes_win():
    tenant = TenantConfig(
        tenant_id="t",
        admin_site_url="https://contoso-admin.sharepoint.com",
        auth={"type": "managed_identity"},
        scopes=["https://contoso.sharepoint.com/.default"],
    )

    assert tenant.token_scopes == ["https://contoso.sharepoint.com/.default"]


def test_invalid_admin_site_url_is_rejected():
    with pytest.raises(ValidationError):
        TenantConfig(tenant_id="t", admin_site_url="contoso-admin", auth={"type": "managed_identity"})


def test_unknown_keys_are_rejected():
    with pytest.raises(ValidationError):
        ControlPlaneConfig(tenants=[], extra=True)


def test_certificate_thumbprint_is_normalized(tmp_path):
    auth = CertificateAuth(
        type="certificate",
        client_id="app",
        certificate_path=tmp_path / "cert.pem",
        thumbprint="ab:cd ef",
    )

    assert auth.thumbprint == "ABCDEF"


def test_secret_ref_resolves_environment(monkeypatch):
    monkeypatch.setenv("SPO_SECRET", "from-env")

    assert SecretRef(env="SPO_SECRET").resolve() == "from-env"


def test_secret_ref_missing_environment(monkeypatch):
    monkeypatch.delenv("SPO_SECRET", raising=False)

    with pytest.raises(ValueError):
        SecretRef(env="SPO_SECRET").resolve()


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://contoso.sharepoint.com/sites/appcatalog", True),
        ("http://localhost:8080/sites/x", True),
        ("/sites/appcatalog", False),
        ("mailto:admin@contoso.com", False),
        (None, False),
    ],
)
def test_is_valid_site_url(url, expected):
    assert is_valid_site_url(url) is expected
