"""
Pydantic models for the subset of the ExternalDNS resource the operator reads.

Only the provider block is modelled: it names the credentials secret that the
operator mirrors into the operand namespace. The remaining spec fields are
accepted and ignored.
"""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from externaldns_operator.constants import SECRET_FROM_CLOUD_CREDENTIALS_OPERATOR


class ProviderType(StrEnum):
    """DNS providers supported by ExternalDNS."""

    AWS = "AWS"
    GCP = "GCP"
    AZURE = "Azure"
    BLUECAT = "BlueCat"
    INFOBLOX = "Infoblox"


class SecretReference(BaseModel):
    """Reference to a secret in the operator namespace."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field("", description="Name of the secret")


class CredentialsProviderOptions(BaseModel):
    """Provider options naming the secret under ``credentials``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    credentials: SecretReference | None = None

    @property
    def secret_name(self) -> str:
        return self.credentials.name if self.credentials else ""


class ConfigFileProviderOptions(BaseModel):
    """Provider options naming the secret under ``configFile``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    config_file: SecretReference | None = Field(None, alias="configFile")

    @property
    def secret_name(self) -> str:
        return self.config_file.name if self.config_file else ""


class ExternalDNSProvider(BaseModel):
    """Provider block of an ExternalDNS resource."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: ProviderType
    aws: CredentialsProviderOptions | None = None
    gcp: CredentialsProviderOptions | None = None
    azure: ConfigFileProviderOptions | None = None
    blue_cat: ConfigFileProviderOptions | None = Field(None, alias="blueCat")
    infoblox: CredentialsProviderOptions | None = None

    def credentials_secret_name(self) -> str:
        """Name of the secret referenced by the options of the selected provider."""
        options = {
            ProviderType.AWS: self.aws,
            ProviderType.GCP: self.gcp,
            ProviderType.AZURE: self.azure,
            ProviderType.BLUECAT: self.blue_cat,
            ProviderType.INFOBLOX: self.infoblox,
        }[self.type]
        return options.secret_name if options else ""


class ExternalDNSSpec(BaseModel):
    """Spec of an ExternalDNS resource."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    provider: ExternalDNSProvider

    def credentials_source(self, is_openshift: bool) -> tuple[str, bool]:
        """
        Resolve the source credentials secret for this resource.

        A secret named in the provider options always wins. On OpenShift a
        resource that names none uses the secret issued by the cloud
        credentials operator, whose keys follow that operator's conventions.

        Args:
            is_openshift: Whether the operator runs on OpenShift

        Returns:
            Tuple of (secret name, issued by cloud credentials operator).
            The name is empty when the resource has no credentials secret.
        """
        name = self.provider.credentials_secret_name()
        if name:
            return name, False
        if is_openshift:
            return SECRET_FROM_CLOUD_CREDENTIALS_OPERATOR, True
        return "", False
