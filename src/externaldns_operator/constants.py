"""
Constants used throughout the ExternalDNS operator.

This module defines:
- Names of objects the operator manages in the operand namespace
- Label keys stamped on managed objects
- Payload keys used by the credentials projections
- Default configuration values
"""

# ExternalDNS custom resource coordinates
EXTERNALDNS_GROUP = "externaldns.olm.openshift.io"
EXTERNALDNS_VERSION = "v1beta1"
EXTERNALDNS_PLURAL = "externaldnses"
EXTERNALDNS_KIND = "ExternalDNS"

# Resource naming patterns
EXTERNALDNS_BASE_NAME = "external-dns"
TRUSTED_CA_CONFIGMAP_SUFFIX = "-trusted-ca"
CREDENTIALS_SECRET_INFIX = "-credentials-"

# Secret issued by the cloud credentials operator on OpenShift
SECRET_FROM_CLOUD_CREDENTIALS_OPERATOR = "externaldns-cloud-credentials"

# Mirror identifiers
TRUSTED_CA_MIRROR_NAME = "trusted-ca"
CREDENTIALS_MIRROR_PREFIX = "credentials/"

# Label constants for managed objects
MANAGED_BY_LABEL_KEY = "externaldns.olm.openshift.io/managed-by"
MANAGED_BY_LABEL_VALUE = "external-dns-operator"
MIRROR_LABEL_KEY = "externaldns.olm.openshift.io/mirror"

# Payload keys
TRUSTED_CA_BUNDLE_KEY = "ca-bundle.crt"
GCP_SOURCE_CREDENTIALS_KEY = "service_account.json"
GCP_TARGET_CREDENTIALS_KEY = "gcp-credentials.json"
AZURE_TARGET_CREDENTIALS_KEY = "azure.json"

# Platforms
PLATFORM_KUBERNETES = "kubernetes"
PLATFORM_OPENSHIFT = "openshift"

# Default configuration values
DEFAULT_OPERATOR_NAMESPACE = "external-dns-operator"
DEFAULT_OPERAND_NAMESPACE = "external-dns"
DEFAULT_WORKERS = 4
DEFAULT_QUEUE_SIZE = 256
DEFAULT_RETRY_BASE_DELAY = 0.5
DEFAULT_RETRY_MAX_DELAY = 300.0

# Kubernetes API reasons that will not resolve without intervention
NON_RETRYABLE_API_REASONS = frozenset({"Forbidden", "Unauthorized", "Invalid"})

# Log message templates
LOG_SOURCE_NOT_FOUND = "source {} {} not found; reconciliation will be skipped"
LOG_TARGET_CREATED = "created {} {}"
LOG_TARGET_UPDATED = "updated {} {}"
LOG_TARGET_UNCHANGED = "{} {} is up to date"
