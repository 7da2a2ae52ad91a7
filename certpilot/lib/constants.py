"""
Constants shared across certpilot.

Covers the external tool names and their location convention, artifact
names, PEM markers, check identifiers and subprocess timeouts.
"""

# =========================================================================
# External tools
# =========================================================================

CERTREQ = "certreq.exe"
CERTUTIL = "certutil.exe"

REQUIRED_TOOLS = (CERTREQ, CERTUTIL)

# Tools live in %SystemRoot%\System32
DEFAULT_SYSTEM_ROOT = "C:\\Windows"
TOOL_SUBDIRECTORY = "System32"

# Lines starting with these prefixes are tool banners, not error text
TOOL_BANNER_PREFIXES = ("certreq:", "certutil:")

# =========================================================================
# Timeouts (seconds)
# =========================================================================

ENROLLMENT_TIMEOUT = 60
ENCODE_TIMEOUT = 30
TCP_PROBE_TIMEOUT = 2.0

# =========================================================================
# Artifacts
# =========================================================================

LEAF_PEM = "leaf.pem"
KEY_PEM = "leaf.key.pem"
CA_BUNDLE_PEM = "ca-bundle.pem"

WORK_DIR_NAME = "certpilot"
INF_FILE = "request.inf"
REQ_FILE = "request.req"
CER_FILE = "certificate.cer"
PFX_FILE = "certificate.pfx"
CHAIN_FILE = "chain.p7b"

# =========================================================================
# PEM
# =========================================================================

PEM_CERTIFICATE_MARKER = "BEGIN CERTIFICATE"
PEM_BEGIN_CERTIFICATE = "-----BEGIN CERTIFICATE-----"
PEM_END_CERTIFICATE = "-----END CERTIFICATE-----"

# =========================================================================
# Subject Alternative Names
# =========================================================================

SAN_EXTENSION_OID = "2.5.29.17"
SAN_DNS_PREFIX = "dns:"
SAN_IP_PREFIX = "ip:"

# =========================================================================
# Results
# =========================================================================

STATUS_PASS = "pass"
STATUS_FAIL = "fail"
STATUS_WARN = "warn"

RESULT_SUCCESS = "success"
RESULT_FAILED = "failed"

DEFAULT_KEY_SIZE = 2048
