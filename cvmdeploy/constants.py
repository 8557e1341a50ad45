"""
cvmdeploy Constants

Centralized constants for defaults, endpoints, chains and contract ABIs.
"""

# Cloud endpoints
DEFAULT_CLOUD_API_URL = "https://cloud-api.phala.network"
DEFAULT_CLOUD_URL = "https://cloud.phala.network"
API_KEY_HEADER = "X-API-Key"
USER_AGENT = "cvmdeploy"

# Environment variables
ENV_API_KEY = "PHALA_CLOUD_API_KEY"
ENV_API_URL = "CLOUD_API_URL"
ENV_CLOUD_URL = "CLOUD_URL"
ENV_PRIVATE_KEY = "PRIVATE_KEY"
ENV_CONFIG_DIR = "CVMDEPLOY_CONFIG_DIR"

# Local configuration
DEFAULT_CONFIG_DIR = "~/.cvmdeploy"
CONFIG_FILE_NAME = "config.yml"
CREDENTIALS_FILE_NAME = ".env"
LOGS_DIR_NAME = "logs"

# Default CVM sizing
DEFAULT_VCPU = 2
DEFAULT_MEMORY_MB = 4096
DEFAULT_DISK_SIZE_GB = 40
MAX_DISK_SIZE_GB = 250
MEMORY_STEP_MB = 1024

# Deployment names
NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 20
NAME_SUFFIX = "-cvm"

# Timeouts (seconds)
DEFAULT_REQUEST_TIMEOUT = 30
DEFAULT_RECEIPT_TIMEOUT = 120

# Cloud API endpoints
API_AVAILABLE_NODES = "/api/v1/teepods/available"
API_KMS_LIST = "/api/v1/kms"
API_KMS_PUBKEY = "/api/v1/kms/{kms_id}/pubkey/{app_id}"
API_PUBKEY_FROM_CONFIG = "/api/v1/cvms/pubkey/from_cvm_configuration"
API_CREATE_FROM_CONFIG = "/api/v1/cvms/from_cvm_configuration"
API_PROVISION = "/api/v1/cvms/provision"
API_COMMIT_PROVISION = "/api/v1/cvms"
API_CVM = "/api/v1/cvms/{cvm_id}"
API_COMPOSE_FILE = "/api/v1/cvms/{cvm_id}/compose_file"
API_PROVISION_COMPOSE_UPDATE = "/api/v1/cvms/{cvm_id}/compose_file/provision"

# Compose file defaults sent with every configuration
COMPOSE_FEATURES = ["kms", "tproxy-net"]
COMPOSE_MANIFEST_VERSION = 2

# Secret payload wire layout (bytes)
PUBLIC_KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16

# Chains
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
MIN_COMMIT_BALANCE_ETH = "0.01"

SUPPORTED_CHAINS = {
    1: {"name": "Ethereum Mainnet", "rpc_url": "https://eth.merkle.io"},
    8453: {"name": "Base", "rpc_url": "https://mainnet.base.org"},
    15107: {"name": "T16Z", "rpc_url": "https://rpc.t16z.com"},
    31337: {"name": "Anvil", "rpc_url": "http://127.0.0.1:8545"},
    11155111: {"name": "Sepolia", "rpc_url": "https://sepolia.drpc.org"},
}

# Identity registry (KMS auth) contract
KMS_AUTH_ABI = [
    {
        "inputs": [{"name": "app", "type": "address"}],
        "name": "registerApp",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "deployer", "type": "address"},
            {"name": "disableUpgrades", "type": "bool"},
            {"name": "allowAnyDevice", "type": "bool"},
            {"name": "initialDeviceId", "type": "bytes32"},
            {"name": "initialComposeHash", "type": "bytes32"},
        ],
        "name": "deployAndRegisterApp",
        "outputs": [
            {"name": "appId", "type": "address"},
            {"name": "proxyAddress", "type": "address"},
        ],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "", "type": "address"}],
        "name": "apps",
        "outputs": [
            {"name": "isRegistered", "type": "bool"},
            {"name": "controller", "type": "address"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [{"indexed": False, "name": "appId", "type": "address"}],
        "name": "AppRegistered",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "appId", "type": "address"},
            {"indexed": True, "name": "proxyAddress", "type": "address"},
            {"indexed": True, "name": "deployer", "type": "address"},
        ],
        "name": "AppDeployedViaFactory",
        "type": "event",
    },
]

# Per-app identity contract
APP_AUTH_ABI = [
    {
        "inputs": [{"name": "composeHash", "type": "bytes32"}],
        "name": "addComposeHash",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [{"indexed": False, "name": "composeHash", "type": "bytes32"}],
        "name": "ComposeHashAdded",
        "type": "event",
    },
]

# Error message templates
ERROR_MISSING_API_KEY = (
    "Cloud API key not configured. Pass --api-key or set PHALA_CLOUD_API_KEY."
)
ERROR_MISSING_PRIVATE_KEY = (
    "A private key is required for on-chain KMS. Pass --private-key or set PRIVATE_KEY."
)

# Log Configuration
LOG_DATE_FORMAT = "%Y-%m-%d"
LOG_TIME_FORMAT = "%H-%M-%S"
