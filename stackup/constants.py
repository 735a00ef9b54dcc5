"""
stackup Constants

Centralized constants for magic values, defaults, and configuration.
"""

# Stage names (declaration order is execution order)
STATE_BACKEND_STAGE = "state-backend"
NETWORK_COMPUTE_STAGE = "network-compute"
CONFIG_MANAGEMENT = "config-management"

# Default AWS / Project Configuration
DEFAULT_AWS_REGION = "us-east-1"
DEFAULT_PROJECT_NAME = "jenkins-step3"
DEFAULT_ENVIRONMENT = "dev"

# Default Network Configuration
DEFAULT_VPC_CIDR = "10.0.0.0/16"
DEFAULT_PUBLIC_SUBNET_CIDR = "10.0.1.0/24"
DEFAULT_PRIVATE_SUBNET_CIDR = "10.0.2.0/24"

# Default Instance Configuration (free tier eligible)
DEFAULT_MASTER_INSTANCE_TYPE = "t2.micro"
DEFAULT_WORKER_INSTANCE_TYPE = "t2.micro"
DEFAULT_SPOT_PRICE = "0.01"

# Default Workspace Layout (relative to workspace root)
DEFAULT_STATE_BACKEND_DIR = "s3-backend"
DEFAULT_NETWORK_COMPUTE_DIR = "infrastructure"
DEFAULT_ANSIBLE_DIR = "ansible"
DEFAULT_PLAYBOOK = "jenkins-setup.yml"
DEFAULT_STATE_KEY = "jenkins-infrastructure/terraform.tfstate"

# Default SSH Configuration
DEFAULT_SSH_KEY_PATH = "~/.ssh/jenkins-step3-key"
DEFAULT_SSH_USER = "ec2-user"
SSH_KEY_TYPE = "rsa"
SSH_KEY_BITS = 4096

# Required external tools
DEPLOY_TOOLS = {
    "terraform": "terraform",
    "aws": "aws-cli",
    "ansible": "ansible",
    "ansible-playbook": "ansible-playbook",
    "ssh-keygen": "ssh-keygen",
}
CLEANUP_TOOLS = {
    "terraform": "terraform",
    "aws": "aws-cli",
}

# State Store Configuration
STATE_DIR = ".stackup"
STATE_DB_FILE = "state.db"
LOCK_LEASE_SECONDS = 1800

# Retry Configuration
APPLY_MAX_ATTEMPTS = 3
LOCK_MAX_ATTEMPTS = 5
BACKOFF_BASE_SECONDS = 5.0
BACKOFF_MAX_SECONDS = 60.0

# Handoff Configuration
SSH_PORT = 22
SSH_CONNECTION_TIMEOUT = 5
HANDOFF_POLL_INTERVAL = 10
HANDOFF_TIMEOUT = 300

# Terraform Configuration
TERRAFORM_VAR_FILE = "terraform.tfvars"
TERRAFORM_BACKEND_FILE = "backend.hcl"
TERRAFORM_PLAN_FILE = "tfplan"
TERRAFORM_TIMEOUT = 1800

# Terraform/AWS error fragments that indicate a retryable provider failure
TRANSIENT_ERROR_PATTERNS = (
    "RequestLimitExceeded",
    "Throttling",
    "ThrottlingException",
    "TooManyRequestsException",
    "RequestTimeout",
    "ServiceUnavailable",
    "InternalError",
    "InsufficientInstanceCapacity",
    "connection reset by peer",
    "i/o timeout",
    "TLS handshake timeout",
    "Error acquiring the state lock",
)

# Ansible Configuration
ANSIBLE_PYTHON_INTERPRETER = "/usr/bin/python3"
ANSIBLE_INVENTORY_FILE = "inventory"
ANSIBLE_MASTER_GROUP = "jenkins_master"

# Log Configuration
LOG_DATE_FORMAT = "%Y-%m-%d"
